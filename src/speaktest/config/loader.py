"""YAML configuration loader with inheritance support.

Supports:
- Loading YAML config files
- Config inheritance via 'extends' key
- Deep merging of nested config
- Environment override of the service URL
"""

import os
from pathlib import Path
from typing import Any

import yaml

from . import (
    AudioConfig,
    ExchangeConfig,
    LoggingConfig,
    SectionConfig,
    ServiceConfig,
    SpeaktestConfig,
)

API_URL_ENV = "SPEAKTEST_API_URL"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge a profile over its parent.

    Mappings present on both sides merge key by key; any other override
    value, lists included, replaces the parent's.
    """
    merged = dict(base)
    for key, value in override.items():
        parent = merged.get(key)
        if isinstance(parent, dict) and isinstance(value, dict):
            value = deep_merge(parent, value)
        merged[key] = value
    return merged


def load_yaml_with_inheritance(path: Path, _chain: tuple[Path, ...] = ()) -> dict[str, Any]:
    """Load a profile, resolving its 'extends' parent first.

    The parent path is relative to the file that names it.

    Raises:
        FileNotFoundError: If the file or one of its parents is missing
        ValueError: If the 'extends' chain loops back on itself
    """
    resolved = path.resolve()
    if resolved in _chain:
        names = " -> ".join(p.name for p in (*_chain, resolved))
        raise ValueError(f"Circular config inheritance: {names}")
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    parent_name = data.pop("extends", None)
    if parent_name is None:
        return data
    parent = load_yaml_with_inheritance(path.parent / parent_name, (*_chain, resolved))
    return deep_merge(parent, data)


def dict_to_config(data: dict[str, Any]) -> SpeaktestConfig:
    """Convert raw dict to typed SpeaktestConfig dataclass."""
    root = data.get("speaktest", {}) or {}

    # YAML yields None for empty sections
    def safe_get(key: str) -> dict[str, Any]:
        value = root.get(key, {})
        return value if value is not None else {}

    service = ServiceConfig(**safe_get("service"))
    env_url = os.environ.get(API_URL_ENV)
    if env_url:
        service.base_url = env_url

    return SpeaktestConfig(
        audio=AudioConfig(**safe_get("audio")),
        exchange=ExchangeConfig(**safe_get("exchange")),
        service=service,
        logging=LoggingConfig(**safe_get("logging")),
        sections={
            name: SectionConfig(**(values or {}))
            for name, values in safe_get("sections").items()
        },
    )


class YAMLConfigLoader:
    """YAML configuration loader implementation."""

    def __init__(self, config_dir: Path | None = None) -> None:
        """Initialize loader with optional config directory.

        Args:
            config_dir: Directory containing config files.
                        Defaults to 'config' relative to project root.
        """
        if config_dir is None:
            config_dir = Path(__file__).parent.parent.parent.parent / "config"
        self._config_dir = config_dir

    def load(self, path: Path) -> SpeaktestConfig:
        """Load configuration from file path.

        Args:
            path: Path to YAML config file

        Returns:
            Parsed SpeaktestConfig
        """
        return dict_to_config(load_yaml_with_inheritance(path))

    def load_profile(self, profile: str) -> SpeaktestConfig:
        """Load configuration by profile name.

        Args:
            profile: Profile name (e.g., 'dev', 'test', 'prod')

        Returns:
            Parsed SpeaktestConfig for the profile
        """
        return self.load(self._config_dir / f"{profile}.yaml")

    def get_config_dir(self) -> Path:
        """Get the configuration directory path."""
        return self._config_dir


def load_config(path: str | Path | None = None, profile: str | None = None) -> SpeaktestConfig:
    """Load speaktest configuration.

    Args:
        path: Direct path to config file (takes precedence)
        profile: Profile name if path not given

    Returns:
        Parsed SpeaktestConfig

    Examples:
        >>> config = load_config(profile="dev")
        >>> config = load_config(path="/path/to/config.yaml")
    """
    loader = YAMLConfigLoader()

    if path is not None:
        return loader.load(Path(path))
    elif profile is not None:
        return loader.load_profile(profile)
    else:
        from .profiles import detect_profile

        return loader.load_profile(detect_profile().value)


__all__ = [
    "API_URL_ENV",
    "YAMLConfigLoader",
    "deep_merge",
    "dict_to_config",
    "load_config",
    "load_yaml_with_inheritance",
]
