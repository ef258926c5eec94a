"""Configuration module for speaktest.

This module provides configuration dataclasses, loading and profile
management.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol


@dataclass
class AudioConfig:
    """Audio input/output configuration."""

    input_device: str = "default"
    output_device: str = "default"
    sample_rate: int = 16000
    channels: int = 1
    chunk_size: int = 1024
    use_mock: bool = False


@dataclass
class ExchangeConfig:
    """Per-question exchange behaviour."""

    auto_start: bool = True
    auto_advance: bool = False
    default_time_limit: int = 15
    default_replay_allowance: int = 2
    default_prompt_delay: int = 0


@dataclass
class SectionConfig:
    """Defaults for one test section (e.g. reading, repeat)."""

    time_limit: int = 15
    replay_allowance: int = 2
    prompt_delay: int = 0


@dataclass
class ServiceConfig:
    """Exam service endpoints."""

    base_url: str = "http://localhost:8000"
    timeout: float = 10.0
    answers_dir: str | None = None


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"


@dataclass
class SpeaktestConfig:
    """Main speaktest configuration."""

    audio: AudioConfig = field(default_factory=AudioConfig)
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    sections: dict[str, SectionConfig] = field(default_factory=dict)

    def default_section(self) -> SectionConfig:
        """Get the defaults for sections without their own entry."""
        return SectionConfig(
            time_limit=self.exchange.default_time_limit,
            replay_allowance=self.exchange.default_replay_allowance,
            prompt_delay=self.exchange.default_prompt_delay,
        )

    def section(self, section_type: str) -> SectionConfig:
        """Get defaults for a section, falling back to exchange defaults."""
        found = self.sections.get(section_type)
        if found is not None:
            return found
        return self.default_section()


class ConfigLoader(Protocol):
    """Protocol for configuration loading."""

    def load(self, path: Path) -> SpeaktestConfig:
        """Load configuration from file path."""
        ...

    def load_profile(self, profile: str) -> SpeaktestConfig:
        """Load configuration by profile name (dev, test, prod)."""
        ...

    def get_config_dir(self) -> Path:
        """Get the configuration directory path."""
        ...


# Public API
__all__ = [
    "AudioConfig",
    "ConfigLoader",
    "ExchangeConfig",
    "LoggingConfig",
    "SectionConfig",
    "ServiceConfig",
    "SpeaktestConfig",
]
