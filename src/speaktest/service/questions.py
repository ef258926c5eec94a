"""Question sources for the exam service.

Fetches test structure and section questions over HTTP with httpx, or
reads them from a YAML question bank for offline runs. Values a payload
leaves out (time limit, replays, delay) come from per-section defaults.
"""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

import httpx
import yaml

from ..config import SectionConfig
from ..errors import QuestionSourceError
from ..exchange.models import PromptRef, Question

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_TIMEOUT = 10.0


class QuestionSource(Protocol):
    """Interface for loading a section's questions."""

    def fetch_questions(self, test_id: str, section_type: str) -> list[Question]:
        """Return the ordered questions of one section.

        Raises:
            QuestionSourceError: If the questions cannot be fetched or parsed
        """
        ...


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _int_or(data: dict[str, Any], default: int, *keys: str) -> int:
    value = _first(data, *keys)
    return default if value is None else int(value)


def question_from_dict(
    data: dict[str, Any],
    defaults: SectionConfig,
    resolve_url: Callable[[str], str] | None = None,
) -> Question:
    """Build a Question from a service or question-bank record.

    Accepts both snake_case and camelCase keys. An `audio_file` entry is
    turned into a URL with resolve_url(question_id) when given.

    Raises:
        QuestionSourceError: If the record is incomplete or invalid
    """
    question_id = _first(data, "question_id", "questionId", "id")
    if not question_id:
        raise QuestionSourceError(f"Question record without id: {data!r}")
    question_id = str(question_id)

    audio_url = _first(data, "audio_url", "audioUrl", "prompt_ref", "promptRef")
    if audio_url is None and data.get("audio_file") is not None:
        audio_url = resolve_url(question_id) if resolve_url is not None else data["audio_file"]

    try:
        return Question(
            question_id=question_id,
            prompt=PromptRef(text=_first(data, "text", "prompt_text"), audio_url=audio_url),
            time_limit=_int_or(data, defaults.time_limit, "time_limit", "timeLimit"),
            replay_allowance=_int_or(
                data, defaults.replay_allowance, "replay_allowance", "replayAllowance"
            ),
            prompt_delay=_int_or(data, defaults.prompt_delay, "prompt_delay", "promptDelay"),
        )
    except (TypeError, ValueError) as e:
        raise QuestionSourceError(f"Invalid question {question_id}: {e}") from e


class ExamServiceClient:
    """HTTP client for the exam service.

    Endpoints:
        GET /get_test_structure
        GET /get_test/{test_id}
        GET /get_question/{test_id}/{section_type}
        GET /get_audio/{question_id}

    Implements the QuestionSource protocol.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        sections: dict[str, SectionConfig] | None = None,
        default_section: SectionConfig | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Service root URL
            timeout: Request timeout in seconds
            sections: Per-section defaults for missing question fields
            default_section: Defaults for sections not in `sections`
            client: Optional preconfigured httpx client
        """
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._sections = dict(sections or {})
        self._default_section = default_section or SectionConfig()
        self._client = client

    @property
    def base_url(self) -> str:
        """Get the service root URL."""
        return self._base_url

    def resolve_prompt_url(self, question_id: str) -> str:
        """Return the URL of a question's prompt audio."""
        return f"{self._base_url}/get_audio/{question_id}"

    def fetch_test_structure(self) -> dict[str, Any]:
        """Fetch every test id with its sections."""
        return self._get_json("/get_test_structure")

    def fetch_test(self, test_id: str) -> dict[str, Any]:
        """Fetch one test with all its sections."""
        return self._get_json(f"/get_test/{test_id}")

    def fetch_questions(self, test_id: str, section_type: str) -> list[Question]:
        """Fetch a section's questions in order."""
        payload = self._get_json(f"/get_question/{test_id}/{section_type}")
        records = payload.get("questions") if isinstance(payload, dict) else payload
        if not isinstance(records, list):
            raise QuestionSourceError(
                f"Unexpected payload for {test_id}/{section_type}: missing 'questions'"
            )

        defaults = self._sections.get(section_type, self._default_section)
        questions = [
            question_from_dict(record, defaults, resolve_url=self.resolve_prompt_url)
            for record in records
        ]
        logger.debug(f"Fetched {len(questions)} questions for {test_id}/{section_type}")
        return questions

    def _get_json(self, path: str) -> Any:
        url = f"{self._base_url}{path}"
        try:
            if self._client is not None:
                response = self._client.get(url)
            else:
                with httpx.Client(timeout=self._timeout) as client:
                    response = client.get(url)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"GET {url} failed: HTTP {e.response.status_code}")
            raise QuestionSourceError(
                f"HTTP error {e.response.status_code} for {path}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.warning(f"GET {url} failed: {e}")
            raise QuestionSourceError(f"Request failed for {path}: {e}") from e
        except ValueError as e:
            raise QuestionSourceError(f"Invalid JSON from {path}: {e}") from e


class FileQuestionSource:
    """Question bank stored as YAML.

    Layout:
        tests:
          <test_id>:
            <section_type>:
              - question_id: ...
                text: ...
                audio_url: ...

    Implements the QuestionSource protocol.
    """

    def __init__(
        self,
        path: Path | str,
        sections: dict[str, SectionConfig] | None = None,
        default_section: SectionConfig | None = None,
    ) -> None:
        """Initialize from a YAML file.

        Args:
            path: Question bank file
            sections: Per-section defaults for missing question fields
            default_section: Defaults for sections not in `sections`
        """
        self._path = Path(path)
        self._sections = dict(sections or {})
        self._default_section = default_section or SectionConfig()

    def fetch_questions(self, test_id: str, section_type: str) -> list[Question]:
        """Read a section's questions from the bank."""
        if not self._path.exists():
            raise QuestionSourceError(f"Question bank not found: {self._path}")

        try:
            with open(self._path) as f:
                bank = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise QuestionSourceError(f"Invalid question bank {self._path}: {e}") from e

        records = ((bank.get("tests") or {}).get(test_id) or {}).get(section_type)
        if records is None:
            raise QuestionSourceError(f"No section {test_id}/{section_type} in {self._path}")

        defaults = self._sections.get(section_type, self._default_section)
        return [question_from_dict(record, defaults) for record in records]


__all__ = [
    "ExamServiceClient",
    "FileQuestionSource",
    "QuestionSource",
    "question_from_dict",
]
