"""Data model for the timed media exchange."""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum

from ..errors import ExchangeError


class Phase(Enum):
    """Phases of one question's exchange."""

    IDLE = "idle"
    PROMPT_PLAYING = "prompt_playing"
    PROMPT_DONE = "prompt_done"
    REPLAY_PLAYING = "replay_playing"
    RECORDING = "recording"
    SAVING = "saving"
    COMPLETE = "complete"
    ERROR = "error"


# Replay from RECORDING is the one backward edge.
VALID_TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.IDLE: frozenset({Phase.PROMPT_PLAYING, Phase.PROMPT_DONE, Phase.ERROR}),
    Phase.PROMPT_PLAYING: frozenset({Phase.PROMPT_DONE, Phase.ERROR}),
    Phase.PROMPT_DONE: frozenset({Phase.REPLAY_PLAYING, Phase.RECORDING, Phase.ERROR}),
    Phase.REPLAY_PLAYING: frozenset({Phase.PROMPT_DONE, Phase.ERROR}),
    Phase.RECORDING: frozenset({Phase.SAVING, Phase.REPLAY_PLAYING, Phase.ERROR}),
    Phase.SAVING: frozenset({Phase.COMPLETE, Phase.ERROR}),
    Phase.COMPLETE: frozenset(),
    Phase.ERROR: frozenset({Phase.IDLE}),
}


@dataclass(frozen=True)
class PromptRef:
    """Stimulus for a question: text to show, audio to play, or both.

    Attributes:
        text: Prompt text, if any
        audio_url: Opaque locator of the prompt audio, if any
    """

    text: str | None = None
    audio_url: str | None = None

    def __post_init__(self) -> None:
        if not self.text and not self.audio_url:
            raise ValueError("A prompt needs text, audio, or both")

    @property
    def has_audio(self) -> bool:
        """Return True if the prompt has audio to play."""
        return bool(self.audio_url)


@dataclass(frozen=True)
class Question:
    """One timed speaking task.

    Attributes:
        question_id: Unique, stable identifier
        prompt: What is shown or played
        time_limit: Response window in seconds
        replay_allowance: Number of permitted prompt replays
        prompt_delay: Seconds between prompt end and recording start
    """

    question_id: str
    prompt: PromptRef
    time_limit: int
    replay_allowance: int = 2
    prompt_delay: int = 0

    def __post_init__(self) -> None:
        if not self.question_id:
            raise ValueError("question_id must not be empty")
        if self.time_limit <= 0:
            raise ValueError(f"time_limit must be positive, got {self.time_limit}")
        if self.replay_allowance < 0:
            raise ValueError(f"replay_allowance must not be negative, got {self.replay_allowance}")
        if self.prompt_delay < 0:
            raise ValueError(f"prompt_delay must not be negative, got {self.prompt_delay}")


@dataclass
class SessionState:
    """Mutable record owned by one exchange session.

    Attributes:
        phase: Current phase
        time_remaining: Seconds left in the response window
        replays_used: Replays consumed so far
        last_error: Error that put the session into ERROR
        warning: Non-fatal problem, e.g. a rejected submission
    """

    phase: Phase
    time_remaining: int
    replays_used: int = 0
    last_error: ExchangeError | None = None
    warning: ExchangeError | None = None


class QuestionSet:
    """Ordered, read-only sequence of questions with unique ids."""

    def __init__(self, questions: Iterable[Question]) -> None:
        """Initialize from questions in administration order.

        Raises:
            ValueError: If two questions share an id
        """
        self._questions = tuple(questions)
        seen: set[str] = set()
        for question in self._questions:
            if question.question_id in seen:
                raise ValueError(f"Duplicate question id: {question.question_id}")
            seen.add(question.question_id)

    def __len__(self) -> int:
        return len(self._questions)

    def __getitem__(self, index: int) -> Question:
        return self._questions[index]

    def __iter__(self) -> Iterator[Question]:
        return iter(self._questions)

    @property
    def ids(self) -> list[str]:
        """Question ids in order."""
        return [q.question_id for q in self._questions]


__all__ = [
    "Phase",
    "PromptRef",
    "Question",
    "QuestionSet",
    "SessionState",
    "VALID_TRANSITIONS",
]
