"""Question sequencer: walks an ordered question set one session at a time.

The sequencer opens one ExchangeSession per question, refuses to move past
a question that has not completed (unless told to skip it), and signals
when the set is exhausted. It never retries on its own; retries come from
the test-taker.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..audio.capture import MicrophoneGate
from ..errors import (
    AdvanceBlockedError,
    ExchangeError,
    NoQuestionsAvailableError,
    ProtocolMisuseError,
    QuestionSourceError,
    SubmissionFailureError,
)
from ..events import EventEmitter, Subscription
from ..service.submission import SubmissionChannel
from ..timing.scheduler import Scheduler
from .models import Phase, Question, QuestionSet
from .session import (
    CaptureFactory,
    ExchangeSession,
    PhaseChanged,
    PlaybackFactory,
    SessionEvent,
    SessionFailed,
    SubmissionWarning,
)

if TYPE_CHECKING:
    from ..service.questions import QuestionSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuestionStarted:
    """A session was opened for the question at `index`."""

    index: int
    question: Question


@dataclass(frozen=True)
class QuestionCompleted:
    """The current question reached COMPLETE."""

    index: int
    question_id: str
    warning: SubmissionFailureError | None = None


@dataclass(frozen=True)
class QuestionFailed:
    """The current question entered ERROR; a retry or skip is needed."""

    index: int
    question_id: str
    error: ExchangeError


@dataclass(frozen=True)
class QuestionOutcome:
    """How a question ended when the sequencer moved past it."""

    question_id: str
    completed: bool
    warning: SubmissionFailureError | None = None


@dataclass(frozen=True)
class SetCompleted:
    """Every question has been passed."""

    outcomes: tuple[QuestionOutcome, ...]
    warnings: tuple[SubmissionFailureError, ...] = field(default_factory=tuple)

    @property
    def completed_count(self) -> int:
        """Questions that reached COMPLETE."""
        return sum(1 for outcome in self.outcomes if outcome.completed)

    @property
    def skipped_count(self) -> int:
        """Questions passed through the skip override."""
        return sum(1 for outcome in self.outcomes if not outcome.completed)


SequencerEvent = QuestionStarted | QuestionCompleted | QuestionFailed | SetCompleted


class QuestionSequencer:
    """Holds the question set and a cursor; owns the active session."""

    def __init__(
        self,
        questions: QuestionSet | Sequence[Question],
        scheduler: Scheduler,
        playback_factory: PlaybackFactory,
        capture_factory: CaptureFactory,
        submission: SubmissionChannel,
        gate: MicrophoneGate | None = None,
        auto_start: bool = True,
        auto_advance: bool = False,
    ) -> None:
        """Initialize the sequencer with the cursor on the first question.

        Args:
            questions: Questions in administration order
            scheduler: Clock and callback scheduler
            playback_factory: Creates a prompt player per session
            capture_factory: Creates a capture adapter per recording
            submission: Receives finished recordings
            gate: Microphone gate shared with other sequencers, if any
            auto_start: Play each prompt as soon as its session opens
            auto_advance: Move on as soon as a question completes
        """
        self._questions = questions if isinstance(questions, QuestionSet) else QuestionSet(questions)
        self._scheduler = scheduler
        self._playback_factory = playback_factory
        self._capture_factory = capture_factory
        self._submission = submission
        self._gate = gate if gate is not None else MicrophoneGate()
        self._auto_start = auto_start
        self._auto_advance = auto_advance

        self._cursor = 0
        self._session: ExchangeSession | None = None
        self._session_sub: Subscription | None = None
        self._outcomes: list[QuestionOutcome] = []
        self._warnings: list[SubmissionFailureError] = []
        self._finished = False
        self.events: EventEmitter[SequencerEvent] = EventEmitter("sequencer.events")

    @classmethod
    def from_source(
        cls,
        source: "QuestionSource",
        test_id: str,
        section_type: str,
        **kwargs,
    ) -> "QuestionSequencer":
        """Build a sequencer from a question source.

        Raises:
            NoQuestionsAvailableError: If the source fails or returns nothing
        """
        try:
            questions = source.fetch_questions(test_id, section_type)
        except QuestionSourceError as e:
            raise NoQuestionsAvailableError(
                f"No questions available for {test_id}/{section_type}: {e}",
                status_code=e.status_code,
            ) from e

        if not questions:
            raise NoQuestionsAvailableError(f"No questions available for {test_id}/{section_type}")

        logger.info(f"Loaded {len(questions)} questions for {test_id}/{section_type}")
        return cls(questions, **kwargs)

    @property
    def questions(self) -> QuestionSet:
        """Get the question set."""
        return self._questions

    @property
    def cursor(self) -> int:
        """Index of the current question."""
        return self._cursor

    @property
    def session(self) -> ExchangeSession | None:
        """Get the active session."""
        return self._session

    @property
    def gate(self) -> MicrophoneGate:
        """Get the microphone gate."""
        return self._gate

    @property
    def is_finished(self) -> bool:
        """Return True once the set has been exhausted."""
        return self._finished

    @property
    def outcomes(self) -> list[QuestionOutcome]:
        """Outcomes of the questions already passed."""
        return self._outcomes.copy()

    @property
    def warnings(self) -> list[SubmissionFailureError]:
        """Submission failures seen so far."""
        return self._warnings.copy()

    def current(self) -> Question | None:
        """Return the active question, or None past the end."""
        if self._cursor >= len(self._questions):
            return None
        return self._questions[self._cursor]

    def begin(self) -> ExchangeSession | None:
        """Open the session for the current question.

        Returns:
            The new session, or None if there are no questions left.

        Raises:
            ProtocolMisuseError: If a session is already open
        """
        if self._session is not None:
            raise ProtocolMisuseError("begin() called while a session is open")
        if self.current() is None:
            self._finish()
            return None
        return self._open_session()

    def advance(self, force: bool = False) -> bool:
        """Move past the current question.

        Args:
            force: Skip override; pass a question that did not complete

        Returns:
            True if another question is now current.

        Raises:
            AdvanceBlockedError: If the session has not completed and force is False
        """
        if self._finished:
            return False
        if self.current() is None:
            self._finish()
            return False

        session = self._session
        if session is None:
            question = self._questions[self._cursor]
            if not force:
                raise AdvanceBlockedError(
                    f"Question {question.question_id} has no open session; "
                    "it must complete or be skipped"
                )
            logger.warning(f"Skipping {question.question_id} without a session")
            self._outcomes.append(
                QuestionOutcome(question_id=question.question_id, completed=False)
            )
        else:
            completed = session.phase == Phase.COMPLETE
            if not completed and not force:
                raise AdvanceBlockedError(
                    f"Question {session.question.question_id} is {session.phase.name}; "
                    "it must complete or be skipped"
                )
            if not completed:
                logger.warning(
                    f"Skipping {session.question.question_id} in {session.phase.name}"
                )
            self._outcomes.append(
                QuestionOutcome(
                    question_id=session.question.question_id,
                    completed=completed,
                    warning=session.warning if completed else None,
                )
            )
            self._close_session()

        self._cursor += 1
        if self.current() is None:
            self._finish()
            return False

        self._open_session()
        return True

    def skip(self) -> bool:
        """Advance past the current question whatever its phase."""
        return self.advance(force=True)

    def retry(self) -> None:
        """Re-enter IDLE on a failed question and, with auto_start, replay it.

        Raises:
            ProtocolMisuseError: If there is no failed session
        """
        session = self._session
        if session is None or session.phase != Phase.ERROR:
            raise ProtocolMisuseError("retry() needs a session in ERROR")
        session.retry()
        if self._auto_start:
            session.play()

    def close(self) -> None:
        """Close the active session, releasing its devices."""
        self._close_session()

    def _open_session(self) -> ExchangeSession:
        question = self._questions[self._cursor]
        session = ExchangeSession(
            question,
            self._scheduler,
            self._playback_factory,
            self._capture_factory,
            self._submission,
            self._gate,
        )
        self._session = session
        self._session_sub = session.events.subscribe(self._on_session_event)
        logger.info(
            f"Question {self._cursor + 1}/{len(self._questions)}: {question.question_id}"
        )
        self.events.emit(QuestionStarted(self._cursor, question))
        if self._auto_start:
            session.play()
        return session

    def _close_session(self) -> None:
        if self._session_sub is not None:
            self._session_sub.dispose()
            self._session_sub = None
        if self._session is not None:
            self._session.close()
            self._session = None

    def _finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        logger.info(f"Question set complete: {len(self._outcomes)} passed")
        self.events.emit(SetCompleted(tuple(self._outcomes), tuple(self._warnings)))

    def _on_session_event(self, event: SessionEvent) -> None:
        session = self._session
        if session is None:
            return
        if isinstance(event, SubmissionWarning):
            self._warnings.append(event.error)
        elif isinstance(event, SessionFailed):
            self.events.emit(QuestionFailed(self._cursor, event.question_id, event.error))
        elif isinstance(event, PhaseChanged) and event.current == Phase.COMPLETE:
            self.events.emit(QuestionCompleted(self._cursor, event.question_id, session.warning))
            if self._auto_advance:
                self._scheduler.call_soon(lambda: self._auto_advance_from(session))

    def _auto_advance_from(self, session: ExchangeSession) -> None:
        if self._session is session and session.phase == Phase.COMPLETE:
            self.advance()


__all__ = [
    "QuestionCompleted",
    "QuestionFailed",
    "QuestionOutcome",
    "QuestionSequencer",
    "QuestionStarted",
    "SequencerEvent",
    "SetCompleted",
]
