"""Exchange session: the per-question state machine.

A session plays the prompt, optionally replays it, records the spoken
response against a countdown and hands the recording to a submission
channel. All work happens in callbacks on the scheduler thread; the session
never blocks.

    IDLE -> PROMPT_PLAYING -> PROMPT_DONE -> RECORDING -> SAVING -> COMPLETE
                                  ^  |          |
                                  |  v          v
                             REPLAY_PLAYING <---+   (replay resets the take)

Any non-terminal phase can fall into ERROR; retry() returns to IDLE.
"""

import logging
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass

from ..audio.capture import (
    CaptureAcquired,
    CaptureAdapter,
    CaptureEvent,
    CaptureFailed,
    CaptureStopped,
    MicrophoneGate,
    RecordingArtifact,
)
from ..audio.playback import (
    PlaybackAdapter,
    PlaybackEnded,
    PlaybackEvent,
    PlaybackFailed,
    PlaybackStarted,
)
from ..errors import ExchangeError, ProtocolMisuseError, SubmissionFailureError
from ..events import EventEmitter, Subscription
from ..service.submission import SubmissionChannel, SubmissionResult
from ..timing.countdown import Countdown, CountdownEvent, CountdownExpired, CountdownTick
from ..timing.scheduler import Handle, Scheduler
from .models import VALID_TRANSITIONS, Phase, Question, SessionState
from .replay import ReplayBudget

logger = logging.getLogger(__name__)

PlaybackFactory = Callable[[], PlaybackAdapter]
CaptureFactory = Callable[[str], CaptureAdapter]


@dataclass(frozen=True)
class PhaseChanged:
    """Session moved between phases."""

    question_id: str
    previous: Phase
    current: Phase
    reason: str


@dataclass(frozen=True)
class TimeRemaining:
    """Countdown tick while recording."""

    question_id: str
    remaining: int


@dataclass(frozen=True)
class SubmissionWarning:
    """Recording was not accepted; the session still completes."""

    question_id: str
    error: SubmissionFailureError


@dataclass(frozen=True)
class SessionFailed:
    """Session entered ERROR."""

    question_id: str
    error: ExchangeError


SessionEvent = PhaseChanged | TimeRemaining | SubmissionWarning | SessionFailed


class ExchangeSession:
    """State machine coordinating prompt, countdown and capture for one question.

    The session owns its playback adapter, its capture adapter and its
    countdown. Adapters are created through factories so that a fresh
    instance, with fresh subscriptions, replaces any superseded one.
    """

    def __init__(
        self,
        question: Question,
        scheduler: Scheduler,
        playback_factory: PlaybackFactory,
        capture_factory: CaptureFactory,
        submission: SubmissionChannel,
        gate: MicrophoneGate,
    ) -> None:
        """Initialize a session in IDLE.

        Args:
            question: The question to administer
            scheduler: Clock and callback scheduler
            playback_factory: Creates the prompt player
            capture_factory: Creates a capture adapter for a question id
            submission: Receives the finished recording
            gate: Process-wide microphone gate
        """
        self._question = question
        self._scheduler = scheduler
        self._playback_factory = playback_factory
        self._capture_factory = capture_factory
        self._submission = submission
        self._gate = gate

        self._state = SessionState(phase=Phase.IDLE, time_remaining=question.time_limit)
        self._budget = ReplayBudget(question.replay_allowance)
        self._history: list[PhaseChanged] = []

        self._countdown = Countdown(scheduler, name=f"countdown[{question.question_id}]")
        self._countdown_sub = self._countdown.events.subscribe(self._on_countdown_event)

        self._playback: PlaybackAdapter | None = None
        self._playback_sub: Subscription | None = None
        self._capture: CaptureAdapter | None = None
        self._capture_sub: Subscription | None = None
        self._delay_handle: Handle | None = None
        self._submission_future: Future | None = None
        self._closed = False

        self.events: EventEmitter[SessionEvent] = EventEmitter(
            f"session[{question.question_id}].events"
        )

    # -- read-only view ----------------------------------------------------

    @property
    def question(self) -> Question:
        """Get the question being administered."""
        return self._question

    @property
    def state(self) -> SessionState:
        """Get the session's state record."""
        return self._state

    @property
    def phase(self) -> Phase:
        """Get the current phase."""
        return self._state.phase

    @property
    def time_remaining(self) -> int:
        """Seconds left in the response window."""
        return self._state.time_remaining

    @property
    def replays_used(self) -> int:
        """Replays consumed."""
        return self._budget.used

    @property
    def replays_remaining(self) -> int:
        """Replays left."""
        return self._budget.remaining

    @property
    def can_replay(self) -> bool:
        """Return True if request_replay() would be granted now."""
        return (
            self._question.prompt.has_audio
            and self._state.phase in (Phase.PROMPT_DONE, Phase.RECORDING)
            and self._budget.remaining > 0
        )

    @property
    def last_error(self) -> ExchangeError | None:
        """Error that caused ERROR, if any."""
        return self._state.last_error

    @property
    def warning(self) -> ExchangeError | None:
        """Non-fatal warning, if any."""
        return self._state.warning

    @property
    def history(self) -> list[PhaseChanged]:
        """Every phase change so far."""
        return self._history.copy()

    @property
    def is_closed(self) -> bool:
        """Return True after close()."""
        return self._closed

    # -- user actions --------------------------------------------------------

    def play(self) -> None:
        """Present the prompt (IDLE only).

        Audio prompts are played; text-only prompts go straight to
        PROMPT_DONE and the prompt delay acts as preparation time.

        Raises:
            ProtocolMisuseError: If the session is not IDLE or is closed
        """
        self._ensure_open()
        if self._state.phase != Phase.IDLE:
            raise ProtocolMisuseError(f"play() is only valid in IDLE, not {self._state.phase.name}")

        prompt = self._question.prompt
        if not prompt.has_audio:
            self._transition(Phase.PROMPT_DONE, "text prompt shown")
            self._after_prompt()
            return

        playback = self._open_playback()
        playback.load(prompt.audio_url)
        self._transition(Phase.PROMPT_PLAYING, "play requested")
        playback.play()

    def request_replay(self) -> bool:
        """Replay the prompt from the start, discarding any take in progress.

        Returns:
            True if the replay was granted.
        """
        self._ensure_open()
        if not self._question.prompt.has_audio:
            return False
        if self._state.phase not in (Phase.PROMPT_DONE, Phase.RECORDING):
            return False
        if not self._budget.try_consume():
            logger.info(f"Replay denied for {self._question.question_id}: allowance used")
            return False

        self._cancel_delay()
        self._countdown.cancel()
        if self._capture is not None:
            logger.info(f"Discarding take for {self._question.question_id} before replay")
            self._release_capture()

        self._state.replays_used = self._budget.used
        self._state.time_remaining = self._question.time_limit
        self._transition(
            Phase.REPLAY_PLAYING,
            f"replay {self._budget.used}/{self._budget.allowance}",
        )

        playback = self._open_playback()
        playback.seek_to_start()
        playback.play()
        return True

    def stop_recording(self) -> bool:
        """End the take early and submit it.

        Returns:
            True if a recording was stopped.
        """
        self._ensure_open()
        if self._state.phase != Phase.RECORDING:
            return False
        self._finish_recording("stopped by user")
        return True

    def retry(self) -> None:
        """Return from ERROR to IDLE. The replay budget already used is kept.

        Raises:
            ProtocolMisuseError: If the session is not in ERROR
        """
        self._ensure_open()
        if self._state.phase != Phase.ERROR:
            raise ProtocolMisuseError(f"retry() is only valid in ERROR, not {self._state.phase.name}")

        self._dispose_playback()
        self._state.last_error = None
        self._state.time_remaining = self._question.time_limit
        self._transition(Phase.IDLE, "retry requested")

    def close(self) -> None:
        """Release every resource and stop reacting to events. Idempotent.

        A recording that has not reached the submission channel is discarded.
        """
        if self._closed:
            return
        self._release_resources()
        self._dispose_playback()
        self._countdown_sub.dispose()
        self._closed = True
        logger.debug(f"Session {self._question.question_id} closed in {self._state.phase.name}")

    # -- transitions ---------------------------------------------------------

    def _transition(self, to_phase: Phase, reason: str) -> None:
        current = self._state.phase
        if to_phase not in VALID_TRANSITIONS[current]:
            raise ProtocolMisuseError(
                f"Invalid transition: {current.name} -> {to_phase.name} "
                f"for {self._question.question_id}"
            )

        self._state.phase = to_phase
        change = PhaseChanged(self._question.question_id, current, to_phase, reason)
        self._history.append(change)
        logger.info(
            f"{self._question.question_id}: {current.name} -> {to_phase.name} ({reason})"
        )
        self.events.emit(change)

    def _after_prompt(self) -> None:
        delay = self._question.prompt_delay
        if delay > 0:
            self._delay_handle = self._scheduler.call_later(delay, self._begin_recording)
        else:
            self._begin_recording()

    def _begin_recording(self) -> None:
        self._delay_handle = None
        if self._closed or self._state.phase != Phase.PROMPT_DONE:
            return

        self._gate.reserve(self)
        self._capture = self._capture_factory(self._question.question_id)
        self._capture_sub = self._capture.events.subscribe(self._on_capture_event)
        self._capture.acquire()

    def _finish_recording(self, reason: str) -> None:
        self._countdown.cancel()
        self._transition(Phase.SAVING, reason)
        if self._capture is not None:
            self._capture.stop()

    def _submit(self, artifact: RecordingArtifact) -> None:
        question_id = self._question.question_id
        logger.info(
            f"Submitting recording for {question_id} ({artifact.duration_ms}ms)"
        )
        future = self._submission.submit(question_id, artifact)
        self._submission_future = future
        future.add_done_callback(
            lambda f: self._scheduler.call_soon_threadsafe(lambda: self._on_submitted(f))
        )

    def _fail(self, error: ExchangeError) -> None:
        if self._state.phase in (Phase.COMPLETE, Phase.ERROR):
            return
        logger.warning(f"{self._question.question_id} failed: {error}")
        self._release_resources()
        self._state.last_error = error
        self._transition(Phase.ERROR, type(error).__name__)
        self.events.emit(SessionFailed(self._question.question_id, error))

    # -- event handlers ------------------------------------------------------

    def _on_playback_event(self, event: PlaybackEvent) -> None:
        if self._closed:
            return
        if isinstance(event, PlaybackStarted):
            logger.debug(f"{self._question.question_id}: prompt audio started")
        elif isinstance(event, PlaybackEnded):
            if self._state.phase in (Phase.PROMPT_PLAYING, Phase.REPLAY_PLAYING):
                self._transition(Phase.PROMPT_DONE, "prompt ended")
                self._after_prompt()
        elif isinstance(event, PlaybackFailed):
            self._fail(event.error)

    def _on_capture_event(self, event: CaptureEvent) -> None:
        if self._closed:
            return
        if isinstance(event, CaptureAcquired):
            if self._state.phase != Phase.PROMPT_DONE or self._capture is None:
                return
            self._state.time_remaining = self._question.time_limit
            self._capture.start()
            self._countdown.start(self._question.time_limit)
            self._transition(Phase.RECORDING, f"microphone {event.device} acquired")
        elif isinstance(event, CaptureFailed):
            self._fail(event.error)
        elif isinstance(event, CaptureStopped):
            if self._state.phase != Phase.SAVING:
                return
            self._release_capture()
            self._submit(event.artifact)

    def _on_countdown_event(self, event: CountdownEvent) -> None:
        if self._closed or self._state.phase != Phase.RECORDING:
            return
        if isinstance(event, CountdownTick):
            self._state.time_remaining = event.remaining
            self.events.emit(TimeRemaining(self._question.question_id, event.remaining))
        elif isinstance(event, CountdownExpired):
            self._finish_recording("time limit reached")

    def _on_submitted(self, future: Future) -> None:
        if future is not self._submission_future:
            return
        self._submission_future = None
        if self._closed or self._state.phase != Phase.SAVING:
            return

        question_id = self._question.question_id
        error = future.exception()
        if error is not None:
            result = SubmissionResult(question_id, success=False, error=str(error))
        else:
            result = future.result()

        if not result.success:
            warning = SubmissionFailureError(
                result.error or "Submission failed", question_id=question_id
            )
            self._state.warning = warning
            logger.warning(f"Recording for {question_id} not accepted: {warning}")
            self.events.emit(SubmissionWarning(question_id, warning))

        self._transition(Phase.COMPLETE, "submitted" if result.success else "submission failed")

    # -- resources -----------------------------------------------------------

    def _open_playback(self) -> PlaybackAdapter:
        if self._playback is None:
            self._playback = self._playback_factory()
            self._playback_sub = self._playback.events.subscribe(self._on_playback_event)
        return self._playback

    def _dispose_playback(self) -> None:
        if self._playback_sub is not None:
            self._playback_sub.dispose()
            self._playback_sub = None
        if self._playback is not None:
            self._playback.stop()
            self._playback = None

    def _release_capture(self) -> None:
        if self._capture_sub is not None:
            self._capture_sub.dispose()
            self._capture_sub = None
        if self._capture is not None:
            self._capture.release()
            self._capture = None
        self._gate.free(self)

    def _cancel_delay(self) -> None:
        if self._delay_handle is not None:
            self._delay_handle.cancel()
            self._delay_handle = None

    def _release_resources(self) -> None:
        self._cancel_delay()
        self._countdown.cancel()
        if self._playback is not None:
            self._playback.stop()
        self._release_capture()

    def _ensure_open(self) -> None:
        if self._closed:
            raise ProtocolMisuseError(f"Session {self._question.question_id} is closed")

    def __repr__(self) -> str:
        return f"ExchangeSession({self._question.question_id!r}, phase={self._state.phase.name})"


__all__ = [
    "CaptureFactory",
    "ExchangeSession",
    "PhaseChanged",
    "PlaybackFactory",
    "SessionEvent",
    "SessionFailed",
    "SubmissionWarning",
    "TimeRemaining",
]
