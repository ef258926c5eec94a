"""Section runner.

Wires a question source, adapters and a submission channel into a
QuestionSequencer on an asyncio loop, and drives it from single-letter
console commands until the set completes or the user quits.
"""

import asyncio
import logging
import sys
import threading
from collections.abc import Callable
from pathlib import Path

from .audio import create_capture_adapter, create_playback_adapter
from .audio.capture import (
    CaptureAcquired,
    CaptureAdapter,
    CaptureEvent,
    CaptureFailed,
    MicrophoneGate,
)
from .config import SpeaktestConfig
from .errors import DeviceDeniedError, DeviceUnavailableError, ExchangeError
from .exchange.models import Phase
from .exchange.sequencer import (
    QuestionCompleted,
    QuestionFailed,
    QuestionSequencer,
    QuestionStarted,
    SequencerEvent,
    SetCompleted,
)
from .exchange.session import ExchangeSession, PhaseChanged, SessionEvent, TimeRemaining
from .service.questions import ExamServiceClient, FileQuestionSource, QuestionSource
from .service.submission import (
    DirectorySubmissionChannel,
    HttpSubmissionChannel,
    MemorySubmissionChannel,
    SubmissionChannel,
)
from .timing.scheduler import LoopScheduler, Scheduler

logger = logging.getLogger(__name__)

COMMANDS = {
    "p": "play prompt",
    "r": "replay prompt",
    "s": "stop recording",
    "n": "next question",
    "k": "skip question",
    "t": "retry after error",
    "q": "quit",
}

MIC_CHECK_ID = "mic-check"
MIC_CHECK_TIMEOUT_S = 5.0


def build_question_source(config: SpeaktestConfig, questions_file: Path | None = None) -> QuestionSource:
    """Pick the YAML bank when a file is given, else the exam service."""
    if questions_file is not None:
        return FileQuestionSource(
            questions_file,
            sections=config.sections,
            default_section=config.default_section(),
        )
    return ExamServiceClient(
        base_url=config.service.base_url,
        timeout=config.service.timeout,
        sections=config.sections,
        default_section=config.default_section(),
    )


def build_submission_channel(
    config: SpeaktestConfig,
    answers_dir: Path | None = None,
    dry_run: bool = False,
) -> SubmissionChannel:
    """Pick where recordings go.

    Priority: dry run (memory), explicit or configured answers directory,
    then the exam service upload endpoint.
    """
    if dry_run:
        return MemorySubmissionChannel()
    directory = answers_dir or config.service.answers_dir
    if directory:
        return DirectorySubmissionChannel(directory)
    return HttpSubmissionChannel(config.service.base_url, timeout=config.service.timeout)


def apply_command(sequencer: QuestionSequencer, command: str) -> bool:
    """Apply one console command.

    Returns:
        False when the user asked to quit.
    """
    session = sequencer.session
    if command == "q":
        return False

    try:
        if command == "p" and session is not None:
            session.play()
        elif command == "r" and session is not None:
            if not session.request_replay():
                print(f"  Replay not available ({session.replays_remaining} left)")
        elif command == "s" and session is not None:
            session.stop_recording()
        elif command == "n":
            sequencer.advance()
        elif command == "k":
            sequencer.skip()
        elif command == "t":
            sequencer.retry()
        elif command:
            print("  Commands: " + ", ".join(f"{k}={v}" for k, v in COMMANDS.items()))
    except ExchangeError as e:
        print(f"  {e}")
    return True


class ConsoleView:
    """Prints sequencer and session events for the test-taker."""

    def __init__(self, sequencer: QuestionSequencer, write: Callable[[str], None] = print) -> None:
        self._sequencer = sequencer
        self._write = write
        self._session_sub = None
        self._subscription = sequencer.events.subscribe(self._on_sequencer_event)

    def close(self) -> None:
        self._subscription.dispose()
        if self._session_sub is not None:
            self._session_sub.dispose()
            self._session_sub = None

    def _watch(self, session: ExchangeSession) -> None:
        if self._session_sub is not None:
            self._session_sub.dispose()
        self._session_sub = session.events.subscribe(self._on_session_event)

    def _on_sequencer_event(self, event: SequencerEvent) -> None:
        if isinstance(event, QuestionStarted):
            total = len(self._sequencer.questions)
            self._write(f"\nQuestion {event.index + 1}/{total}: {event.question.question_id}")
            if event.question.prompt.text:
                self._write(f"  {event.question.prompt.text}")
            session = self._sequencer.session
            if session is not None:
                self._watch(session)
        elif isinstance(event, QuestionCompleted):
            suffix = f" (not saved: {event.warning})" if event.warning else ""
            self._write(f"  Answer recorded{suffix}. Press n for the next question.")
        elif isinstance(event, QuestionFailed):
            self._write(f"  Error: {event.error}. Press t to retry or k to skip.")
        elif isinstance(event, SetCompleted):
            self._write(
                f"\nSection finished: {event.completed_count} answered, "
                f"{event.skipped_count} skipped, {len(event.warnings)} not saved"
            )

    def _on_session_event(self, event: SessionEvent) -> None:
        if isinstance(event, PhaseChanged):
            if event.current == Phase.RECORDING:
                self._write("  Recording... (s to stop)")
            elif event.current == Phase.REPLAY_PLAYING:
                self._write("  Replaying prompt")
        elif isinstance(event, TimeRemaining):
            self._write(f"  {event.remaining}s")


def _start_console_reader(queue: "asyncio.Queue[str]") -> threading.Thread:
    """Read stdin lines on a daemon thread and post them to the loop."""
    loop = asyncio.get_running_loop()

    def read() -> None:
        for line in sys.stdin:
            loop.call_soon_threadsafe(queue.put_nowait, line.strip().lower())
        loop.call_soon_threadsafe(queue.put_nowait, "q")

    thread = threading.Thread(target=read, name="speaktest-console", daemon=True)
    thread.start()
    return thread


async def check_microphone(
    config: SpeaktestConfig,
    use_mock: bool = False,
    capture_factory: Callable[[Scheduler], CaptureAdapter] | None = None,
    timeout: float = MIC_CHECK_TIMEOUT_S,
) -> DeviceDeniedError | None:
    """Acquire and release the microphone once before a section starts.

    Args:
        config: Loaded configuration
        use_mock: Use the mock capture adapter
        capture_factory: Builds the adapter to probe; defaults to the configured one
        timeout: Seconds to wait for the device to answer

    Returns:
        None if access was granted, else the denial or device failure.
    """
    scheduler = LoopScheduler()
    use_mock = use_mock or config.audio.use_mock
    if capture_factory is None:
        capture = create_capture_adapter(scheduler, MIC_CHECK_ID, config.audio, use_mock)
    else:
        capture = capture_factory(scheduler)

    gate = MicrophoneGate()
    answered: asyncio.Future[CaptureEvent] = scheduler.loop.create_future()

    def on_event(event: CaptureEvent) -> None:
        if not answered.done() and isinstance(event, (CaptureAcquired, CaptureFailed)):
            answered.set_result(event)

    subscription = capture.events.subscribe(on_event)
    gate.reserve(capture)
    try:
        capture.acquire()
        try:
            event = await asyncio.wait_for(answered, timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Microphone did not answer within {timeout:g}s")
            return DeviceUnavailableError(f"Microphone did not answer within {timeout:g}s")
    finally:
        capture.release()
        gate.free(capture)
        subscription.dispose()

    if isinstance(event, CaptureFailed):
        logger.warning(f"Microphone check failed: {event.error}")
        return event.error
    logger.info(f"Microphone check passed on {event.device}")
    return None


async def run_section(
    config: SpeaktestConfig,
    source: QuestionSource,
    submission: SubmissionChannel,
    test_id: str,
    section_type: str,
    use_mock: bool = False,
    commands: "asyncio.Queue[str] | None" = None,
) -> SetCompleted | None:
    """Administer one section.

    The submission channel is closed before returning, so in-flight
    submissions settle while the loop is still running.

    Args:
        config: Loaded configuration
        source: Where questions come from
        submission: Where recordings go
        test_id: Test to run
        section_type: Section within the test
        use_mock: Use mock audio adapters
        commands: Command queue; stdin is read when None

    Returns:
        The SetCompleted event, or None if the user quit early.

    Raises:
        NoQuestionsAvailableError: If the section has no questions
    """
    scheduler = LoopScheduler()
    use_mock = use_mock or config.audio.use_mock

    sequencer = QuestionSequencer.from_source(
        source,
        test_id,
        section_type,
        scheduler=scheduler,
        playback_factory=lambda: create_playback_adapter(scheduler, config.audio, use_mock),
        capture_factory=lambda qid: create_capture_adapter(scheduler, qid, config.audio, use_mock),
        submission=submission,
        gate=MicrophoneGate(),
        auto_start=config.exchange.auto_start,
        auto_advance=config.exchange.auto_advance,
    )

    finished = asyncio.Event()
    result: list[SetCompleted] = []

    def on_event(event: SequencerEvent) -> None:
        if isinstance(event, SetCompleted):
            result.append(event)
            finished.set()

    subscription = sequencer.events.subscribe(on_event)
    view = ConsoleView(sequencer)

    if commands is None:
        commands = asyncio.Queue()
        _start_console_reader(commands)

    try:
        sequencer.begin()
        while not finished.is_set():
            get_command = asyncio.create_task(commands.get())
            wait_finished = asyncio.create_task(finished.wait())
            done, pending = await asyncio.wait(
                {get_command, wait_finished}, return_when=asyncio.FIRST_COMPLETED
            )
            for task in pending:
                task.cancel()
            if get_command in done and not apply_command(sequencer, get_command.result()):
                logger.info("Section abandoned by user")
                break
    finally:
        sequencer.close()
        view.close()
        subscription.dispose()
        close = getattr(submission, "close", None)
        if close is not None:
            await asyncio.to_thread(close)

    return result[0] if result else None


__all__ = [
    "COMMANDS",
    "ConsoleView",
    "apply_command",
    "build_question_source",
    "build_submission_channel",
    "check_microphone",
    "run_section",
]
