"""Unit tests for the question sequencer."""

import pytest

from speaktest.audio.mock_capture import MockAudioCapture, MockPlaybackAdapter
from speaktest.errors import (
    AdvanceBlockedError,
    NoQuestionsAvailableError,
    ProtocolMisuseError,
    QuestionSourceError,
)
from speaktest.exchange.models import Phase, PromptRef, Question
from speaktest.exchange.sequencer import (
    QuestionCompleted,
    QuestionFailed,
    QuestionSequencer,
    QuestionStarted,
    SequencerEvent,
    SetCompleted,
)
from speaktest.service.submission import MemorySubmissionChannel
from speaktest.timing.scheduler import VirtualScheduler

PROMPT_SECONDS = 2.0
TIME_LIMIT = 5


def make_questions(*ids: str) -> list[Question]:
    return [
        Question(question_id=qid, prompt=PromptRef(audio_url=f"{qid}.wav"), time_limit=TIME_LIMIT)
        for qid in ids
    ]


class FakeSource:
    """Question source returning a fixed list or raising."""

    def __init__(self, questions: list[Question] | None = None, error: Exception | None = None):
        self.questions = questions or []
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def fetch_questions(self, test_id: str, section_type: str) -> list[Question]:
        self.calls.append((test_id, section_type))
        if self.error is not None:
            raise self.error
        return self.questions


class Rig:
    """Sequencer wired to mocks on a virtual clock."""

    def __init__(self, *ids: str, auto_advance: bool = False, auto_start: bool = True) -> None:
        self.sched = VirtualScheduler()
        self.submission = MemorySubmissionChannel()
        self.deny: set[str] = set()
        self.sequencer = QuestionSequencer(
            make_questions(*ids),
            self.sched,
            lambda: MockPlaybackAdapter(self.sched, default_duration=PROMPT_SECONDS),
            lambda qid: MockAudioCapture(self.sched, qid, deny=qid in self.deny),
            self.submission,
            auto_start=auto_start,
            auto_advance=auto_advance,
        )
        self.events: list[SequencerEvent] = []
        self.sequencer.events.subscribe(self.events.append)

    def finish_question(self) -> None:
        self.sched.advance(PROMPT_SECONDS + TIME_LIMIT)

    def of_type(self, kind: type) -> list:
        return [e for e in self.events if isinstance(e, kind)]


class TestSequencerBasics:
    """Tests for cursor handling."""

    def test_begin_opens_first_question(self) -> None:
        """Test begin() starts a session on question 0."""
        rig = Rig("q1", "q2")
        session = rig.sequencer.begin()

        assert session is rig.sequencer.session
        assert rig.sequencer.current().question_id == "q1"
        assert session.phase == Phase.PROMPT_PLAYING
        assert rig.of_type(QuestionStarted)[0].index == 0

    def test_begin_without_auto_start_waits(self) -> None:
        """Test auto_start=False leaves the session IDLE."""
        rig = Rig("q1", auto_start=False)
        session = rig.sequencer.begin()
        assert session.phase == Phase.IDLE

    def test_begin_twice_raises(self) -> None:
        """Test only one session at a time."""
        rig = Rig("q1")
        rig.sequencer.begin()
        with pytest.raises(ProtocolMisuseError):
            rig.sequencer.begin()

    def test_empty_set_finishes_immediately(self) -> None:
        """Test begin() on no questions emits SetCompleted."""
        rig = Rig()
        assert rig.sequencer.begin() is None
        assert rig.sequencer.is_finished
        assert len(rig.of_type(SetCompleted)) == 1

    def test_current_is_none_past_end(self) -> None:
        """Test current() after the last question."""
        rig = Rig("q1")
        rig.sequencer.begin()
        rig.finish_question()
        assert rig.sequencer.advance() is False
        assert rig.sequencer.current() is None


class TestAdvance:
    """Tests for advance() and skip()."""

    def test_advance_blocked_until_complete(self) -> None:
        """Test advance() refuses an unfinished question."""
        rig = Rig("q1", "q2")
        rig.sequencer.begin()
        rig.sched.advance(PROMPT_SECONDS + 1.0)

        with pytest.raises(AdvanceBlockedError):
            rig.sequencer.advance()
        assert rig.sequencer.cursor == 0

    def test_advance_after_complete(self) -> None:
        """Test advance() opens the next question."""
        rig = Rig("q1", "q2")
        rig.sequencer.begin()
        rig.finish_question()

        assert rig.sequencer.advance() is True
        assert rig.sequencer.current().question_id == "q2"
        assert rig.of_type(QuestionCompleted)[0].question_id == "q1"

    def test_skip_passes_unfinished_question(self) -> None:
        """Test the skip override releases the microphone."""
        rig = Rig("q1", "q2")
        rig.sequencer.begin()
        rig.sched.advance(PROMPT_SECONDS + 1.0)
        assert rig.sequencer.gate.is_held

        assert rig.sequencer.skip() is True

        assert rig.sequencer.cursor == 1
        assert rig.sequencer.outcomes[0].completed is False
        assert not rig.sequencer.gate.is_held
        assert rig.submission.submitted == []

    def test_set_completed_emitted_once(self) -> None:
        """Test exhaustion signals once with all outcomes."""
        rig = Rig("q1", "q2")
        rig.sequencer.begin()
        rig.finish_question()
        rig.sequencer.advance()
        rig.sequencer.skip()

        assert rig.sequencer.advance() is False
        done = rig.of_type(SetCompleted)
        assert len(done) == 1
        assert done[0].completed_count == 1
        assert done[0].skipped_count == 1

    def test_advance_before_begin_is_blocked(self) -> None:
        """Test advance() with no open session keeps the cursor in place."""
        rig = Rig("q1", "q2")

        with pytest.raises(AdvanceBlockedError):
            rig.sequencer.advance()
        assert rig.sequencer.cursor == 0
        assert rig.sequencer.outcomes == []

    def test_skip_before_begin_records_outcome(self) -> None:
        """Test skipping an unopened question still counts it."""
        rig = Rig("q1", "q2", auto_start=False)

        assert rig.sequencer.skip() is True

        assert rig.sequencer.cursor == 1
        assert [o.question_id for o in rig.sequencer.outcomes] == ["q1"]
        assert rig.sequencer.outcomes[0].completed is False
        assert rig.of_type(QuestionStarted)[0].question.question_id == "q2"

    def test_advance_after_close_is_blocked(self) -> None:
        """Test close() does not let the next advance pass the question."""
        rig = Rig("q1", "q2")
        rig.sequencer.begin()
        rig.sequencer.close()

        with pytest.raises(AdvanceBlockedError):
            rig.sequencer.advance()
        assert rig.sequencer.skip() is True
        assert rig.sequencer.outcomes[0].completed is False

    def test_auto_advance(self) -> None:
        """Test COMPLETE moves on by itself when configured."""
        rig = Rig("q1", "q2", "q3", auto_advance=True)
        rig.sequencer.begin()
        for _ in range(3):
            rig.finish_question()

        assert rig.sequencer.is_finished
        assert rig.submission.submitted_ids == ["q1", "q2", "q3"]
        assert rig.of_type(SetCompleted)[0].completed_count == 3

    def test_no_auto_advance_by_default(self) -> None:
        """Test the cursor stays on a completed question."""
        rig = Rig("q1", "q2")
        rig.sequencer.begin()
        rig.finish_question()
        rig.sched.advance(60.0)

        assert rig.sequencer.cursor == 0
        assert rig.sequencer.session.phase == Phase.COMPLETE


class TestFailures:
    """Tests for failed questions."""

    def test_failure_is_reported_not_retried(self) -> None:
        """Test QuestionFailed and no automatic progress."""
        rig = Rig("q1", "q2", auto_advance=True)
        rig.deny.add("q1")
        rig.sequencer.begin()
        rig.sched.advance(60.0)

        failed = rig.of_type(QuestionFailed)
        assert len(failed) == 1
        assert failed[0].question_id == "q1"
        assert rig.sequencer.cursor == 0
        assert rig.sequencer.session.phase == Phase.ERROR

    def test_retry_replays_failed_question(self) -> None:
        """Test retry() restarts the question when auto_start is on."""
        rig = Rig("q1")
        rig.deny.add("q1")
        rig.sequencer.begin()
        rig.sched.advance(PROMPT_SECONDS)
        assert rig.sequencer.session.phase == Phase.ERROR

        rig.deny.clear()
        rig.sequencer.retry()
        assert rig.sequencer.session.phase == Phase.PROMPT_PLAYING

        rig.finish_question()
        assert rig.sequencer.session.phase == Phase.COMPLETE

    def test_retry_needs_error(self) -> None:
        """Test retry() on a healthy session raises."""
        rig = Rig("q1")
        rig.sequencer.begin()
        with pytest.raises(ProtocolMisuseError):
            rig.sequencer.retry()

    def test_submission_warnings_collected(self) -> None:
        """Test rejected submissions surface as sequencer warnings."""
        rig = Rig("q1", "q2", auto_advance=True)
        rig.submission = MemorySubmissionChannel(failing={"q2"})
        rig.sequencer._submission = rig.submission
        rig.sequencer.begin()
        rig.finish_question()
        rig.finish_question()

        done = rig.of_type(SetCompleted)[0]
        assert [w.question_id for w in done.warnings] == ["q2"]
        assert rig.of_type(QuestionCompleted)[1].warning is not None


class TestFromSource:
    """Tests for QuestionSequencer.from_source."""

    def test_loads_questions(self) -> None:
        """Test questions from the source are used in order."""
        sched = VirtualScheduler()
        source = FakeSource(make_questions("a", "b"))
        sequencer = QuestionSequencer.from_source(
            source,
            "1",
            "repeat",
            scheduler=sched,
            playback_factory=lambda: MockPlaybackAdapter(sched),
            capture_factory=lambda qid: MockAudioCapture(sched, qid),
            submission=MemorySubmissionChannel(),
        )
        assert sequencer.questions.ids == ["a", "b"]
        assert source.calls == [("1", "repeat")]

    def test_empty_source_raises(self) -> None:
        """Test an empty section is refused."""
        with pytest.raises(NoQuestionsAvailableError):
            QuestionSequencer.from_source(FakeSource([]), "1", "reading")

    def test_source_error_raises(self) -> None:
        """Test source failures become NoQuestionsAvailableError."""
        source = FakeSource(error=QuestionSourceError("boom", status_code=503))
        with pytest.raises(NoQuestionsAvailableError) as exc_info:
            QuestionSequencer.from_source(source, "1", "reading")
        assert exc_info.value.status_code == 503
