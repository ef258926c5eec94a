"""Unit tests for the exchange data model and replay budget."""

import pytest

from speaktest.exchange.models import (
    VALID_TRANSITIONS,
    Phase,
    PromptRef,
    Question,
    QuestionSet,
)
from speaktest.exchange.replay import ReplayBudget


def make_question(question_id: str = "q1", **kwargs) -> Question:
    kwargs.setdefault("prompt", PromptRef(audio_url=f"{question_id}.wav"))
    kwargs.setdefault("time_limit", 15)
    return Question(question_id=question_id, **kwargs)


class TestPromptRef:
    """Tests for PromptRef."""

    def test_audio_prompt(self) -> None:
        """Test audio prompts report audio."""
        assert PromptRef(audio_url="a.wav").has_audio is True

    def test_text_prompt(self) -> None:
        """Test text-only prompts have no audio."""
        assert PromptRef(text="Read this").has_audio is False

    def test_empty_prompt_rejected(self) -> None:
        """Test a prompt needs something to present."""
        with pytest.raises(ValueError):
            PromptRef()


class TestQuestion:
    """Tests for Question validation."""

    def test_defaults(self) -> None:
        """Test default replay allowance and delay."""
        question = make_question()
        assert question.replay_allowance == 2
        assert question.prompt_delay == 0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"time_limit": 0},
            {"time_limit": -5},
            {"replay_allowance": -1},
            {"prompt_delay": -1},
        ],
    )
    def test_invalid_values_rejected(self, kwargs: dict) -> None:
        """Test invalid numeric fields raise ValueError."""
        with pytest.raises(ValueError):
            make_question(**kwargs)

    def test_empty_id_rejected(self) -> None:
        """Test question id is required."""
        with pytest.raises(ValueError):
            make_question("")


class TestQuestionSet:
    """Tests for QuestionSet."""

    def test_order_preserved(self) -> None:
        """Test iteration and indexing keep administration order."""
        qs = QuestionSet([make_question("a"), make_question("b"), make_question("c")])
        assert len(qs) == 3
        assert qs[1].question_id == "b"
        assert qs.ids == ["a", "b", "c"]
        assert [q.question_id for q in qs] == ["a", "b", "c"]

    def test_duplicate_ids_rejected(self) -> None:
        """Test ids must be unique."""
        with pytest.raises(ValueError, match="Duplicate"):
            QuestionSet([make_question("a"), make_question("a")])


class TestTransitions:
    """Tests for the transition table."""

    def test_every_phase_has_an_entry(self) -> None:
        """Test the table covers all phases."""
        assert set(VALID_TRANSITIONS) == set(Phase)

    def test_complete_is_terminal(self) -> None:
        """Test COMPLETE has no exits."""
        assert VALID_TRANSITIONS[Phase.COMPLETE] == frozenset()

    def test_error_only_returns_to_idle(self) -> None:
        """Test ERROR exits only through retry."""
        assert VALID_TRANSITIONS[Phase.ERROR] == frozenset({Phase.IDLE})

    def test_non_terminal_phases_can_fail(self) -> None:
        """Test every active phase may enter ERROR."""
        for phase in Phase:
            if phase not in (Phase.COMPLETE, Phase.ERROR):
                assert Phase.ERROR in VALID_TRANSITIONS[phase]

    def test_recording_can_go_back_to_replay(self) -> None:
        """Test the replay edge out of RECORDING."""
        assert Phase.REPLAY_PLAYING in VALID_TRANSITIONS[Phase.RECORDING]


class TestReplayBudget:
    """Tests for ReplayBudget."""

    def test_consume_until_exhausted(self) -> None:
        """Test exactly `allowance` replays are granted."""
        budget = ReplayBudget(2)
        assert budget.try_consume() is True
        assert budget.try_consume() is True
        assert budget.try_consume() is False
        assert budget.used == 2
        assert budget.remaining == 0

    def test_zero_allowance(self) -> None:
        """Test a zero budget refuses immediately."""
        budget = ReplayBudget(0)
        assert budget.try_consume() is False
        assert budget.used == 0

    def test_denied_request_leaves_counter(self) -> None:
        """Test refusals do not change state."""
        budget = ReplayBudget(1)
        budget.try_consume()
        for _ in range(5):
            budget.try_consume()
        assert budget.used == 1
        assert budget.allowance == 1

    def test_negative_allowance_rejected(self) -> None:
        """Test allowance must not be negative."""
        with pytest.raises(ValueError):
            ReplayBudget(-1)
