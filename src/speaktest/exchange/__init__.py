"""Exchange module: per-question state machine and the question sequencer."""

from .models import Phase, PromptRef, Question, QuestionSet, SessionState
from .replay import ReplayBudget
from .sequencer import (
    QuestionCompleted,
    QuestionFailed,
    QuestionOutcome,
    QuestionSequencer,
    QuestionStarted,
    SetCompleted,
)
from .session import (
    ExchangeSession,
    PhaseChanged,
    SessionFailed,
    SubmissionWarning,
    TimeRemaining,
)

__all__ = [
    "ExchangeSession",
    "Phase",
    "PhaseChanged",
    "PromptRef",
    "Question",
    "QuestionCompleted",
    "QuestionFailed",
    "QuestionOutcome",
    "QuestionSequencer",
    "QuestionSet",
    "QuestionStarted",
    "ReplayBudget",
    "SessionFailed",
    "SessionState",
    "SetCompleted",
    "SubmissionWarning",
    "TimeRemaining",
]
