"""Service module: question sources and submission channels."""

from .questions import (
    ExamServiceClient,
    FileQuestionSource,
    QuestionSource,
    question_from_dict,
)
from .submission import (
    DirectorySubmissionChannel,
    HttpSubmissionChannel,
    MemorySubmissionChannel,
    SubmissionChannel,
    SubmissionResult,
)

__all__ = [
    "DirectorySubmissionChannel",
    "ExamServiceClient",
    "FileQuestionSource",
    "HttpSubmissionChannel",
    "MemorySubmissionChannel",
    "QuestionSource",
    "SubmissionChannel",
    "SubmissionResult",
    "question_from_dict",
]
