"""Submission channels for finished recordings.

A channel accepts an artifact keyed by question id and reports the outcome
through a concurrent.futures.Future. The exchange core never retries a
failed submission; it only records the failure as a warning.
"""

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import httpx

from ..audio.capture import RecordingArtifact

logger = logging.getLogger(__name__)

ANSWERS_PREFIX = "answers"


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of one submission.

    Attributes:
        question_id: Question the artifact answered
        success: Whether the artifact was accepted
        error: Failure description when not accepted
        location: Where the artifact ended up (path or URL), if known
    """

    question_id: str
    success: bool
    error: str | None = None
    location: str | None = None


class SubmissionChannel(Protocol):
    """Interface for persisting recordings."""

    def submit(self, question_id: str, artifact: RecordingArtifact) -> "Future[SubmissionResult]":
        """Hand over an artifact. Ownership passes to the channel.

        Returns:
            Future resolving to the SubmissionResult. May complete on any thread.
        """
        ...


class MemorySubmissionChannel:
    """In-memory channel for tests and dry runs.

    By default every submission succeeds immediately. Ids in `failing`
    are rejected. With auto_resolve=False, futures stay pending until
    resolve() is called.
    """

    def __init__(self, auto_resolve: bool = True, failing: set[str] | None = None) -> None:
        self._auto_resolve = auto_resolve
        self._failing = set(failing or ())
        self._submitted: list[tuple[str, RecordingArtifact]] = []
        self._pending: dict[str, Future] = {}

    def submit(self, question_id: str, artifact: RecordingArtifact) -> "Future[SubmissionResult]":
        """Store the artifact and resolve (or park) its future."""
        self._submitted.append((question_id, artifact))
        future: Future[SubmissionResult] = Future()
        if self._auto_resolve:
            future.set_result(self._result_for(question_id))
        else:
            self._pending[question_id] = future
        return future

    def resolve(self, question_id: str, success: bool = True, error: str | None = None) -> None:
        """Complete a parked submission."""
        future = self._pending.pop(question_id)
        future.set_result(
            SubmissionResult(
                question_id=question_id,
                success=success,
                error=error if not success else None,
                location=None if not success else f"memory://{question_id}",
            )
        )

    @property
    def submitted(self) -> list[tuple[str, RecordingArtifact]]:
        """All (question_id, artifact) pairs received, in order."""
        return self._submitted.copy()

    @property
    def submitted_ids(self) -> list[str]:
        """Question ids received, in order."""
        return [qid for qid, _ in self._submitted]

    @property
    def pending_ids(self) -> list[str]:
        """Question ids whose submission is still parked."""
        return list(self._pending)

    def _result_for(self, question_id: str) -> SubmissionResult:
        if question_id in self._failing:
            return SubmissionResult(question_id, success=False, error="Rejected by channel")
        return SubmissionResult(question_id, success=True, location=f"memory://{question_id}")


class _ExecutorChannel(ABC):
    """Runs blocking submissions on a single worker thread."""

    def __init__(self, executor: ThreadPoolExecutor | None = None) -> None:
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="speaktest-submit"
        )
        self._lock = threading.Lock()

    def submit(self, question_id: str, artifact: RecordingArtifact) -> "Future[SubmissionResult]":
        return self._executor.submit(self._deliver, question_id, artifact)

    def close(self) -> None:
        """Wait for in-flight submissions and stop the worker."""
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    @abstractmethod
    def _deliver(self, question_id: str, artifact: RecordingArtifact) -> SubmissionResult:
        """Deliver one artifact on the worker thread."""


class DirectorySubmissionChannel(_ExecutorChannel):
    """Writes each artifact to `<directory>/<question_id>.wav`."""

    def __init__(self, directory: Path | str, executor: ThreadPoolExecutor | None = None) -> None:
        """Initialize the channel.

        Args:
            directory: Target directory, created on first write
            executor: Optional shared executor
        """
        super().__init__(executor)
        self._directory = Path(directory).expanduser()

    @property
    def directory(self) -> Path:
        """Get the target directory."""
        return self._directory

    def _deliver(self, question_id: str, artifact: RecordingArtifact) -> SubmissionResult:
        path = self._directory / artifact.filename
        try:
            with self._lock:
                self._directory.mkdir(parents=True, exist_ok=True)
                path.write_bytes(artifact.data)
        except OSError as e:
            logger.warning(f"Could not save recording for {question_id}: {e}")
            return SubmissionResult(question_id, success=False, error=str(e))

        logger.info(f"Recording saved for question {question_id}: {path}")
        return SubmissionResult(question_id, success=True, location=str(path))


class HttpSubmissionChannel(_ExecutorChannel):
    """Uploads artifacts to the exam service as multipart form data."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        """Initialize the channel.

        Args:
            base_url: Exam service root URL
            timeout: Request timeout in seconds
            client: Optional preconfigured httpx client
            executor: Optional shared executor
        """
        super().__init__(executor)
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client

    def _deliver(self, question_id: str, artifact: RecordingArtifact) -> SubmissionResult:
        url = f"{self._base_url}/save_recording"
        files = {
            "audio": (
                f"{ANSWERS_PREFIX}/{artifact.filename}",
                artifact.data,
                artifact.content_type,
            )
        }
        data = {
            "question_id": question_id,
            "duration_ms": str(artifact.duration_ms),
        }

        try:
            if self._client is not None:
                response = self._client.post(url, files=files, data=data)
            else:
                with httpx.Client(timeout=self._timeout) as client:
                    response = client.post(url, files=files, data=data)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.warning(f"Upload for {question_id} timed out: {e}")
            return SubmissionResult(question_id, success=False, error=f"Request timed out: {e}")
        except httpx.HTTPStatusError as e:
            error = f"HTTP error {e.response.status_code}: {e.response.text}"
            logger.warning(f"Upload for {question_id} rejected: {error}")
            return SubmissionResult(question_id, success=False, error=error)
        except httpx.HTTPError as e:
            logger.warning(f"Upload for {question_id} failed: {e}")
            return SubmissionResult(question_id, success=False, error=str(e))

        logger.info(f"Recording uploaded for question {question_id}")
        return SubmissionResult(question_id, success=True, location=url)


__all__ = [
    "DirectorySubmissionChannel",
    "HttpSubmissionChannel",
    "MemorySubmissionChannel",
    "SubmissionChannel",
    "SubmissionResult",
]
