"""Microphone capture protocol, events and data classes.

Defines the interface for response recording that all capture
implementations must follow, plus the gate that keeps the microphone
exclusive across sessions.
"""

import io
import wave
from dataclasses import dataclass
from typing import Protocol

from ..errors import DeviceDeniedError, ProtocolMisuseError
from ..events import EventEmitter


@dataclass(frozen=True)
class RecordingArtifact:
    """Finished response recording for one question.

    Attributes:
        question_id: Question the recording answers
        data: WAV-encoded audio bytes
        duration_ms: Captured duration in milliseconds
        sample_rate: Sample rate in Hz
        channels: Number of audio channels
        sample_width: Bytes per sample
        content_type: MIME type of `data`
    """

    question_id: str
    data: bytes
    duration_ms: int
    sample_rate: int
    channels: int
    sample_width: int
    content_type: str = "audio/wav"

    @property
    def duration_seconds(self) -> float:
        """Captured duration in seconds."""
        return self.duration_ms / 1000

    @property
    def filename(self) -> str:
        """File name used when the artifact is stored or uploaded."""
        return f"{self.question_id}.wav"


@dataclass(frozen=True)
class CaptureAcquired:
    """Device access was granted."""

    device: str


@dataclass(frozen=True)
class CaptureFailed:
    """Device access was refused or the device failed."""

    error: DeviceDeniedError


@dataclass(frozen=True)
class CaptureStopped:
    """Recording finalized."""

    artifact: RecordingArtifact


CaptureEvent = CaptureAcquired | CaptureFailed | CaptureStopped


class CaptureAdapter(Protocol):
    """Interface for response capture.

    One start()/stop() cycle is allowed per acquire(). Results of acquire()
    and stop() arrive asynchronously on `events`.
    """

    events: EventEmitter[CaptureEvent]

    def acquire(self) -> None:
        """Request microphone access.

        Emits CaptureAcquired or CaptureFailed.
        """
        ...

    def start(self) -> None:
        """Begin recording.

        Raises:
            ProtocolMisuseError: If not acquired or already started
        """
        ...

    def stop(self) -> None:
        """Stop recording; emits CaptureStopped with the artifact.

        A second call is a no-op.
        """
        ...

    def release(self) -> None:
        """Free the device in any state and drop any pending artifact."""
        ...

    @property
    def is_recording(self) -> bool:
        """Return True between start() and stop()."""
        ...


class MicrophoneGate:
    """Process-wide exclusive claim on the microphone.

    A session reserves the gate before calling acquire() and frees it only
    after release() has returned, so two acquisitions never overlap.
    """

    def __init__(self) -> None:
        self._owner: object | None = None
        self._reservations = 0

    @property
    def is_held(self) -> bool:
        """Return True while some owner holds the microphone."""
        return self._owner is not None

    @property
    def owner(self) -> object | None:
        """Get the current holder."""
        return self._owner

    @property
    def reservations(self) -> int:
        """Total number of successful reservations."""
        return self._reservations

    def reserve(self, owner: object) -> None:
        """Claim the microphone for owner.

        Raises:
            ProtocolMisuseError: If a different owner holds it
        """
        if self._owner is not None and self._owner is not owner:
            raise ProtocolMisuseError(
                f"Microphone already held by {self._owner!r}; release it first"
            )
        if self._owner is None:
            self._reservations += 1
        self._owner = owner

    def free(self, owner: object) -> None:
        """Give up the claim. Ignored if owner does not hold the gate."""
        if self._owner is owner:
            self._owner = None


def encode_wav(pcm: bytes, sample_rate: int, channels: int, sample_width: int) -> bytes:
    """Wrap raw PCM in a WAV container.

    Args:
        pcm: Raw PCM bytes
        sample_rate: Sample rate in Hz
        channels: Number of channels
        sample_width: Bytes per sample

    Returns:
        WAV file bytes
    """
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buffer.getvalue()


def build_artifact(
    question_id: str,
    pcm: bytes,
    sample_rate: int,
    channels: int,
    sample_width: int,
) -> RecordingArtifact:
    """Create a RecordingArtifact from raw PCM, deriving its duration."""
    frame_size = channels * sample_width
    frames = len(pcm) // frame_size if frame_size else 0
    duration_ms = int(frames * 1000 / sample_rate) if sample_rate else 0
    return RecordingArtifact(
        question_id=question_id,
        data=encode_wav(pcm, sample_rate, channels, sample_width),
        duration_ms=duration_ms,
        sample_rate=sample_rate,
        channels=channels,
        sample_width=sample_width,
    )


__all__ = [
    "CaptureAcquired",
    "CaptureAdapter",
    "CaptureEvent",
    "CaptureFailed",
    "CaptureStopped",
    "MicrophoneGate",
    "RecordingArtifact",
    "build_artifact",
    "encode_wav",
]
