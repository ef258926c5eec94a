"""Audio module for speaktest.

Provides prompt playback and response capture adapters with a mock and a
PortAudio implementation of each.

Usage:
    # Adapters for the configured backend
    playback = create_playback_adapter(scheduler, config.audio)
    capture = create_capture_adapter(scheduler, "q1", config.audio)

    # For testing, use mock implementations
    from speaktest.audio.mock_capture import MockAudioCapture, MockPlaybackAdapter
"""

from typing import TYPE_CHECKING

from .capture import (
    CaptureAcquired,
    CaptureAdapter,
    CaptureEvent,
    CaptureFailed,
    CaptureStopped,
    MicrophoneGate,
    RecordingArtifact,
    build_artifact,
    encode_wav,
)
from .playback import (
    PlaybackAdapter,
    PlaybackEnded,
    PlaybackEvent,
    PlaybackFailed,
    PlaybackStarted,
)

if TYPE_CHECKING:
    from ..config import AudioConfig
    from ..timing.scheduler import Scheduler


def create_capture_adapter(
    scheduler: "Scheduler",
    question_id: str,
    config: "AudioConfig | None" = None,
    use_mock: bool = False,
) -> CaptureAdapter:
    """Create a capture adapter for one recording attempt.

    Args:
        scheduler: Scheduler that receives capture events
        question_id: Question the recording will answer
        config: Audio configuration (uses defaults if None)
        use_mock: If True, return mock implementation for testing

    Returns:
        CaptureAdapter implementation
    """
    device_name = "default"
    sample_rate = 16000
    channels = 1
    chunk_size = 1024

    if config is not None:
        device_name = config.input_device
        sample_rate = config.sample_rate
        channels = config.channels
        chunk_size = config.chunk_size
        use_mock = use_mock or config.use_mock

    if use_mock:
        from .mock_capture import MockAudioCapture

        return MockAudioCapture(
            scheduler,
            question_id,
            sample_rate=sample_rate,
            channels=channels,
        )

    from .backends.portaudio import PyAudioCaptureAdapter

    return PyAudioCaptureAdapter(
        scheduler,
        question_id,
        device_name=device_name,
        sample_rate=sample_rate,
        channels=channels,
        chunk_size=chunk_size,
    )


def create_playback_adapter(
    scheduler: "Scheduler",
    config: "AudioConfig | None" = None,
    use_mock: bool = False,
) -> PlaybackAdapter:
    """Create a prompt playback adapter.

    Args:
        scheduler: Scheduler that receives playback events
        config: Audio configuration (uses defaults if None)
        use_mock: If True, return mock implementation for testing

    Returns:
        PlaybackAdapter implementation

    Raises:
        RuntimeError: If no suitable audio backend is available
    """
    device_name = "default"
    chunk_size = 1024

    if config is not None:
        device_name = config.output_device
        chunk_size = config.chunk_size
        use_mock = use_mock or config.use_mock

    if use_mock:
        from .mock_capture import MockPlaybackAdapter

        return MockPlaybackAdapter(scheduler)

    from .backends.portaudio import PyAudioPlaybackAdapter

    return PyAudioPlaybackAdapter(scheduler, device_name=device_name, chunk_size=chunk_size)


__all__ = [
    "CaptureAcquired",
    "CaptureAdapter",
    "CaptureEvent",
    "CaptureFailed",
    "CaptureStopped",
    "MicrophoneGate",
    "PlaybackAdapter",
    "PlaybackEnded",
    "PlaybackEvent",
    "PlaybackFailed",
    "PlaybackStarted",
    "RecordingArtifact",
    "build_artifact",
    "create_capture_adapter",
    "create_playback_adapter",
    "encode_wav",
]
