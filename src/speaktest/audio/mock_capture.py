"""Mock prompt playback and microphone capture.

Scheduler-driven implementations of PlaybackAdapter and CaptureAdapter that
need no audio hardware. Durations, denials and device failures are
configurable, which makes them the adapters of choice for tests and for
dry runs of a section.
"""

from ..errors import (
    DeviceDeniedError,
    DeviceUnavailableError,
    PlaybackFailureError,
    ProtocolMisuseError,
)
from ..events import EventEmitter
from ..timing.scheduler import Handle, Scheduler
from .capture import (
    CaptureAcquired,
    CaptureEvent,
    CaptureFailed,
    CaptureStopped,
    build_artifact,
)
from .playback import PlaybackEnded, PlaybackEvent, PlaybackFailed, PlaybackStarted


class MockPlaybackAdapter:
    """Mock prompt player.

    Each resource "plays" for a configured number of seconds of scheduler
    time. Resources listed in `failing` emit PlaybackFailed instead.

    Implements the PlaybackAdapter protocol.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        default_duration: float = 5.0,
        durations: dict[str, float] | None = None,
        failing: set[str] | None = None,
    ) -> None:
        """Initialize mock playback.

        Args:
            scheduler: Clock used to time playback
            default_duration: Seconds for resources without an explicit duration
            durations: Per-resource durations in seconds
            failing: Resources that fail to play
        """
        self._scheduler = scheduler
        self._default_duration = default_duration
        self._durations = dict(durations or {})
        self._failing = set(failing or ())
        self._resource: str | None = None
        self._position = 0.0
        self._started_at = 0.0
        self._is_playing = False
        self._token = 0
        self._handles: list[Handle] = []
        self._play_count = 0
        self._played: list[str] = []
        self.events: EventEmitter[PlaybackEvent] = EventEmitter("mock_playback.events")

    def set_duration(self, resource: str, seconds: float) -> None:
        """Set how long a resource plays."""
        self._durations[resource] = seconds

    def set_failing(self, resource: str, failing: bool = True) -> None:
        """Make a resource fail (or succeed again) on play()."""
        if failing:
            self._failing.add(resource)
        else:
            self._failing.discard(resource)

    def load(self, resource: str) -> None:
        """Select a resource, dropping anything pending for the old one."""
        self._invalidate()
        self._is_playing = False
        self._resource = resource
        self._position = 0.0

    def play(self) -> None:
        """Start playing from the current position."""
        if self._resource is None:
            raise ProtocolMisuseError("play() called before load()")
        if self._is_playing:
            return

        resource = self._resource
        self._play_count += 1
        self._played.append(resource)
        self._invalidate()
        token = self._token

        if resource in self._failing:
            error = PlaybackFailureError(f"Cannot play {resource}", resource=resource)
            self._handles.append(
                self._scheduler.call_soon(
                    lambda: self._deliver(token, PlaybackFailed(resource, error), finished=True)
                )
            )
            return

        self._is_playing = True
        self._started_at = self._scheduler.now()
        remaining = max(0.0, self._duration_of(resource) - self._position)
        self._handles.append(
            self._scheduler.call_soon(lambda: self._deliver(token, PlaybackStarted(resource)))
        )
        self._handles.append(
            self._scheduler.call_later(
                remaining,
                lambda: self._deliver(token, PlaybackEnded(resource), finished=True),
            )
        )

    def stop(self) -> None:
        """Stop playback, keeping the position."""
        if self._is_playing:
            self._position += self._scheduler.now() - self._started_at
            self._is_playing = False
        self._invalidate()

    def seek_to_start(self) -> None:
        """Rewind to position zero, restarting the clock if playing."""
        was_playing = self._is_playing
        self.stop()
        self._position = 0.0
        if was_playing:
            self._play_count -= 1
            self._played.pop()
            self.play()

    @property
    def is_playing(self) -> bool:
        """Return True while 'playing'."""
        return self._is_playing

    @property
    def resource(self) -> str | None:
        """Get the loaded resource."""
        return self._resource

    @property
    def play_count(self) -> int:
        """Get number of times play was called."""
        return self._play_count

    @property
    def played_resources(self) -> list[str]:
        """Get every resource passed to play, in order."""
        return self._played.copy()

    def _duration_of(self, resource: str) -> float:
        return self._durations.get(resource, self._default_duration)

    def _invalidate(self) -> None:
        self._token += 1
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()

    def _deliver(self, token: int, event: PlaybackEvent, finished: bool = False) -> None:
        if token != self._token:
            return
        if finished:
            self._is_playing = False
            self._position = 0.0
        self.events.emit(event)


class MockAudioCapture:
    """Mock microphone for testing.

    Records silence, or slices of supplied PCM data, for as long as the
    scheduler clock runs between start() and stop().

    Implements the CaptureAdapter protocol.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        question_id: str,
        sample_rate: int = 16000,
        channels: int = 1,
        sample_width: int = 2,
        deny: bool = False,
        unavailable: bool = False,
        acquire_latency: float = 0.0,
        finalize_latency: float = 0.0,
        audio_data: bytes | None = None,
    ) -> None:
        """Initialize mock capture.

        Args:
            scheduler: Clock used to measure recording length
            question_id: Question the produced artifact belongs to
            sample_rate: Sample rate in Hz
            channels: Number of audio channels
            sample_width: Bytes per sample
            deny: If True, acquire() reports permission denied
            unavailable: If True, acquire() reports no device
            acquire_latency: Seconds until acquire() resolves
            finalize_latency: Seconds between stop() and the artifact
            audio_data: PCM to "record" instead of silence
        """
        self._scheduler = scheduler
        self._question_id = question_id
        self._sample_rate = sample_rate
        self._channels = channels
        self._sample_width = sample_width
        self._deny = deny
        self._unavailable = unavailable
        self._acquire_latency = acquire_latency
        self._finalize_latency = finalize_latency
        self._audio_source = audio_data

        self._acquiring = False
        self._acquired = False
        self._cycle_used = False
        self._is_recording = False
        self._started_at = 0.0
        self._token = 0
        self._handles: list[Handle] = []
        self._acquire_count = 0
        self._release_count = 0
        self.events: EventEmitter[CaptureEvent] = EventEmitter("mock_capture.events")

    def acquire(self) -> None:
        """Request the mock device."""
        if self._acquiring or self._acquired:
            raise ProtocolMisuseError("acquire() called twice without release()")

        self._acquiring = True
        self._acquire_count += 1
        token = self._token
        self._handles.append(
            self._scheduler.call_later(self._acquire_latency, lambda: self._resolve_acquire(token))
        )

    def start(self) -> None:
        """Start mock recording."""
        if not self._acquired:
            raise ProtocolMisuseError("start() called before the device was acquired")
        if self._cycle_used:
            raise ProtocolMisuseError("Only one start()/stop() cycle is allowed per acquire()")

        self._cycle_used = True
        self._is_recording = True
        self._started_at = self._scheduler.now()

    def stop(self) -> None:
        """Stop mock recording and schedule the artifact."""
        if not self._is_recording:
            return

        self._is_recording = False
        elapsed = self._scheduler.now() - self._started_at
        artifact = build_artifact(
            self._question_id,
            self._read_pcm(elapsed),
            self._sample_rate,
            self._channels,
            self._sample_width,
        )
        token = self._token
        self._handles.append(
            self._scheduler.call_later(
                self._finalize_latency,
                lambda: self._deliver(token, CaptureStopped(artifact)),
            )
        )

    def release(self) -> None:
        """Free the mock device and drop pending results."""
        self._token += 1
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
        if self._acquired or self._acquiring:
            self._release_count += 1
        self._acquiring = False
        self._acquired = False
        self._is_recording = False
        self._cycle_used = False

    def fail_device(self) -> None:
        """Simulate the device disappearing mid-recording."""
        self._is_recording = False
        error = DeviceUnavailableError("Microphone disconnected", device="mock")
        self.events.emit(CaptureFailed(error))

    @property
    def is_recording(self) -> bool:
        """Return True while recording."""
        return self._is_recording

    @property
    def is_acquired(self) -> bool:
        """Return True while the device is held."""
        return self._acquired

    @property
    def acquire_count(self) -> int:
        """Get number of acquire() calls."""
        return self._acquire_count

    @property
    def release_count(self) -> int:
        """Get number of releases of a held or pending device."""
        return self._release_count

    def _resolve_acquire(self, token: int) -> None:
        if token != self._token:
            return
        self._acquiring = False
        if self._deny:
            self.events.emit(
                CaptureFailed(DeviceDeniedError("Microphone permission denied", device="mock"))
            )
            return
        if self._unavailable:
            self.events.emit(
                CaptureFailed(DeviceUnavailableError("No microphone found", device="mock"))
            )
            return
        self._acquired = True
        self.events.emit(CaptureAcquired(device="mock"))

    def _read_pcm(self, seconds: float) -> bytes:
        frame_size = self._channels * self._sample_width
        bytes_needed = int(seconds * self._sample_rate) * frame_size
        if self._audio_source is None:
            return bytes(bytes_needed)
        data = self._audio_source[:bytes_needed]
        return data + bytes(bytes_needed - len(data))

    def _deliver(self, token: int, event: CaptureEvent) -> None:
        if token == self._token:
            self.events.emit(event)


__all__ = ["MockAudioCapture", "MockPlaybackAdapter"]
