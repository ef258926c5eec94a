"""PortAudio backend using PyAudio.

Provides PlaybackAdapter and CaptureAdapter implementations on top of
PyAudio. Blocking stream I/O runs on worker threads; every event is handed
back to the scheduler thread with call_soon_threadsafe, so the exchange
core stays single-threaded.
"""

import io
import logging
import threading
import wave
from pathlib import Path
from typing import Any

import httpx

from ...errors import (
    DeviceDeniedError,
    DeviceUnavailableError,
    PlaybackFailureError,
    ProtocolMisuseError,
)
from ...events import EventEmitter
from ...timing.scheduler import Scheduler
from ..capture import (
    CaptureAcquired,
    CaptureEvent,
    CaptureFailed,
    CaptureStopped,
    build_artifact,
)
from ..playback import PlaybackEnded, PlaybackEvent, PlaybackFailed, PlaybackStarted

# PyAudio import with fallback for type hints
try:
    import pyaudio

    PYAUDIO_AVAILABLE = True
except ImportError:
    PYAUDIO_AVAILABLE = False
    pyaudio = None

logger = logging.getLogger(__name__)

THREAD_JOIN_TIMEOUT_S = 1.0


def _find_device(pa: Any, name: str, want_input: bool) -> int | None:
    """Get device index for a configured device name, None for default."""
    if name == "default":
        return None

    key = "maxInputChannels" if want_input else "maxOutputChannels"
    for i in range(pa.get_device_count()):
        info = pa.get_device_info_by_index(i)
        if name.lower() in info["name"].lower() and info[key] > 0:
            return i

    logger.warning(f"Audio device '{name}' not found, using default")
    return None


class PyAudioPlaybackAdapter:
    """Prompt player for WAV resources given as URLs or file paths.

    Implements the PlaybackAdapter protocol.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        device_name: str = "default",
        chunk_size: int = 1024,
        fetch_timeout: float = 10.0,
    ) -> None:
        """Initialize playback.

        Args:
            scheduler: Scheduler that receives playback events
            device_name: Output device name or "default"
            chunk_size: Frames written per stream call
            fetch_timeout: Timeout in seconds for downloading a prompt

        Raises:
            RuntimeError: If PyAudio is not available
        """
        if not PYAUDIO_AVAILABLE:
            raise RuntimeError("PyAudio not available. Install with: pip install pyaudio")

        self._scheduler = scheduler
        self._device_name = device_name
        self._chunk_size = chunk_size
        self._fetch_timeout = fetch_timeout

        self._resource: str | None = None
        self._cache: dict[str, bytes] = {}
        self._position = 0
        self._position_lock = threading.Lock()
        self._is_playing = False
        self._token = 0
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None
        self.events: EventEmitter[PlaybackEvent] = EventEmitter("playback.events")

    def load(self, resource: str) -> None:
        """Select a resource, silencing the previous one."""
        self.stop()
        self._token += 1
        self._resource = resource
        self._set_position(0)

    def play(self) -> None:
        """Start playback on a worker thread."""
        if self._resource is None:
            raise ProtocolMisuseError("play() called before load()")
        if self._is_playing:
            return

        self._token += 1
        self._is_playing = True
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            args=(self._token, self._resource, self._stop_event, self._get_position()),
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop playback, keeping the position. Idempotent."""
        self._token += 1
        self._is_playing = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=THREAD_JOIN_TIMEOUT_S)
            self._thread = None
        self._stop_event = None

    def seek_to_start(self) -> None:
        """Rewind to the first frame."""
        was_playing = self._is_playing
        self.stop()
        self._set_position(0)
        if was_playing:
            self.play()

    @property
    def is_playing(self) -> bool:
        """Return True while audio is playing."""
        return self._is_playing

    def _get_position(self) -> int:
        with self._position_lock:
            return self._position

    def _set_position(self, frame: int) -> None:
        with self._position_lock:
            self._position = frame

    def _fetch(self, resource: str) -> bytes:
        if resource in self._cache:
            return self._cache[resource]

        try:
            if resource.startswith(("http://", "https://")):
                with httpx.Client(timeout=self._fetch_timeout) as client:
                    response = client.get(resource)
                    response.raise_for_status()
                data = response.content
            else:
                data = Path(resource).read_bytes()
        except httpx.HTTPError as e:
            raise PlaybackFailureError(f"Could not fetch prompt: {e}", resource=resource) from e
        except OSError as e:
            raise PlaybackFailureError(f"Could not read prompt: {e}", resource=resource) from e

        self._cache[resource] = data
        return data

    def _run(self, token: int, resource: str, stop_event: threading.Event, start_frame: int) -> None:
        """Worker thread: fetch, decode and play one resource."""
        pa = None
        stream = None
        try:
            data = self._fetch(resource)
            try:
                wf = wave.open(io.BytesIO(data), "rb")
            except (wave.Error, EOFError) as e:
                raise PlaybackFailureError(
                    f"Unsupported prompt format: {e}", resource=resource
                ) from e

            with wf:
                pa = pyaudio.PyAudio()
                stream = pa.open(
                    format=pa.get_format_from_width(wf.getsampwidth()),
                    channels=wf.getnchannels(),
                    rate=wf.getframerate(),
                    output=True,
                    output_device_index=_find_device(pa, self._device_name, want_input=False),
                )
                wf.setpos(min(start_frame, wf.getnframes()))
                self._post(token, PlaybackStarted(resource))

                while not stop_event.is_set():
                    frames = wf.readframes(self._chunk_size)
                    if not frames:
                        break
                    stream.write(frames)
                    self._set_position(wf.tell())

            if not stop_event.is_set():
                self._set_position(0)
                self._post(token, PlaybackEnded(resource))

        except PlaybackFailureError as e:
            self._post(token, PlaybackFailed(resource, e))
        except Exception as e:
            logger.warning(f"Playback of {resource} failed: {e}")
            self._post(
                token,
                PlaybackFailed(resource, PlaybackFailureError(str(e), resource=resource)),
            )
        finally:
            if stream is not None:
                stream.stop_stream()
                stream.close()
            if pa is not None:
                pa.terminate()

    def _post(self, token: int, event: PlaybackEvent) -> None:
        self._scheduler.call_soon_threadsafe(lambda: self._deliver(token, event))

    def _deliver(self, token: int, event: PlaybackEvent) -> None:
        if token != self._token:
            return
        if isinstance(event, (PlaybackEnded, PlaybackFailed)):
            self._is_playing = False
            self._thread = None
            self._stop_event = None
        self.events.emit(event)


class PyAudioCaptureAdapter:
    """Microphone capture producing a WAV artifact.

    Implements the CaptureAdapter protocol.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        question_id: str,
        device_name: str = "default",
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_size: int = 1024,
    ) -> None:
        """Initialize capture.

        Args:
            scheduler: Scheduler that receives capture events
            question_id: Question the artifact belongs to
            device_name: Input device name or "default"
            sample_rate: Sample rate in Hz
            channels: Number of channels (1 for mono)
            chunk_size: Frames per buffer
        """
        self._scheduler = scheduler
        self._question_id = question_id
        self._device_name = device_name
        self._sample_rate = sample_rate
        self._channels = channels
        self._chunk_size = chunk_size
        self._sample_width = 2  # 16-bit audio

        self._acquired = False
        self._cycle_used = False
        self._is_recording = False
        self._token = 0
        self._start_event: threading.Event | None = None
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None
        self.events: EventEmitter[CaptureEvent] = EventEmitter("capture.events")

    def acquire(self) -> None:
        """Open the input stream on a worker thread; the outcome follows as an event."""
        if self._thread is not None:
            raise ProtocolMisuseError("acquire() called twice without release()")

        token = self._token
        if not PYAUDIO_AVAILABLE:
            error = DeviceUnavailableError("PyAudio not available", device=self._device_name)
            self._scheduler.call_soon(lambda: self._deliver(token, CaptureFailed(error)))
            return

        self._start_event = threading.Event()
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            args=(token, self._start_event, self._stop_event),
            name=f"speaktest-capture-{self._question_id}",
            daemon=True,
        )
        self._thread.start()

    def start(self) -> None:
        """Let the worker begin reading from the open stream."""
        if not self._acquired:
            raise ProtocolMisuseError("start() called before the device was acquired")
        if self._cycle_used:
            raise ProtocolMisuseError("Only one start()/stop() cycle is allowed per acquire()")

        self._cycle_used = True
        self._is_recording = True
        self._start_event.set()

    def stop(self) -> None:
        """Signal the worker to finish; the artifact follows as an event."""
        if not self._is_recording:
            return
        self._is_recording = False
        if self._stop_event is not None:
            self._stop_event.set()

    def release(self) -> None:
        """Drop the device in any state along with any pending artifact.

        The worker closes the stream itself once it sees the release.
        """
        self._token += 1
        self._is_recording = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._start_event is not None:
            self._start_event.set()
        if self._thread is not None:
            self._thread.join(timeout=THREAD_JOIN_TIMEOUT_S)
            if self._thread.is_alive():
                logger.warning("Capture worker still closing the input stream")
            self._thread = None
        self._start_event = None
        self._stop_event = None
        self._acquired = False
        self._cycle_used = False

    @property
    def is_recording(self) -> bool:
        """Return True while recording."""
        return self._is_recording

    def _run(self, token: int, start_event: threading.Event, stop_event: threading.Event) -> None:
        """Worker thread: open the stream, wait for start, read until stopped."""
        pa = None
        stream = None
        try:
            try:
                pa = pyaudio.PyAudio()
                stream = pa.open(
                    format=pyaudio.paInt16,
                    channels=self._channels,
                    rate=self._sample_rate,
                    input=True,
                    input_device_index=_find_device(pa, self._device_name, want_input=True),
                    frames_per_buffer=self._chunk_size,
                    start=False,
                )
            except OSError as e:
                logger.warning(f"Microphone unavailable: {e}")
                self._post(token, CaptureFailed(self._map_open_error(e)))
                return

            self._post(token, CaptureAcquired(device=self._device_name))
            start_event.wait()
            if token != self._token:
                return

            stream.start_stream()
            chunks: list[bytes] = []
            try:
                while not stop_event.is_set():
                    chunks.append(stream.read(self._chunk_size, exception_on_overflow=False))
            except OSError as e:
                logger.warning(f"Microphone read failed: {e}")
                error = DeviceUnavailableError(
                    f"Microphone read failed: {e}", device=self._device_name
                )
                self._post(token, CaptureFailed(error))
                return

            artifact = build_artifact(
                self._question_id,
                b"".join(chunks),
                self._sample_rate,
                self._channels,
                self._sample_width,
            )
            self._post(token, CaptureStopped(artifact))
        finally:
            if stream is not None:
                if stream.is_active():
                    stream.stop_stream()
                stream.close()
            if pa is not None:
                pa.terminate()

    def _map_open_error(self, error: OSError) -> DeviceDeniedError:
        message = str(error)
        if "permission" in message.lower() or "not authorized" in message.lower():
            return DeviceDeniedError(f"Microphone permission denied: {message}", self._device_name)
        return DeviceUnavailableError(f"Microphone unavailable: {message}", self._device_name)

    def _post(self, token: int, event: CaptureEvent) -> None:
        self._scheduler.call_soon_threadsafe(lambda: self._deliver(token, event))

    def _deliver(self, token: int, event: CaptureEvent) -> None:
        if token != self._token:
            return
        if isinstance(event, CaptureAcquired):
            self._acquired = True
        self.events.emit(event)


__all__ = ["PYAUDIO_AVAILABLE", "PyAudioCaptureAdapter", "PyAudioPlaybackAdapter"]
