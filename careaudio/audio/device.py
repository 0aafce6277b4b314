"""Microphone acquisition and stream wrappers."""

import logging
import threading
from typing import Callable, List, Optional, Protocol

from ..errors import CAPTURE_UNKNOWN, DEVICE_NOT_FOUND, PERMISSION_DENIED, DeviceError

logger = logging.getLogger(__name__)

# PortAudio error numbers surfaced by PyAudio as OSError.errno
PA_INVALID_CHANNEL_COUNT = -9998
PA_INVALID_DEVICE = -9996
PA_DEVICE_UNAVAILABLE = -9985

_NOT_FOUND_ERRNOS = (PA_INVALID_CHANNEL_COUNT, PA_INVALID_DEVICE, PA_DEVICE_UNAVAILABLE)


class AudioTrack:
    """One input track; may end on its own, independently of the recorder."""

    def __init__(self, label: str = "microphone"):
        self.label = label
        self.ready_state = "live"
        self._listeners: List[Callable[["AudioTrack"], None]] = []
        self._lock = threading.Lock()

    def add_ended_listener(self, listener: Callable[["AudioTrack"], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def end(self) -> None:
        """The device went away: mark ended and notify listeners once."""
        with self._lock:
            if self.ready_state == "ended":
                return
            self.ready_state = "ended"
            listeners = list(self._listeners)
        logger.warning(f"Track '{self.label}' ended")
        for listener in listeners:
            listener(self)

    def stop(self) -> None:
        """Explicit stop; listeners are not notified."""
        with self._lock:
            self.ready_state = "ended"
            self._listeners.clear()


class AudioStream(Protocol):
    tracks: List[AudioTrack]
    sample_rate: int
    channels: int

    def read(self, frames: int) -> bytes: ...

    def close(self) -> None: ...


class MicrophoneSource(Protocol):
    def request_microphone(self) -> AudioStream: ...


def map_device_error(exc: BaseException) -> DeviceError:
    """Map a backend failure onto PERMISSION_DENIED / DEVICE_NOT_FOUND / CAPTURE_UNKNOWN."""
    if isinstance(exc, DeviceError):
        return exc
    message = str(exc)
    lowered = message.lower()
    if isinstance(exc, PermissionError) or "permission" in lowered or "not authorized" in lowered:
        return DeviceError(PERMISSION_DENIED, message)
    if isinstance(exc, OSError):
        if exc.errno in _NOT_FOUND_ERRNOS or "no default input" in lowered or "invalid device" in lowered:
            return DeviceError(DEVICE_NOT_FOUND, message)
    return DeviceError(CAPTURE_UNKNOWN, message)


class PyAudioStream:
    """An open PyAudio input stream exposing one track."""

    def __init__(self, pyaudio_instance, stream, sample_rate: int, channels: int):
        self.pyaudio_instance = pyaudio_instance
        self.stream = stream
        self.sample_rate = sample_rate
        self.channels = channels
        self.tracks = [AudioTrack("microphone")]
        self._closed = False
        self._lock = threading.Lock()

    def read(self, frames: int) -> bytes:
        try:
            return self.stream.read(frames, exception_on_overflow=False)
        except OSError as e:
            logger.error(f"Audio stream read failed: {e}")
            self.tracks[0].end()
            raise

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        for track in self.tracks:
            track.stop()
        try:
            self.stream.stop_stream()
            self.stream.close()
        except OSError as e:
            logger.warning(f"Error closing audio stream: {e}")
        finally:
            self.pyaudio_instance.terminate()
        logger.info("Microphone released")


class PyAudioMicrophone:
    """Acquires the default (or a given) input device through PyAudio."""

    def __init__(self, sample_rate: int = 16000, channels: int = 1,
                 frames_per_buffer: int = 1024, device_index: Optional[int] = None):
        self.sample_rate = sample_rate
        self.channels = channels
        self.frames_per_buffer = frames_per_buffer
        self.device_index = device_index

    def request_microphone(self) -> PyAudioStream:
        import pyaudio

        pyaudio_instance = pyaudio.PyAudio()
        try:
            if self.device_index is None:
                pyaudio_instance.get_default_input_device_info()
            stream = pyaudio_instance.open(
                format=pyaudio.paInt16,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                frames_per_buffer=self.frames_per_buffer,
                input_device_index=self.device_index,
            )
        except Exception as e:
            pyaudio_instance.terminate()
            raise map_device_error(e) from e

        logger.info(f"Microphone opened: {self.sample_rate}Hz, {self.channels} channel(s), "
                    f"{self.frames_per_buffer} frames/buffer")
        return PyAudioStream(pyaudio_instance, stream, self.sample_rate, self.channels)
