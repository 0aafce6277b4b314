"""Playback of finalized recordings through a PyAudio output stream."""

import asyncio
import logging
import threading
from threading import Event, Thread
from typing import Callable, Optional, Protocol

import numpy as np

from ..storage.object_urls import is_local_address
from ..storage.supabase import download
from .formats import decode_audio

logger = logging.getLogger(__name__)


class Player(Protocol):
    """A playback handle bound to one address."""

    address: str

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def stop(self) -> None: ...


# (address, on_ended, on_error) -> Player
PlayerFactory = Callable[[str, Callable[[], None], Callable[[Exception], None]], Player]


class PyAudioPlayer:
    """Decodes a recording with soundfile and plays it on a background thread."""

    def __init__(self, address: str, registry, on_ended: Callable[[], None],
                 on_error: Callable[[Exception], None], frames_per_buffer: int = 1024,
                 timeout_seconds: float = 30.0):
        """Initialize player.

        Args:
            address: Local ephemeral or durable address of the recording
            registry: Resolves local addresses to blobs
            on_ended: Called when playback reaches the end
            on_error: Called with the exception if loading or playback fails
            frames_per_buffer: Frames written per output call
            timeout_seconds: Download timeout for durable addresses
        """
        self.address = address
        self.registry = registry
        self.on_ended = on_ended
        self.on_error = on_error
        self.frames_per_buffer = frames_per_buffer
        self.timeout_seconds = timeout_seconds

        self._samples: Optional[np.ndarray] = None
        self._sample_rate = 0
        self._position = 0
        self._halt = Event()
        self._thread: Optional[Thread] = None

    @property
    def is_playing(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._halt.is_set()

    def play(self) -> None:
        if self.is_playing:
            return
        self._halt.clear()
        self._thread = Thread(target=self._play_continuously, daemon=True, name="PyAudioPlayerThread")
        self._thread.start()

    def pause(self) -> None:
        self._halt.set()
        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=2.0)

    def stop(self) -> None:
        self.pause()
        self._position = 0

    def _load(self) -> None:
        if self._samples is not None:
            return
        if is_local_address(self.address):
            blob = self.registry.resolve(self.address) if self.registry else None
            if blob is None:
                raise ValueError(f"Local address is no longer valid: {self.address}")
            data = blob.data
        else:
            data = asyncio.run(download(self.address, self.timeout_seconds))
        self._samples, self._sample_rate = decode_audio(data)
        logger.debug(f"Decoded {len(self._samples)} frames at {self._sample_rate}Hz from {self.address}")

    def _play_continuously(self) -> None:
        """Internal method: output loop in background thread."""
        pyaudio_instance = None
        stream = None
        try:
            import pyaudio

            self._load()
            pyaudio_instance = pyaudio.PyAudio()
            stream = pyaudio_instance.open(
                format=pyaudio.paInt16,
                channels=self._samples.shape[1],
                rate=self._sample_rate,
                output=True,
                frames_per_buffer=self.frames_per_buffer,
            )
            logger.info(f"Playback started at frame {self._position}")

            while not self._halt.is_set() and self._position < len(self._samples):
                end = min(self._position + self.frames_per_buffer, len(self._samples))
                stream.write(self._samples[self._position:end].tobytes())
                self._position = end

            if self._halt.is_set():
                logger.info(f"Playback paused at frame {self._position}")
                return
        except Exception as e:
            if self._halt.is_set():
                logger.info(f"Playback stopped before it started: {e}")
                return
            logger.error(f"Playback failed: {e}")
            self._halt.set()
            self.on_error(e)
            return
        finally:
            if stream is not None:
                stream.stop_stream()
                stream.close()
            if pyaudio_instance is not None:
                pyaudio_instance.terminate()

        self._position = 0
        self._halt.set()
        logger.info("Playback ended")
        self.on_ended()
