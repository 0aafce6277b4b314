"""Chunked audio recorder reading a microphone stream on a background thread."""

import logging
import threading
import time
from threading import Event, Thread
from typing import Callable, List, Optional, Protocol

from ..models.audio import EncodingFormat
from .device import AudioStream

logger = logging.getLogger(__name__)


class Encoder(Protocol):
    """Delivers buffered audio via on_data on a cadence and signals on_stop once."""

    def start(self) -> None: ...

    def request_data(self) -> None: ...

    def stop(self) -> None: ...


EncoderFactory = Callable[
    [AudioStream, EncodingFormat, Callable[[bytes], None], Callable[[], None]],
    Encoder,
]


class ChunkRecorder:
    """Continuous capture that flushes buffered PCM every timeslice."""

    def __init__(
        self,
        stream: AudioStream,
        encoding: EncodingFormat,
        on_data: Callable[[bytes], None],
        on_stop: Callable[[], None],
        timeslice_ms: int = 500,
        frames_per_read: int = 1024,
    ):
        """Initialize chunk recorder.

        Args:
            stream: Open microphone stream to read from
            encoding: Negotiated encoding (container is applied at finalization)
            on_data: Called with each flushed buffer, possibly empty
            on_stop: Called exactly once after the last flush
            timeslice_ms: Flush cadence in milliseconds
            frames_per_read: Frames requested per stream read
        """
        self.stream = stream
        self.encoding = encoding
        self.on_data = on_data
        self.on_stop = on_stop
        self.timeslice_seconds = timeslice_ms / 1000.0
        self.frames_per_read = frames_per_read

        # Recording thread management
        self.recording_thread: Optional[Thread] = None
        self.stop_event = Event()
        self.is_recording = False

        self.total_chunks = 0
        self._pending: List[bytes] = []
        self._lock = threading.Lock()
        # held across take and delivery so buffers reach on_data in capture order
        self._flush_lock = threading.Lock()
        self._stop_emitted = False

    def start(self) -> None:
        """Start reading the stream in a background thread."""
        if self.is_recording:
            logger.warning("Recorder already running")
            return

        self.stop_event.clear()
        self.is_recording = True
        self.recording_thread = Thread(target=self._record_continuously, daemon=True)
        self.recording_thread.name = "ChunkRecorderThread"
        self.recording_thread.start()
        logger.info(f"Chunk recorder started ({self.encoding.label}, "
                    f"{self.timeslice_seconds:.2f}s timeslice)")

    def request_data(self) -> None:
        """Flush whatever is buffered right now."""
        self._flush()

    def stop(self) -> None:
        """Stop reading; the final flush and on_stop happen on the recorder thread."""
        if not self.is_recording:
            return

        self.stop_event.set()
        thread = self.recording_thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=2.0)
            if thread.is_alive():
                logger.warning("Recorder thread did not stop cleanly")
        self.is_recording = False

    def _flush(self) -> None:
        with self._flush_lock:
            with self._lock:
                data = b"".join(self._pending)
                self._pending.clear()
                self.total_chunks += 1
                chunk_number = self.total_chunks
            logger.debug(f"Flushing chunk {chunk_number}: {len(data)} bytes")
            self.on_data(data)

    def _emit_stop(self) -> None:
        with self._lock:
            if self._stop_emitted:
                return
            self._stop_emitted = True
        self.on_stop()

    def _record_continuously(self) -> None:
        """Internal method: read loop in background thread."""
        last_flush = time.monotonic()
        try:
            while not self.stop_event.is_set():
                try:
                    audio_chunk = self.stream.read(self.frames_per_read)
                except OSError:
                    logger.warning("Input stream ended while recording")
                    break

                with self._lock:
                    self._pending.append(audio_chunk)

                now = time.monotonic()
                if now - last_flush >= self.timeslice_seconds:
                    self._flush()
                    last_flush = now
        finally:
            self._flush()
            self.is_recording = False
            logger.info(f"Chunk recorder stopped. Total chunks: {self.total_chunks}")
            self._emit_stop()
