"""Capture session: the state machine owning one microphone recording attempt.

    IDLE --start--> REQUESTING --granted--> RECORDING --stop/track end--> FINALIZING
    REQUESTING --denied--> IDLE
    FINALIZING --data--> READY,  FINALIZING --no data--> FAILED
    READY/FAILED --clear--> IDLE

Every state change goes through `_transition`, under one re-entrant lock.
Callbacks (`notify`, `on_blob`) are invoked outside the lock; `on_state_change`
is invoked under it and must not block.
"""

import logging
import threading
import time
import uuid
from typing import Callable, Dict, Optional, Set

from ..errors import (
    CAPTURE_UNKNOWN,
    NO_DATA_CAPTURED,
    RECORDING_TOO_SHORT,
    UNEXPECTED_TRACK_END,
)
from ..models.audio import AudioArtifact, AudioBlob, EncodingFormat
from ..models.events import Notice, NoticeLevel
from ..models.session import CaptureState, RecordingSession, SessionSnapshot
from .capture import ChunkRecorder, Encoder, EncoderFactory
from .device import AudioStream, AudioTrack, MicrophoneSource, map_device_error
from .formats import LAST_RESORT, CapabilityProbe, encode_pcm, negotiate_format
from .notices import make_notice
from .timer import IntervalTicker, Ticker, TickerFactory

logger = logging.getLogger(__name__)

StateCallback = Callable[[CaptureState, CaptureState], None]
BlobCallback = Callable[[AudioArtifact], None]
NoticeCallback = Callable[[Notice], None]

_TRANSITIONS: Dict[CaptureState, Set[CaptureState]] = {
    CaptureState.IDLE: {CaptureState.REQUESTING},
    CaptureState.REQUESTING: {CaptureState.RECORDING, CaptureState.IDLE},
    CaptureState.RECORDING: {CaptureState.FINALIZING},
    CaptureState.FINALIZING: {CaptureState.READY, CaptureState.FAILED},
    CaptureState.READY: {CaptureState.IDLE},
    CaptureState.FAILED: {CaptureState.IDLE},
}

_BUSY_STATES = (CaptureState.REQUESTING, CaptureState.RECORDING, CaptureState.FINALIZING)


class CaptureSession:
    """Manages the full lifecycle of one recording attempt."""

    def __init__(
        self,
        microphone: MicrophoneSource,
        probe: CapabilityProbe,
        registry,
        encoder_factory: Optional[EncoderFactory] = None,
        ticker_factory: TickerFactory = IntervalTicker,
        min_duration_seconds: int = 2,
        flush_grace_seconds: float = 0.3,
        finalize_timeout_seconds: float = 5.0,
        track_health_check: bool = True,
        sample_rate: int = 16000,
        channels: int = 1,
        timeslice_ms: int = 500,
        frames_per_read: int = 1024,
        notify: Optional[NoticeCallback] = None,
        on_blob: Optional[BlobCallback] = None,
        on_state_change: Optional[StateCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize capture session.

        Args:
            microphone: Device capture API
            probe: Capability probe used once, lazily, to negotiate the encoding
            registry: Local ephemeral address registry for finalized blobs
            encoder_factory: Builds the chunk encoder for a granted stream
            ticker_factory: Builds the one-second elapsed-time ticker
            min_duration_seconds: Stop requests before this are rejected
            flush_grace_seconds: Wait after requesting the last flush
            finalize_timeout_seconds: Wait for the encoder stop signal before forcing finalization
            track_health_check: Poll track state each tick for silently ended tracks
            sample_rate: Fallback sample rate when the stream does not report one
            channels: Fallback channel count when the stream does not report one
            timeslice_ms: Default encoder flush cadence
            frames_per_read: Default encoder read size
        """
        self.microphone = microphone
        self.probe = probe
        self.registry = registry
        self.ticker_factory = ticker_factory
        self.min_duration_seconds = min_duration_seconds
        self.flush_grace_seconds = flush_grace_seconds
        self.finalize_timeout_seconds = finalize_timeout_seconds
        self.track_health_check = track_health_check
        self.sample_rate = sample_rate
        self.channels = channels
        self._notify_callback = notify
        self._on_blob = on_blob
        self._on_state_change = on_state_change
        self._sleep = sleep

        if encoder_factory is None:
            def encoder_factory(stream, encoding, on_data, on_stop):
                return ChunkRecorder(stream, encoding, on_data, on_stop,
                                     timeslice_ms=timeslice_ms, frames_per_read=frames_per_read)
        self.encoder_factory = encoder_factory

        self._lock = threading.RLock()
        self._state = CaptureState.IDLE
        self._encoding: Optional[EncodingFormat] = None
        self._session: Optional[RecordingSession] = None
        self._stream: Optional[AudioStream] = None
        self._stream_format = (sample_rate, channels)
        self._encoder: Optional[Encoder] = None
        self._ticker: Optional[Ticker] = None
        self._watchdog: Optional[threading.Timer] = None
        self._artifact: Optional[AudioArtifact] = None
        self._finalized = threading.Event()

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def elapsed_seconds(self) -> int:
        session = self._session
        return session.elapsed_seconds if session else 0

    @property
    def encoding_format(self) -> str:
        return self._encoding.label if self._encoding else ""

    @property
    def artifact(self) -> Optional[AudioArtifact]:
        return self._artifact

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            session = self._session
            return SessionSnapshot(
                state=self._state,
                elapsed_seconds=session.elapsed_seconds if session else 0,
                encoding_format=self.encoding_format,
                chunk_count=len(session.chunks) if session else 0,
                byte_count=session.byte_count if session else 0,
                address=self._artifact.address if self._artifact else None,
            )

    def negotiated_format(self) -> EncodingFormat:
        """Negotiate the encoding on first use and reuse it afterwards."""
        with self._lock:
            if self._encoding is None:
                self._encoding = negotiate_format(self.probe, self.sample_rate)
            return self._encoding

    def start_capture(self) -> bool:
        """Request the microphone and start recording.

        Returns:
            True if recording started; False if ignored or the device was refused
        """
        with self._lock:
            if self._state in _BUSY_STATES:
                logger.warning(f"Capture already in progress ({self._state.value}), ignoring start")
                return False
            if self._state in (CaptureState.READY, CaptureState.FAILED):
                self._reset_locked()

            encoding = self.negotiated_format()
            session = RecordingSession(session_id=uuid.uuid4().hex[:12], encoding=encoding)
            self._session = session
            self._transition(CaptureState.REQUESTING)

        logger.info(f"Requesting microphone for session {session.session_id}")
        try:
            stream = self.microphone.request_microphone()
        except Exception as e:
            error = map_device_error(e)
            logger.error(f"Microphone request failed: {error}")
            with self._lock:
                self._session = None
                self._transition(CaptureState.IDLE)
            self._notify(make_notice(error.code))
            return False

        with self._lock:
            self._stream = stream
            self._stream_format = (
                getattr(stream, "sample_rate", self.sample_rate),
                getattr(stream, "channels", self.channels),
            )
            self._finalized.clear()
            session.chunks.clear()
            session.elapsed_seconds = 0
            for track in getattr(stream, "tracks", []):
                track.add_ended_listener(self._on_track_ended)

            try:
                self._encoder = self.encoder_factory(stream, encoding, self._on_data, self._on_encoder_stop)
                self._encoder.start()
            except Exception as e:
                logger.error(f"Encoder failed to start: {e}")
                self._encoder = None
                self._release_stream_locked()
                self._session = None
                self._transition(CaptureState.IDLE)
                failed = True
            else:
                failed = False
                self._ticker = self.ticker_factory(1.0, self._on_tick)
                self._ticker.start()
                self._transition(CaptureState.RECORDING)

        if failed:
            self._notify(make_notice(CAPTURE_UNKNOWN))
            return False

        logger.info(f"Recording started, session {session.session_id}, format {encoding.label}")
        return True

    def stop_capture(self) -> bool:
        """Stop recording and finalize.

        Returns:
            True if the session moved to finalization; False if ignored or too short
        """
        with self._lock:
            if self._state != CaptureState.RECORDING:
                logger.info(f"No active recording to stop ({self._state.value})")
                return False
            elapsed = self._session.elapsed_seconds
            if elapsed < self.min_duration_seconds:
                too_short = True
            else:
                too_short = False
                ticker = self._begin_finalizing_locked()
                encoder = self._encoder

        if too_short:
            logger.info(f"Recording too short: {elapsed}s < {self.min_duration_seconds}s")
            self._notify(make_notice(RECORDING_TOO_SHORT, NoticeLevel.WARNING,
                                     min_seconds=self.min_duration_seconds))
            return False

        self._cancel_ticker(ticker)
        self._complete_stop(encoder, flush=True)
        return True

    def clear(self) -> bool:
        """Reset a finished session to IDLE, releasing its local address."""
        with self._lock:
            if self._state not in (CaptureState.READY, CaptureState.FAILED):
                logger.debug(f"Nothing to clear ({self._state.value})")
                return False
            self._reset_locked()
        logger.info("Recording cleared")
        return True

    def shutdown(self) -> None:
        """Finish any active recording without the minimum-duration guard."""
        with self._lock:
            if self._state != CaptureState.RECORDING:
                return
            ticker = self._begin_finalizing_locked()
            encoder = self._encoder
        self._cancel_ticker(ticker)
        self._complete_stop(encoder, flush=False)

    def _on_data(self, chunk: bytes) -> None:
        if not chunk:
            return
        with self._lock:
            if self._session is None or self._state not in _BUSY_STATES:
                logger.debug(f"Dropping {len(chunk)} bytes outside of recording")
                return
            self._session.chunks.append(chunk)

    def _on_tick(self) -> None:
        track_ended = False
        with self._lock:
            if self._state != CaptureState.RECORDING or self._session is None:
                return
            self._session.elapsed_seconds += 1
            if self.track_health_check and self._stream is not None:
                track_ended = any(track.ready_state == "ended"
                                  for track in getattr(self._stream, "tracks", []))
        if track_ended:
            logger.warning("Health check found an ended track")
            self._on_track_ended(None)

    def _on_track_ended(self, track: Optional[AudioTrack]) -> None:
        with self._lock:
            if self._state != CaptureState.RECORDING:
                return
            logger.warning("Microphone track ended without an explicit stop, finalizing")
            ticker = self._begin_finalizing_locked()
            encoder = self._encoder

        self._cancel_ticker(ticker)
        self._notify(make_notice(UNEXPECTED_TRACK_END, NoticeLevel.WARNING))
        if encoder is not None:
            try:
                encoder.stop()
            except Exception as e:
                logger.error(f"Error stopping encoder after track end: {e}")

        if not self._finalized.is_set():
            with self._lock:
                if self._state == CaptureState.FINALIZING and self._watchdog is None:
                    self._watchdog = threading.Timer(self.finalize_timeout_seconds, self._finalize)
                    self._watchdog.daemon = True
                    self._watchdog.start()

    def _on_encoder_stop(self) -> None:
        self._finalize()

    def _begin_finalizing_locked(self) -> Optional[Ticker]:
        self._transition(CaptureState.FINALIZING)
        ticker, self._ticker = self._ticker, None
        return ticker

    def _cancel_ticker(self, ticker: Optional[Ticker]) -> None:
        if ticker is not None:
            ticker.cancel()

    def _complete_stop(self, encoder: Optional[Encoder], flush: bool) -> None:
        if encoder is not None:
            if flush:
                try:
                    encoder.request_data()
                except Exception as e:
                    logger.warning(f"Final flush request failed: {e}")
                if self.flush_grace_seconds > 0:
                    self._sleep(self.flush_grace_seconds)
            try:
                encoder.stop()
            except Exception as e:
                logger.error(f"Error stopping encoder: {e}")

        if not self._finalized.wait(self.finalize_timeout_seconds):
            logger.warning("Encoder did not signal stop in time, finalizing with buffered data")
            self._finalize()

    def _finalize(self) -> None:
        notice = None
        artifact = None
        with self._lock:
            if self._state != CaptureState.FINALIZING:
                return
            if self._watchdog is not None:
                self._watchdog.cancel()
                self._watchdog = None

            session = self._session
            chunks, session.chunks = session.chunks, []
            total_bytes = sum(len(chunk) for chunk in chunks)
            sample_rate, channels = self._stream_format
            self._encoder = None
            self._release_stream_locked()

            logger.info(f"Finalizing session {session.session_id}: {len(chunks)} chunks, "
                        f"{total_bytes} bytes, {session.elapsed_seconds}s")

            if total_bytes == 0:
                self._transition(CaptureState.FAILED)
                notice = make_notice(NO_DATA_CAPTURED)
            else:
                try:
                    data, encoding = self._encode(b"".join(chunks), session.encoding, sample_rate, channels)
                except Exception as e:
                    logger.error(f"Encoding as {LAST_RESORT.label} failed: {e}")
                    self._transition(CaptureState.FAILED)
                    notice = make_notice(CAPTURE_UNKNOWN)
                else:
                    artifact = AudioArtifact(
                        blob=AudioBlob(data, encoding.mime_type),
                        encoding=encoding,
                        duration_seconds=session.elapsed_seconds,
                        registry=self.registry,
                    )
                    artifact.ensure_local()
                    self._artifact = artifact
                    self._transition(CaptureState.READY)
            self._finalized.set()

        if notice is not None:
            self._notify(notice)
        if artifact is not None:
            logger.info(f"Recording ready: {artifact.blob.size} bytes ({artifact.encoding.label})")
            if self._on_blob:
                self._on_blob(artifact)

    def _encode(self, pcm: bytes, encoding: EncodingFormat, sample_rate: int, channels: int):
        """Encode in the negotiated format, re-encoding as the last resort if that fails."""
        try:
            return encode_pcm(pcm, encoding, sample_rate, channels), encoding
        except Exception as e:
            if encoding == LAST_RESORT:
                raise
            logger.warning(f"Encoding as {encoding.label} failed, falling back to {LAST_RESORT.label}: {e}")
        self._encoding = LAST_RESORT
        return encode_pcm(pcm, LAST_RESORT, sample_rate, channels), LAST_RESORT

    def _release_stream_locked(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.close()
        except Exception as e:
            logger.warning(f"Error releasing microphone: {e}")

    def _reset_locked(self) -> None:
        if self._artifact is not None:
            self._artifact.release_local()
            self._artifact = None
        self._session = None
        self._transition(CaptureState.IDLE)

    def _transition(self, to_state: CaptureState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        if to_state not in _TRANSITIONS[from_state]:
            raise RuntimeError(f"Illegal capture transition {from_state.value} -> {to_state.value}")
        self._state = to_state
        if self._session is not None:
            self._session.state = to_state
        logger.debug(f"Capture state {from_state.value} -> {to_state.value}")
        if self._on_state_change:
            self._on_state_change(from_state, to_state)

    def _notify(self, notice: Notice) -> None:
        logger.info(f"Notice [{notice.code}]: {notice.message}")
        if self._notify_callback:
            self._notify_callback(notice)
