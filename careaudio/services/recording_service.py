"""Recording service wiring capture, upload and playback for UI callers."""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..audio.device import MicrophoneSource, PyAudioMicrophone
from ..audio.formats import CapabilityProbe, SoundFileProbe, supported_formats
from ..audio.notices import NoticePublisher
from ..audio.player import PlayerFactory, PyAudioPlayer
from ..audio.session import CaptureSession
from ..config import CareAudioConfig
from ..models.audio import AudioArtifact, EncodingFormat
from ..models.events import Notice
from ..models.session import CaptureState, SessionSnapshot
from ..models.upload import UploadAttempt, UploadStatus
from ..storage.file_manager import FileManager
from ..storage.object_urls import ObjectUrlRegistry
from ..storage.supabase import SupabaseRecordStore, SupabaseStorage
from .playback import PlaybackController
from .upload_manager import UploadManager

logger = logging.getLogger(__name__)


class RecordingService:
    """Core service exposing capture, persistence and playback of one recording."""

    def __init__(
        self,
        config: CareAudioConfig,
        microphone: Optional[MicrophoneSource] = None,
        probe: Optional[CapabilityProbe] = None,
        storage=None,
        records=None,
        player_factory: Optional[PlayerFactory] = None,
        registry: Optional[ObjectUrlRegistry] = None,
        file_manager: Optional[FileManager] = None,
        notify: Optional[Callable[[Notice], None]] = None,
        on_blob: Optional[Callable[[AudioArtifact], None]] = None,
        on_address: Optional[Callable[[Optional[str]], None]] = None,
        owner_id: Optional[str] = None,
        parent_record_id: Optional[str] = None,
        **session_overrides,
    ):
        """Initialize recording service.

        Args:
            config: Application configuration
            microphone: Device capture API; PyAudio by default
            probe: Capability probe; libsndfile by default
            storage: Object storage service; Supabase Storage when configured
            records: Parent record store; Supabase table when configured
            player_factory: Builds playback handles; PyAudio by default
            registry: Local ephemeral address registry
            file_manager: Exports and pending-upload spool
            notify: Receives notices; published on pubsub by default
            on_blob: Called with each finalized artifact
            on_address: Called with the local address, then with the durable one
            owner_id: Owner of uploaded recordings
            parent_record_id: Parent record to link recordings to
            session_overrides: Extra CaptureSession arguments (encoder_factory, ticker_factory, sleep)
        """
        self.config = config
        self.owner_id = owner_id
        self.parent_record_id = parent_record_id
        self._on_blob = on_blob
        self._on_address = on_address

        self.publisher = NoticePublisher()
        self.notify = notify or self.publisher
        self.registry = registry or ObjectUrlRegistry()
        self.file_manager = file_manager or FileManager(config.get_data_directory())

        capture = config.capture_settings()
        self.microphone = microphone or PyAudioMicrophone(
            sample_rate=capture.sample_rate,
            channels=capture.channels,
            frames_per_buffer=capture.frames_per_buffer,
            device_index=capture.device_index,
        )
        self.probe = probe or SoundFileProbe(capture.playback_profile, capture.user_agent)

        logger.info("Initializing RecordingService...")
        self.upload_manager = self._setup_upload(storage, records)

        if player_factory is None:
            def player_factory(address, on_ended, on_error):
                return PyAudioPlayer(address, self.registry, on_ended, on_error,
                                     frames_per_buffer=capture.frames_per_buffer)

        self.playback = PlaybackController(
            player_factory,
            upload_manager=self.upload_manager,
            registry=self.registry,
            file_manager=self.file_manager,
            owner_id=owner_id,
            parent_record_id=parent_record_id,
            notify=self.notify,
            on_cleared=self._handle_cleared,
        )

        self.session = CaptureSession(
            self.microphone,
            self.probe,
            self.registry,
            min_duration_seconds=capture.min_duration_seconds,
            flush_grace_seconds=capture.flush_grace_seconds,
            finalize_timeout_seconds=capture.finalize_timeout_seconds,
            track_health_check=capture.track_health_check,
            sample_rate=capture.sample_rate,
            channels=capture.channels,
            timeslice_ms=capture.timeslice_ms,
            frames_per_read=capture.frames_per_buffer,
            notify=self.notify,
            on_blob=self._handle_blob,
            on_state_change=self.publisher.publish_state,
            **session_overrides,
        )
        logger.info("RecordingService ready")

    def _setup_upload(self, storage, records) -> Optional[UploadManager]:
        """Build the upload manager, from Supabase settings unless collaborators are given."""
        upload = self.config.upload_settings()

        if storage is None or records is None:
            supabase = self.config.supabase_settings()
            if not supabase.url:
                logger.warning("Supabase URL not configured, recordings stay local")
                return None
            try:
                api_key = self.config.get_supabase_api_key()
            except ValueError as e:
                logger.warning(f"{e}, recordings stay local")
                return None
            client_args = dict(access_token=supabase.access_token, timeout_seconds=upload.timeout_seconds)
            storage = storage or SupabaseStorage(supabase.url, api_key, supabase.bucket, **client_args)
            records = records or SupabaseRecordStore(supabase.url, api_key, table=supabase.table,
                                                     column=supabase.column,
                                                     key_column=supabase.key_column, **client_args)

        return UploadManager(
            storage,
            records,
            path_prefix=upload.path_prefix,
            file_prefix=upload.file_prefix,
            max_bytes=upload.max_bytes,
            timeout_seconds=upload.timeout_seconds,
            notify=self.notify,
            file_manager=self.file_manager if upload.spool_failed else None,
        )

    # Capture

    def start_capture(self) -> bool:
        if self.session.state in (CaptureState.READY, CaptureState.FAILED):
            self.playback.load(None)
        return self.session.start_capture()

    def stop_capture(self) -> bool:
        return self.session.stop_capture()

    def clear(self) -> bool:
        self.playback.load(None)
        cleared = self.session.clear()
        if cleared and self._on_address:
            self._on_address(None)
        return cleared

    def snapshot(self) -> SessionSnapshot:
        return self.session.snapshot()

    def negotiated_format(self) -> EncodingFormat:
        return self.session.negotiated_format()

    def formats(self) -> List[Tuple[EncodingFormat, bool]]:
        return supported_formats(self.probe, self.session.sample_rate)

    # Persistence

    async def persist(self, owner_id: Optional[str] = None,
                      parent_record_id: Optional[str] = None) -> Optional[UploadAttempt]:
        """Upload the current recording; without a parent id it stays local until linked.

        Returns:
            The upload attempt, or None if there is no recording or an upload is in flight
        """
        artifact = self.session.artifact
        if artifact is None:
            logger.info("No finalized recording to persist")
            return None

        self.owner_id = owner_id or self.owner_id
        self.parent_record_id = parent_record_id or self.parent_record_id
        self.playback.owner_id = self.owner_id
        self.playback.parent_record_id = self.parent_record_id

        if self.upload_manager is None:
            logger.warning("No storage configured, keeping the recording local")
            attempt = UploadAttempt(owner_id=self.owner_id, parent_record_id=self.parent_record_id,
                                    status=UploadStatus.PENDING, address=artifact.ensure_local())
        else:
            if not self.owner_id:
                raise ValueError("owner_id is required to persist a recording")
            attempt = await self.upload_manager.upload(artifact, self.owner_id, self.parent_record_id)
            if attempt is None:
                return None

        self.playback.load(artifact)
        if self._on_address:
            self._on_address(attempt.address)
        logger.info(f"Recording persisted: status={attempt.status.value}, address={attempt.address}")
        return attempt

    async def link(self, parent_record_id: str) -> Optional[UploadAttempt]:
        """Attach the current recording to a parent record created after it."""
        return await self.persist(parent_record_id=parent_record_id)

    async def sync_pending(self) -> int:
        if self.upload_manager is None:
            return 0
        return await self.upload_manager.retry_pending()

    async def open_stored(self, parent_record_id: Optional[str] = None) -> Optional[str]:
        """Load the recording a parent record already references, replacing any finished one.

        Returns:
            The loaded address, or None if there is nothing stored or it cannot be read
        """
        parent_record_id = parent_record_id or self.parent_record_id
        if self.upload_manager is None or not parent_record_id:
            logger.warning("No storage or parent record, nothing to open")
            return None
        if self.session.state in (CaptureState.RECORDING, CaptureState.FINALIZING):
            logger.warning(f"Cannot open a stored recording while {self.session.state.value}")
            return None

        address = await self.upload_manager.stored_address(parent_record_id)
        if not address:
            return None

        if self.session.state in (CaptureState.READY, CaptureState.FAILED):
            self.clear()
        self.parent_record_id = parent_record_id
        self.playback.parent_record_id = parent_record_id
        self.playback.load(address)
        if self._on_address:
            self._on_address(address)
        return address

    async def storage_report(self, cleanup_days: Optional[int] = None) -> Dict[str, Any]:
        """Local storage usage plus remote access, optionally pruning old exports first."""
        if cleanup_days is not None:
            self.file_manager.cleanup_old_exports(max_age_days=cleanup_days)
        report = self.file_manager.get_storage_stats()
        if self.upload_manager is not None:
            report["remote_accessible"] = await self.upload_manager.check_storage()
        else:
            report["remote_accessible"] = None
        return report

    # Playback / lifecycle

    def play(self) -> bool:
        return self.playback.play()

    def pause(self) -> bool:
        return self.playback.pause()

    async def delete(self) -> bool:
        return await self.playback.delete()

    async def export(self, dest_dir: Optional[str] = None) -> Optional[str]:
        return await self.playback.export(dest_dir)

    def cleanup(self) -> None:
        """Finish any recording and release every local address."""
        self.session.shutdown()
        self.playback.close()
        if self.session.state in (CaptureState.READY, CaptureState.FAILED):
            self.session.clear()
        leaked = self.registry.revoke_all()
        if leaked:
            logger.warning(f"Released {leaked} local addresses at cleanup")
        logger.info("RecordingService cleaned up")

    def _handle_blob(self, artifact: AudioArtifact) -> None:
        self.playback.load(artifact)
        if self._on_blob:
            self._on_blob(artifact)
        if self._on_address:
            self._on_address(artifact.address)

    def _handle_cleared(self) -> None:
        self.session.clear()
        if self._on_address:
            self._on_address(None)
