"""Upload manager: persists finalized recordings and links them to their parent record."""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Callable, Dict, List, Optional, Protocol, Set

from ..audio.formats import extension_for_mime_type
from ..audio.notices import make_notice
from ..errors import (
    NETWORK_FAILURE,
    PAYLOAD_TOO_LARGE,
    REMOTE_DELETE_FAILED,
    SAVED_LOCALLY,
    UPLOAD_SUCCEEDED,
    AudioError,
    EmptyPayloadError,
    PayloadTooLargeError,
    RecordStoreError,
)
from ..models.audio import AudioArtifact
from ..models.events import Notice, NoticeLevel
from ..models.upload import UploadAttempt, UploadStatus
from ..storage.file_manager import FileManager
from ..storage.object_urls import is_local_address

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


class ObjectStorage(Protocol):
    async def put(self, path: str, data: bytes, content_type: str) -> str: ...

    async def delete(self, path: str) -> None: ...

    def path_from_address(self, address: str) -> Optional[str]: ...

    def resolve_address(self, path_or_address: Optional[str]) -> Optional[str]: ...

    async def check_access(self) -> bool: ...


class RecordStore(Protocol):
    async def update_audio_reference(self, parent_record_id: str, address: Optional[str]) -> None: ...

    async def get_audio_reference(self, parent_record_id: str) -> Optional[str]: ...


def storage_timestamp(now: Optional[datetime] = None) -> str:
    """UTC ISO-8601 timestamp with millisecond precision, safe for object names."""
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    iso = now.strftime("%Y-%m-%dT%H:%M:%S") + f".{now.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


class UploadManager:
    """Turns a local recording into a durable one, or degrades to local-only."""

    def __init__(
        self,
        storage: ObjectStorage,
        records: RecordStore,
        path_prefix: str = "interventions",
        file_prefix: str = "intervention",
        max_bytes: int = MAX_UPLOAD_BYTES,
        timeout_seconds: float = 30.0,
        notify: Optional[Callable[[Notice], None]] = None,
        file_manager: Optional[FileManager] = None,
    ):
        """Initialize upload manager.

        Args:
            storage: Object storage service
            records: Parent record store
            path_prefix: First path segment of every stored object
            file_prefix: Object file name prefix, followed by the parent id
            max_bytes: Largest accepted payload
            timeout_seconds: Client-side timeout for one persist or delete
            notify: Receives user-facing notices
            file_manager: If given, failed uploads are spooled for a later retry
        """
        self.storage = storage
        self.records = records
        self.path_prefix = path_prefix
        self.file_prefix = file_prefix
        self.max_bytes = max_bytes
        self.timeout_seconds = timeout_seconds
        self.file_manager = file_manager
        self._notify_callback = notify
        self._in_flight: Set[str] = set()
        # artifact_id -> pending_id of its spooled copy
        self._spooled: Dict[str, str] = {}

        logger.info(f"UploadManager initialized: prefix={path_prefix}, max_bytes={max_bytes}")

    def build_path(self, owner_id: str, parent_record_id: str, extension: str,
                   now: Optional[datetime] = None) -> str:
        file_name = f"{self.file_prefix}_{parent_record_id}_{storage_timestamp(now)}.{extension}"
        return self._join(owner_id, file_name)

    def _join(self, owner_id: str, file_name: str) -> str:
        # empty segments are dropped so an empty prefix never yields a leading slash
        return "/".join(segment for segment in (self.path_prefix.strip("/"), owner_id, file_name) if segment)

    def check_payload(self, artifact: AudioArtifact) -> None:
        """Reject unusable payloads before any network traffic.

        Raises:
            EmptyPayloadError: blob is missing or empty
            PayloadTooLargeError: blob exceeds max_bytes
        """
        size = artifact.blob.size if artifact.blob is not None else 0
        if size == 0:
            raise EmptyPayloadError("Recording has no data")
        if size > self.max_bytes:
            self._notify(make_notice(PAYLOAD_TOO_LARGE,
                                     size_mb=f"{size / (1024 * 1024):.1f}",
                                     max_mb=f"{self.max_bytes / (1024 * 1024):.0f}"))
            raise PayloadTooLargeError(size, self.max_bytes)

    async def upload(self, artifact: AudioArtifact, owner_id: str,
                     parent_record_id: Optional[str] = None) -> Optional[UploadAttempt]:
        """Persist an artifact and link it to its parent record.

        Never raises for storage, link or network failures: the attempt then
        carries the artifact's local address and the failure code.

        Returns:
            The upload attempt, or None if an upload of this artifact is already in flight
        """
        self.check_payload(artifact)

        if artifact.artifact_id in self._in_flight:
            logger.warning(f"Upload already in progress for artifact {artifact.artifact_id}, ignoring")
            return None

        attempt = UploadAttempt(owner_id=owner_id, parent_record_id=parent_record_id)

        if artifact.is_durable and (parent_record_id is None
                                    or parent_record_id == artifact.parent_record_id):
            logger.info(f"Artifact {artifact.artifact_id} already stored at {artifact.remote_address}")
            return self._finish(attempt, UploadStatus.SUCCEEDED, artifact.remote_address,
                                durable=True, storage_path=artifact.storage_path)

        if not parent_record_id:
            logger.info(f"No parent record for artifact {artifact.artifact_id}, keeping it local")
            return self._finish(attempt, UploadStatus.PENDING, artifact.ensure_local())

        self._in_flight.add(artifact.artifact_id)
        try:
            extension = extension_for_mime_type(artifact.blob.mime_type, artifact.encoding.extension)
            path = self.build_path(owner_id, parent_record_id, extension)
            try:
                address = await self._persist_in_time(
                    artifact.blob.data, artifact.blob.mime_type, path, parent_record_id)
            except AudioError as e:
                logger.error(f"Upload of artifact {artifact.artifact_id} failed: {e}")
                error_code = e.code
            except asyncio.TimeoutError:
                logger.error(f"Upload of artifact {artifact.artifact_id} timed out "
                             f"after {self.timeout_seconds}s")
                error_code = NETWORK_FAILURE
            else:
                artifact.attach_remote(address, storage_path=path, parent_record_id=parent_record_id)
                logger.info(f"Artifact {artifact.artifact_id} stored at {path}")
                self._unspool(artifact)
                self._notify(make_notice(UPLOAD_SUCCEEDED, NoticeLevel.INFO))
                return self._finish(attempt, UploadStatus.SUCCEEDED, address,
                                    durable=True, storage_path=path)
        finally:
            self._in_flight.discard(artifact.artifact_id)

        local_address = artifact.address if artifact.is_durable else artifact.ensure_local()
        self._spool(artifact, owner_id, parent_record_id, error_code)
        self._notify(make_notice(SAVED_LOCALLY, NoticeLevel.INFO))
        attempt.error_code = error_code
        return self._finish(attempt, UploadStatus.FAILED, local_address)

    async def _persist_in_time(self, data: bytes, content_type: str, path: str,
                               parent_record_id: str) -> str:
        """Run _persist under the upload timeout, removing a stored object the timeout strands."""
        stored: List[str] = []
        try:
            return await asyncio.wait_for(
                self._persist(data, content_type, path, parent_record_id, stored),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            if stored:
                await self._remove_orphan(path)
            raise

    async def _persist(self, data: bytes, content_type: str, path: str, parent_record_id: str,
                       stored: Optional[List[str]] = None) -> str:
        address = await self.storage.put(path, data, content_type)
        if stored is not None:
            stored.append(path)
        try:
            await self.records.update_audio_reference(parent_record_id, address)
        except RecordStoreError:
            await self._remove_orphan(path)
            raise
        return address

    async def _remove_orphan(self, path: str) -> None:
        try:
            await asyncio.wait_for(self.storage.delete(path), timeout=self.timeout_seconds)
            logger.info(f"Removed orphaned object {path}")
        except (AudioError, asyncio.TimeoutError) as e:
            logger.warning(f"Could not remove orphaned object {path}: {e}")

    def _spool(self, artifact: AudioArtifact, owner_id: str, parent_record_id: str,
               error_code: str) -> None:
        if self.file_manager is None:
            return
        if artifact.artifact_id in self._spooled:
            self.file_manager.mark_pending_failed(self._spooled[artifact.artifact_id], error_code)
            return
        try:
            pending = self.file_manager.spool_pending(
                artifact.blob.data,
                artifact.blob.mime_type,
                artifact.encoding.extension,
                owner_id,
                parent_record_id,
                last_error=error_code,
            )
        except OSError as e:
            logger.error(f"Could not spool artifact {artifact.artifact_id} for later upload: {e}")
            return
        self._spooled[artifact.artifact_id] = pending.pending_id

    def _unspool(self, artifact: AudioArtifact) -> None:
        pending_id = self._spooled.pop(artifact.artifact_id, None)
        if pending_id and self.file_manager is not None:
            self.file_manager.remove_pending(pending_id)

    def _finish(self, attempt: UploadAttempt, status: UploadStatus, address: Optional[str],
                durable: bool = False, storage_path: Optional[str] = None) -> UploadAttempt:
        attempt.status = status
        attempt.address = address
        attempt.durable = durable
        attempt.storage_path = storage_path
        attempt.finished_at = datetime.now()
        return attempt

    async def delete(self, address: Optional[str], owner_id: Optional[str] = None,
                     parent_record_id: Optional[str] = None) -> bool:
        """Remove a durable recording and clear the parent reference.

        Failures are logged and never raised.

        Returns:
            True if every remote step succeeded
        """
        succeeded = True

        if address and not is_local_address(address):
            path = self._path_for_address(address, owner_id)
            if path is None:
                logger.warning(f"Cannot determine storage path of {address}, skipping remote delete")
            else:
                try:
                    await asyncio.wait_for(self.storage.delete(path), timeout=self.timeout_seconds)
                    logger.info(f"Deleted stored recording {path}")
                except (AudioError, asyncio.TimeoutError) as e:
                    logger.error(f"{REMOTE_DELETE_FAILED}: {path}: {e}")
                    succeeded = False

        if parent_record_id:
            try:
                await asyncio.wait_for(self.records.update_audio_reference(parent_record_id, None),
                                       timeout=self.timeout_seconds)
            except (AudioError, asyncio.TimeoutError) as e:
                logger.error(f"Could not clear audio reference of {parent_record_id}: {e}")
                succeeded = False

        return succeeded

    def _path_for_address(self, address: str, owner_id: Optional[str]) -> Optional[str]:
        path = self.storage.path_from_address(address)
        if path:
            return path
        if not owner_id:
            return None
        file_name = PurePosixPath(address.split("?", 1)[0]).name
        if not file_name:
            return None
        return self._join(owner_id, file_name)

    async def stored_address(self, parent_record_id: str) -> Optional[str]:
        """Playable address of the recording a parent record references.

        Failures are logged and never raised.

        Returns:
            The address, or None if the record has no recording or it cannot be read
        """
        try:
            reference = await asyncio.wait_for(self.records.get_audio_reference(parent_record_id),
                                               timeout=self.timeout_seconds)
        except (AudioError, asyncio.TimeoutError) as e:
            logger.error(f"Could not read audio reference of {parent_record_id}: {e}")
            return None
        address = self.storage.resolve_address(reference)
        logger.info(f"{parent_record_id} references {address}")
        return address

    async def check_storage(self) -> bool:
        """True if the object storage accepts our credentials."""
        try:
            return await asyncio.wait_for(self.storage.check_access(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Storage access check timed out after {self.timeout_seconds}s")
            return False

    async def retry_pending(self) -> int:
        """Upload recordings spooled by earlier failed attempts.

        Returns:
            Number of recordings synchronised
        """
        if self.file_manager is None:
            return 0

        synced = 0
        for pending_id in self.file_manager.list_pending():
            pending = self.file_manager.load_pending(pending_id)
            if pending is None:
                continue
            data = self.file_manager.read_pending_audio(pending)
            extension = PurePosixPath(pending.audio_file).suffix.lstrip(".") or \
                extension_for_mime_type(pending.mime_type)
            path = self.build_path(pending.owner_id, pending.parent_record_id, extension)
            try:
                await self._persist_in_time(data, pending.mime_type, path, pending.parent_record_id)
            except AudioError as e:
                logger.error(f"Retry of pending upload {pending_id} failed: {e}")
                self.file_manager.mark_pending_failed(pending_id, e.code)
                continue
            except asyncio.TimeoutError:
                logger.error(f"Retry of pending upload {pending_id} timed out")
                self.file_manager.mark_pending_failed(pending_id, NETWORK_FAILURE)
                continue

            self.file_manager.remove_pending(pending_id)
            self._spooled = {k: v for k, v in self._spooled.items() if v != pending_id}
            synced += 1
            logger.info(f"Pending upload {pending_id} stored at {path}")

        logger.info(f"Synchronised {synced} pending uploads")
        return synced

    def _notify(self, notice: Notice) -> None:
        logger.info(f"Notice [{notice.code}]: {notice.message}")
        if self._notify_callback:
            self._notify_callback(notice)
