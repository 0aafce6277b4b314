"""Playback and lifecycle control for the current recording."""

import logging
import threading
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Callable, Optional, Union
from urllib.parse import urlparse

from ..audio.formats import extension_for_mime_type
from ..audio.notices import make_notice
from ..audio.player import Player, PlayerFactory
from ..errors import EXPORT_FAILED, NO_AUDIO_TO_EXPORT, PLAYBACK_FAILED, AudioError
from ..models.audio import AudioArtifact
from ..models.events import Notice, NoticeLevel
from ..storage.file_manager import FileManager
from ..storage.object_urls import is_local_address
from ..storage.supabase import download

logger = logging.getLogger(__name__)


def build_export_name(extension: str, parent_record_id: Optional[str] = None,
                      now: Optional[datetime] = None) -> str:
    """Deterministic export file name: recording_[parent_]YYYYmmdd_HHMMSS_ffffff.ext"""
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S_%f")
    parent = f"{parent_record_id}_" if parent_record_id else ""
    return f"recording_{parent}{stamp}.{extension}"


class PlaybackController:
    """Presents one authoritative audio address and owns its cleanup."""

    def __init__(
        self,
        player_factory: PlayerFactory,
        upload_manager=None,
        registry=None,
        file_manager: Optional[FileManager] = None,
        owner_id: Optional[str] = None,
        parent_record_id: Optional[str] = None,
        notify: Optional[Callable[[Notice], None]] = None,
        on_cleared: Optional[Callable[[], None]] = None,
        timeout_seconds: float = 30.0,
    ):
        """Initialize playback controller.

        Args:
            player_factory: Builds a player for (address, on_ended, on_error)
            upload_manager: Used to delete durable recordings
            registry: Releases local addresses loaded as plain strings
            file_manager: Writes exports; without one exports go to dest_dir or the cwd
            owner_id: Owner used to rebuild storage paths on delete
            parent_record_id: Parent record whose audio reference is cleared on delete
            notify: Receives user-facing notices
            on_cleared: Called after delete returns the owner to "no audio"
            timeout_seconds: Download timeout for exporting durable audio
        """
        self.player_factory = player_factory
        self.upload_manager = upload_manager
        self.registry = registry
        self.file_manager = file_manager
        self.owner_id = owner_id
        self.parent_record_id = parent_record_id
        self.on_cleared = on_cleared
        self.timeout_seconds = timeout_seconds
        self._notify_callback = notify

        self._lock = threading.RLock()
        self._artifact: Optional[AudioArtifact] = None
        self._loaded_address: Optional[str] = None
        self._player: Optional[Player] = None
        self.is_playing = False

    @property
    def artifact(self) -> Optional[AudioArtifact]:
        return self._artifact

    @property
    def address(self) -> Optional[str]:
        """The authoritative address, or None when there is no audio."""
        if self._artifact is not None:
            return self._artifact.address
        return self._loaded_address

    def load(self, source: Union[AudioArtifact, str, None]) -> None:
        """Make an artifact or a plain address authoritative.

        A replaced artifact or local address is released. Loading the same
        artifact again only rebinds the player if its address changed.
        """
        with self._lock:
            unchanged = ((isinstance(source, AudioArtifact) and source is self._artifact)
                         or (isinstance(source, str) and self._artifact is None
                             and source == self._loaded_address))
            if unchanged:
                stale = None
                if self._player is not None and self._player.address != self.address:
                    stale = self._detach_player_locked()
            else:
                stale = self._detach_player_locked()
                self._release_locked()
                if isinstance(source, AudioArtifact):
                    self._artifact = source
                elif source:
                    self._loaded_address = source
        self._stop_player(stale)
        if not unchanged:
            logger.info(f"Loaded audio: {self.address}")

    def play(self) -> bool:
        """Start or resume playback. Failures become a notice; nothing is raised."""
        with self._lock:
            address = self.address
            if not address:
                logger.info("Nothing to play")
                return False
            if self.is_playing:
                return True
            stale = None
            if self._player is None or self._player.address != address:
                stale = self._detach_player_locked()
                try:
                    self._player = self.player_factory(address, self._on_ended, self._on_error)
                except Exception as e:
                    logger.error(f"Could not create player for {address}: {e}")
            player = self._player
            if player is not None:
                self.is_playing = True

        self._stop_player(stale)
        if player is None:
            self._notify(make_notice(PLAYBACK_FAILED))
            return False
        try:
            player.play()
        except Exception as e:
            self._on_error(e)
            return False
        return True

    def pause(self) -> bool:
        with self._lock:
            if not self.is_playing or self._player is None:
                return False
            player = self._player
            self.is_playing = False
        player.pause()
        return True

    async def delete(self) -> bool:
        """Remove the current recording everywhere and return to "no audio".

        Remote failures are logged by the upload manager and never block the
        local cleanup.
        """
        with self._lock:
            address = self.address
            if not address:
                logger.info("Nothing to delete")
                return False
            artifact = self._artifact
            parent_record_id = (artifact.parent_record_id if artifact else None) or self.parent_record_id
            player = self._detach_player_locked()
        self._stop_player(player)

        if not is_local_address(address) and self.upload_manager is not None:
            await self.upload_manager.delete(address, self.owner_id, parent_record_id)

        with self._lock:
            if artifact is not None:
                artifact.discard()
            self._release_locked()
        logger.info(f"Recording deleted: {address}")

        if self.on_cleared:
            self.on_cleared()
        return True

    async def export(self, dest_dir: Optional[str] = None) -> Optional[str]:
        """Save the current recording to a file.

        Returns:
            Path of the exported file, or None if there was nothing to export or it failed
        """
        address = self.address
        if not address:
            self._notify(make_notice(NO_AUDIO_TO_EXPORT, NoticeLevel.WARNING))
            return None

        artifact = self._artifact
        try:
            if artifact is not None:
                data = artifact.blob.data
                extension = artifact.encoding.extension
            elif is_local_address(address):
                blob = self.registry.resolve(address) if self.registry else None
                if blob is None:
                    raise ValueError(f"Local address is no longer valid: {address}")
                data = blob.data
                extension = extension_for_mime_type(blob.mime_type)
            else:
                data = await download(address, self.timeout_seconds)
                extension = PurePosixPath(urlparse(address).path).suffix.lstrip(".") or "wav"

            parent_record_id = (artifact.parent_record_id if artifact else None) or self.parent_record_id
            filename = build_export_name(extension, parent_record_id)
            if self.file_manager is not None:
                path = self.file_manager.save_export(data, filename, dest_dir)
            else:
                target = Path(dest_dir or ".") / filename
                target.write_bytes(data)
                path = str(target)
        except (AudioError, OSError, ValueError) as e:
            logger.error(f"Export failed: {e}")
            self._notify(make_notice(EXPORT_FAILED))
            return None

        logger.info(f"Recording exported to {path}")
        return path

    def close(self) -> None:
        """Stop playback and release the local address (owner going away)."""
        with self._lock:
            player = self._detach_player_locked()
            self._release_locked()
        self._stop_player(player)

    def _on_ended(self) -> None:
        with self._lock:
            self.is_playing = False
        logger.debug("Playback reached the end")

    def _on_error(self, error: Exception) -> None:
        with self._lock:
            self.is_playing = False
        logger.error(f"Playback error: {error}")
        self._notify(make_notice(PLAYBACK_FAILED))

    def _detach_player_locked(self) -> Optional[Player]:
        player, self._player = self._player, None
        self.is_playing = False
        return player

    def _stop_player(self, player: Optional[Player]) -> None:
        # called without the lock held: stop() joins a thread whose callbacks take it
        if player is None:
            return
        try:
            player.stop()
        except Exception as e:
            logger.warning(f"Error stopping player: {e}")

    def _release_locked(self) -> None:
        artifact, self._artifact = self._artifact, None
        address, self._loaded_address = self._loaded_address, None
        if artifact is not None:
            artifact.release_local()
        if is_local_address(address) and self.registry is not None:
            self.registry.revoke(address)

    def _notify(self, notice: Notice) -> None:
        logger.info(f"Notice [{notice.code}]: {notice.message}")
        if self._notify_callback:
            self._notify_callback(notice)
