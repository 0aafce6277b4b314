"""File management for exported recordings and uploads waiting to be synchronised."""

import json
import logging
import random
import shutil
import string
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models.upload import PendingUpload

logger = logging.getLogger(__name__)


class FileManager:
    """Manages local storage of exported audio and the pending-upload spool."""

    def __init__(self, data_dir: str = "./data"):
        """Initialize file manager with data directory.

        Args:
            data_dir: Base directory for storing all data
        """
        self.data_dir = Path(data_dir)
        self.exports_dir = self.data_dir / "exports"
        self.pending_dir = self.data_dir / "pending"

        # Create directory structure
        self._ensure_directories()

        logger.info(f"FileManager initialized with data_dir: {self.data_dir}")

    def _ensure_directories(self) -> None:
        """Ensure all required directories exist."""
        for directory in [self.data_dir, self.exports_dir, self.pending_dir]:
            directory.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Ensured directory exists: {directory}")

    def save_export(self, audio_data: bytes, filename: str, dest_dir: Optional[str] = None) -> str:
        """Write exported audio and return its path.

        Args:
            audio_data: Encoded audio bytes
            filename: Target file name
            dest_dir: Directory to write into; defaults to the exports directory

        Returns:
            Full path to the written file
        """
        target_dir = Path(dest_dir) if dest_dir else self.exports_dir
        target_dir.mkdir(parents=True, exist_ok=True)
        export_path = target_dir / filename

        try:
            with open(export_path, 'wb') as f:
                f.write(audio_data)
            logger.info(f"Audio exported: {export_path} ({len(audio_data)} bytes)")
            return str(export_path)
        except Exception as e:
            logger.error(f"Error exporting audio file: {e}")
            raise

    def _new_pending_id(self) -> str:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        random_suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=4))
        return f"{timestamp}_{random_suffix}"

    def spool_pending(self, audio_data: bytes, mime_type: str, extension: str,
                      owner_id: str, parent_record_id: str,
                      last_error: Optional[str] = None) -> PendingUpload:
        """Keep a recording on disk until it can be uploaded.

        Returns:
            The pending upload description
        """
        pending_id = self._new_pending_id()
        pending_path = self.pending_dir / pending_id
        pending_path.mkdir(exist_ok=True)

        audio_file = f"audio.{extension}"
        with open(pending_path / audio_file, 'wb') as f:
            f.write(audio_data)

        pending = PendingUpload(
            pending_id=pending_id,
            owner_id=owner_id,
            parent_record_id=parent_record_id,
            audio_file=audio_file,
            mime_type=mime_type,
            created_at=datetime.now(),
            last_error=last_error,
        )
        self._write_pending_info(pending)
        logger.info(f"Spooled pending upload {pending_id} for record {parent_record_id} "
                    f"({len(audio_data)} bytes)")
        return pending

    def _write_pending_info(self, pending: PendingUpload) -> None:
        info_file = self.pending_dir / pending.pending_id / "pending_info.json"
        info_dict = asdict(pending)
        info_dict['created_at'] = pending.created_at.isoformat()
        with open(info_file, 'w') as f:
            json.dump(info_dict, f, indent=2)

    def load_pending(self, pending_id: str) -> Optional[PendingUpload]:
        """Load a pending upload description, or None if missing or unreadable."""
        info_file = self.pending_dir / pending_id / "pending_info.json"

        if not info_file.exists():
            logger.warning(f"Pending info file not found: {info_file}")
            return None

        try:
            with open(info_file, 'r') as f:
                data = json.load(f)
            data['created_at'] = datetime.fromisoformat(data['created_at'])
            return PendingUpload(**data)
        except Exception as e:
            logger.error(f"Error loading pending upload {pending_id}: {e}")
            return None

    def read_pending_audio(self, pending: PendingUpload) -> bytes:
        with open(self.pending_dir / pending.pending_id / pending.audio_file, 'rb') as f:
            return f.read()

    def list_pending(self) -> List[str]:
        """List pending upload ids, oldest first."""
        pending = [
            path.name for path in self.pending_dir.iterdir()
            if path.is_dir() and (path / "pending_info.json").exists()
        ]
        pending.sort()
        logger.debug(f"Found {len(pending)} pending uploads")
        return pending

    def mark_pending_failed(self, pending_id: str, error: str) -> None:
        pending = self.load_pending(pending_id)
        if pending is None:
            return
        pending.last_error = error
        self._write_pending_info(pending)

    def remove_pending(self, pending_id: str) -> None:
        pending_path = self.pending_dir / pending_id
        if pending_path.exists():
            shutil.rmtree(pending_path)
            logger.info(f"Removed pending upload {pending_id}")

    def cleanup_old_exports(self, max_age_days: int = 30) -> int:
        """Delete exported files older than max_age_days.

        Returns:
            Number of files removed
        """
        cutoff_time = datetime.now().timestamp() - (max_age_days * 24 * 60 * 60)
        cleaned_count = 0

        for export_path in self.exports_dir.iterdir():
            if export_path.is_file() and export_path.stat().st_mtime < cutoff_time:
                export_path.unlink()
                cleaned_count += 1
                logger.info(f"Cleaned up old export: {export_path}")

        logger.info(f"Cleaned up {cleaned_count} old exports")
        return cleaned_count

    def get_storage_stats(self) -> Dict[str, Any]:
        """Get local storage usage statistics."""
        total_size = 0
        for file_path in self.data_dir.rglob("*"):
            if file_path.is_file():
                total_size += file_path.stat().st_size

        return {
            "total_size_bytes": total_size,
            "total_size_mb": round(total_size / (1024 * 1024), 2),
            "export_count": sum(1 for p in self.exports_dir.iterdir() if p.is_file()),
            "pending_count": len(self.list_pending()),
            "data_directory": str(self.data_dir),
        }
