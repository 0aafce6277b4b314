"""Upload-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class UploadStatus(Enum):
    """Status of one persistence operation."""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class UploadAttempt:
    """One persistence operation for an audio artifact."""
    owner_id: str
    parent_record_id: Optional[str]
    status: UploadStatus = UploadStatus.PENDING
    address: Optional[str] = None
    durable: bool = False
    storage_path: Optional[str] = None
    error_code: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None


@dataclass
class PendingUpload:
    """A recording kept on disk until it can be uploaded."""
    pending_id: str
    owner_id: str
    parent_record_id: str
    audio_file: str
    mime_type: str
    created_at: datetime
    last_error: Optional[str] = None
