"""Data models for the careaudio pipeline."""

from .audio import EncodingFormat, AudioBlob, AudioArtifact
from .session import CaptureState, RecordingSession, SessionSnapshot
from .upload import UploadStatus, UploadAttempt, PendingUpload
from .events import NoticeLevel, Notice

__all__ = [
    "EncodingFormat",
    "AudioBlob",
    "AudioArtifact",
    "CaptureState",
    "RecordingSession",
    "SessionSnapshot",
    "UploadStatus",
    "UploadAttempt",
    "PendingUpload",
    "NoticeLevel",
    "Notice",
]
