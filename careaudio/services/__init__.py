"""Services layer for careaudio upload, playback and lifecycle logic."""

from .upload_manager import UploadManager
from .playback import PlaybackController
from .recording_service import RecordingService

__all__ = [
    "UploadManager",
    "PlaybackController",
    "RecordingService"
]
