"""Error codes, user-facing messages and exceptions for the audio pipeline."""

from typing import Optional

# Capture
PERMISSION_DENIED = "PERMISSION_DENIED"
DEVICE_NOT_FOUND = "DEVICE_NOT_FOUND"
CAPTURE_UNKNOWN = "CAPTURE_UNKNOWN"
RECORDING_TOO_SHORT = "RECORDING_TOO_SHORT"
NO_DATA_CAPTURED = "NO_DATA_CAPTURED"
UNEXPECTED_TRACK_END = "UNEXPECTED_TRACK_END"

# Upload
EMPTY_PAYLOAD = "EMPTY_PAYLOAD"
PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
STORAGE_WRITE_FAILED = "STORAGE_WRITE_FAILED"
PARENT_LINK_FAILED = "PARENT_LINK_FAILED"
NETWORK_FAILURE = "NETWORK_FAILURE"
SAVED_LOCALLY = "SAVED_LOCALLY"
UPLOAD_SUCCEEDED = "UPLOAD_SUCCEEDED"

# Playback / lifecycle
PLAYBACK_FAILED = "PLAYBACK_FAILED"
REMOTE_DELETE_FAILED = "REMOTE_DELETE_FAILED"
NO_AUDIO_TO_EXPORT = "NO_AUDIO_TO_EXPORT"
EXPORT_FAILED = "EXPORT_FAILED"

ERROR_MESSAGES = {
    PERMISSION_DENIED: "Microphone permission was refused. Please allow microphone access.",
    DEVICE_NOT_FOUND: "No microphone was detected. Please check your hardware.",
    CAPTURE_UNKNOWN: "The microphone could not be opened. Please try again.",
    RECORDING_TOO_SHORT: "Please record for at least {min_seconds} seconds.",
    NO_DATA_CAPTURED: "No audio was captured. Please try again and speak a little louder.",
    UNEXPECTED_TRACK_END: "The microphone stopped unexpectedly; the recording was saved.",
    EMPTY_PAYLOAD: "There is no valid recording to upload.",
    PAYLOAD_TOO_LARGE: "The recording is too large ({size_mb} MB, maximum {max_mb} MB).",
    STORAGE_WRITE_FAILED: "The storage service rejected the recording.",
    PARENT_LINK_FAILED: "The recording could not be attached to the report.",
    NETWORK_FAILURE: "The storage service could not be reached.",
    SAVED_LOCALLY: "Recording saved locally, it will be synchronised later.",
    UPLOAD_SUCCEEDED: "Recording saved.",
    PLAYBACK_FAILED: "This recording cannot be played.",
    REMOTE_DELETE_FAILED: "The stored recording could not be removed.",
    NO_AUDIO_TO_EXPORT: "There is no recording to export.",
    EXPORT_FAILED: "The recording could not be exported.",
}

# Errors the user can act on by retrying with other input or permissions.
ACTIONABLE_CODES = frozenset({PERMISSION_DENIED, PAYLOAD_TOO_LARGE})


def message_for(code: str, **params) -> str:
    """Return the user-facing message for an error code."""
    template = ERROR_MESSAGES.get(code, code)
    try:
        return template.format(**params)
    except (KeyError, IndexError):
        return template


class AudioError(Exception):
    """Base error carrying one of the codes above."""

    def __init__(self, code: str, detail: Optional[str] = None):
        self.code = code
        self.detail = detail
        super().__init__(f"{code}: {detail}" if detail else code)

    @property
    def actionable(self) -> bool:
        return self.code in ACTIONABLE_CODES


class DeviceError(AudioError):
    """Microphone acquisition failed (PERMISSION_DENIED, DEVICE_NOT_FOUND, CAPTURE_UNKNOWN)."""


class StorageError(AudioError):
    """Object storage write/delete failed (STORAGE_WRITE_FAILED, NETWORK_FAILURE)."""


class RecordStoreError(AudioError):
    """Parent record update failed."""

    def __init__(self, detail: Optional[str] = None, code: str = PARENT_LINK_FAILED):
        super().__init__(code, detail)


class PayloadError(AudioError):
    """Blob rejected before any network call."""


class EmptyPayloadError(PayloadError):
    def __init__(self, detail: Optional[str] = None):
        super().__init__(EMPTY_PAYLOAD, detail)


class PayloadTooLargeError(PayloadError):
    def __init__(self, size: int, max_bytes: int):
        self.size = size
        self.max_bytes = max_bytes
        super().__init__(PAYLOAD_TOO_LARGE, f"{size} bytes exceeds limit of {max_bytes} bytes")
