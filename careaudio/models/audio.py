"""Audio-related data models."""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class EncodingFormat:
    """A container/codec pair the capture pipeline can produce."""
    mime_type: str      # Declared media type, e.g. "audio/ogg;codecs=opus"
    extension: str      # File extension without the dot
    container: str      # libsndfile major format, e.g. "OGG"
    subtype: Optional[str] = None  # libsndfile subtype, e.g. "OPUS"

    @property
    def label(self) -> str:
        if self.subtype and self.subtype.lower() not in ("pcm_16", "mpeg_layer_iii"):
            return f"{self.extension}/{self.subtype.lower()}"
        return self.extension


@dataclass
class AudioBlob:
    """Encoded audio bytes with a declared media type."""
    data: bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class AudioArtifact:
    """A finalized, playable recording.

    The authoritative address is the remote one once assigned, the local
    ephemeral one otherwise. The local address is released through the
    registry that created it, at most once.
    """
    blob: AudioBlob
    encoding: EncodingFormat
    duration_seconds: int = 0
    local_address: Optional[str] = None
    remote_address: Optional[str] = None
    storage_path: Optional[str] = None
    parent_record_id: Optional[str] = None
    artifact_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=datetime.now)
    registry: Any = field(default=None, repr=False, compare=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    @property
    def address(self) -> Optional[str]:
        return self.remote_address or self.local_address

    @property
    def is_durable(self) -> bool:
        return self.remote_address is not None

    def ensure_local(self) -> str:
        """Return the live local address, creating one if none is held."""
        with self._lock:
            if self.local_address is None:
                if self.registry is None:
                    raise RuntimeError("Artifact has no address registry")
                self.local_address = self.registry.create(self.blob)
            return self.local_address

    def release_local(self) -> bool:
        """Release the local address. Returns False if none was held."""
        with self._lock:
            address, self.local_address = self.local_address, None
        if address is None:
            return False
        if self.registry is not None:
            self.registry.revoke(address)
        return True

    def attach_remote(self, address: str, storage_path: Optional[str] = None,
                      parent_record_id: Optional[str] = None) -> None:
        """Make a durable address authoritative and drop the local one."""
        with self._lock:
            self.remote_address = address
            self.storage_path = storage_path
            self.parent_record_id = parent_record_id
        self.release_local()

    def discard(self) -> None:
        """Forget both addresses (explicit user deletion)."""
        self.release_local()
        with self._lock:
            self.remote_address = None
            self.storage_path = None
            self.parent_record_id = None
