"""Registry of local ephemeral addresses for in-memory blobs."""

import logging
import threading
import uuid
from typing import Dict, Optional

from ..models.audio import AudioBlob

logger = logging.getLogger(__name__)

LOCAL_SCHEME = "blob:"


def is_local_address(address: Optional[str]) -> bool:
    return bool(address) and address.startswith(LOCAL_SCHEME)


class ObjectUrlRegistry:
    """Creates and releases process-local addresses for blobs.

    Each address is valid until revoked. Creation and release counters make
    leaks and double releases visible.
    """

    def __init__(self, namespace: str = "careaudio"):
        self.namespace = namespace
        self._blobs: Dict[str, AudioBlob] = {}
        self._lock = threading.Lock()
        self.created_count = 0
        self.revoked_count = 0

    def create(self, blob: AudioBlob) -> str:
        address = f"{LOCAL_SCHEME}{self.namespace}/{uuid.uuid4()}"
        with self._lock:
            self._blobs[address] = blob
            self.created_count += 1
        logger.debug(f"Created local address {address} ({blob.size} bytes)")
        return address

    def revoke(self, address: str) -> bool:
        with self._lock:
            blob = self._blobs.pop(address, None)
            if blob is not None:
                self.revoked_count += 1
        if blob is None:
            logger.warning(f"Revoke of unknown or already released address {address}")
            return False
        logger.debug(f"Released local address {address}")
        return True

    def resolve(self, address: str) -> Optional[AudioBlob]:
        with self._lock:
            return self._blobs.get(address)

    @property
    def live_count(self) -> int:
        with self._lock:
            return len(self._blobs)

    def revoke_all(self) -> int:
        """Release every live address (application shutdown)."""
        with self._lock:
            addresses = list(self._blobs)
        return sum(1 for address in addresses if self.revoke(address))
