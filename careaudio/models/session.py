"""Capture session models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from .audio import EncodingFormat


class CaptureState(Enum):
    """States of one recording attempt."""
    IDLE = "idle"
    REQUESTING = "requesting"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    READY = "ready"
    FAILED = "failed"


@dataclass
class RecordingSession:
    """One in-progress or completed capture attempt."""
    session_id: str
    encoding: EncodingFormat
    state: CaptureState = CaptureState.REQUESTING
    elapsed_seconds: int = 0
    chunks: List[bytes] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)

    @property
    def byte_count(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)


@dataclass
class SessionSnapshot:
    """What the UI shows about the capture session."""
    state: CaptureState
    elapsed_seconds: int
    encoding_format: str
    chunk_count: int = 0
    byte_count: int = 0
    address: Optional[str] = None
