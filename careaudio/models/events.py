"""Notice models published to the UI."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..errors import ACTIONABLE_CODES


class NoticeLevel(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Notice:
    """A short, non-blocking, human-readable message (a toast)."""
    code: str
    message: str
    level: NoticeLevel = NoticeLevel.ERROR
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def actionable(self) -> bool:
        return self.code in ACTIONABLE_CODES
