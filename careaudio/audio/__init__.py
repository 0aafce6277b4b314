"""Audio capture, encoding negotiation and playback module."""

from .formats import SoundFileProbe, negotiate_format
from .session import CaptureSession
from .notices import NoticePublisher

__all__ = [
    'SoundFileProbe',
    'negotiate_format',
    'CaptureSession',
    'NoticePublisher'
]
