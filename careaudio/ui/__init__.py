"""Console presentation of notices and recording status."""

from .notice_console import NoticeConsole, render_formats

__all__ = [
    'NoticeConsole',
    'render_formats'
]
