"""Rich console rendering of notices, capture state and encoding support."""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pubsub import pub
from rich.console import Console
from rich.table import Table
from rich.text import Text

from ..audio.notices import NOTICE_TOPIC, STATE_TOPIC
from ..models.audio import EncodingFormat
from ..models.events import Notice, NoticeLevel
from ..models.session import SessionSnapshot

logger = logging.getLogger(__name__)

LEVEL_STYLES = {
    NoticeLevel.INFO: "green",
    NoticeLevel.WARNING: "yellow",
    NoticeLevel.ERROR: "bold red",
}

LEVEL_ICONS = {
    NoticeLevel.INFO: "✅",
    NoticeLevel.WARNING: "⚠️ ",
    NoticeLevel.ERROR: "❌",
}


class NoticeConsole:
    """Prints notices and state changes published on pubsub topics."""

    def __init__(self, console: Optional[Console] = None,
                 topic: str = NOTICE_TOPIC, state_topic: str = STATE_TOPIC):
        self.console = console or Console()
        self.topic = topic
        self.state_topic = state_topic
        self.history: List[Notice] = []
        self._subscribed = False

    def subscribe(self) -> None:
        if self._subscribed:
            return
        pub.subscribe(self.on_notice, self.topic)
        pub.subscribe(self.on_state, self.state_topic)
        self._subscribed = True
        logger.info(f"NoticeConsole subscribed to {self.topic} and {self.state_topic}")

    def unsubscribe(self) -> None:
        if not self._subscribed:
            return
        pub.unsubscribe(self.on_notice, self.topic)
        pub.unsubscribe(self.on_state, self.state_topic)
        self._subscribed = False

    def on_notice(self, notice: Notice) -> None:
        self.history.append(notice)
        text = Text(f"{LEVEL_ICONS[notice.level]} {notice.message}", style=LEVEL_STYLES[notice.level])
        if notice.actionable:
            text.append("  (action needed)", style="bold")
        self.console.print(text)

    def on_state(self, old_state, new_state) -> None:
        self.console.print(f"[dim]{old_state.value} → {new_state.value}[/dim]")

    def show_snapshot(self, snapshot: SessionSnapshot) -> None:
        minutes, seconds = divmod(snapshot.elapsed_seconds, 60)
        line = (f"🎙️  {snapshot.state.value.upper()}  {minutes:02d}:{seconds:02d}  "
                f"{snapshot.encoding_format or '-'}  {snapshot.byte_count} bytes")
        self.console.print(line, style="cyan")


def render_formats(formats: Sequence[Tuple[EncodingFormat, bool]],
                   negotiated: Optional[EncodingFormat] = None) -> Table:
    """Table of candidate encodings, their support flag and the negotiated choice."""
    table = Table(title="Audio encodings")
    table.add_column("Format")
    table.add_column("Media type")
    table.add_column("Supported", justify="center")
    table.add_column("Selected", justify="center")

    for fmt, supported in formats:
        table.add_row(
            fmt.label,
            fmt.mime_type,
            "✅" if supported else "❌",
            "⭐" if negotiated is not None and fmt == negotiated else "",
        )
    return table


def render_storage_report(report: Dict[str, Any]) -> Table:
    """Table of local storage usage and remote storage reachability."""
    table = Table(title="Storage")
    table.add_column("Item")
    table.add_column("Value", justify="right")

    table.add_row("Data directory", report["data_directory"])
    table.add_row("Local size", f"{report['total_size_mb']} MB")
    table.add_row("Exports", str(report["export_count"]))
    table.add_row("Pending uploads", str(report["pending_count"]))
    remote = report.get("remote_accessible")
    table.add_row("Remote storage", "not configured" if remote is None else ("✅" if remote else "❌"))
    return table
