"""Main application entry point for careaudio."""

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Optional

from rich.console import Console

from .audio.formats import SoundFileProbe, negotiate_format, supported_formats
from .config import CareAudioConfig
from .models.session import CaptureState
from .services.recording_service import RecordingService
from .ui.notice_console import NoticeConsole, render_formats, render_storage_report

logger = logging.getLogger(__name__)


class Recorder:
    """Command-line recorder: one capture, optional upload and export."""

    def __init__(self, config_path: str, log_level: Optional[str] = None):
        # Load configuration
        self.config = CareAudioConfig(config_path)
        # Set up logging (command line overrides config)
        setup_logging(self.config, log_level or self.config.get('logging.level', 'INFO'))
        self.console = Console()
        self.notices = NoticeConsole(self.console)
        self.service: Optional[RecordingService] = None

    def init(self, owner_id: Optional[str] = None, parent_record_id: Optional[str] = None) -> None:
        logger.info("Initializing services...")
        self.notices.subscribe()
        self.service = RecordingService(self.config, owner_id=owner_id, parent_record_id=parent_record_id)

    def record(self, duration: int) -> bool:
        """Record for `duration` seconds. Returns True if a recording is ready."""
        if not self.service.start_capture():
            return False
        try:
            deadline = time.monotonic() + duration
            while time.monotonic() < deadline:
                time.sleep(1)
                self.notices.show_snapshot(self.service.snapshot())
                if self.service.snapshot().state != CaptureState.RECORDING:
                    break
        finally:
            self.service.stop_capture()
        return self.service.snapshot().state == CaptureState.READY

    def cleanup(self) -> None:
        if self.service is not None:
            self.service.cleanup()
        self.notices.unsubscribe()


def setup_logging(config, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/careaudio.log')
    console_output = config.get('logging.console_output', True)

    # Create logs directory if it doesn't exist
    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    # Console handler - only if enabled in config
    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.WARNING)
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger = logging.getLogger(__name__)
    logger.info("=" * 50)
    logger.info("careaudio starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def run_record(args) -> int:
    recorder = Recorder(args.config, args.log_level)
    try:
        recorder.init(owner_id=args.owner, parent_record_id=args.parent)
        if not recorder.record(args.duration):
            return 1

        service = recorder.service
        if args.owner:
            attempt = asyncio.run(service.persist())
            if attempt is not None:
                recorder.console.print(f"Address: {attempt.address}")
        if args.export is not None:
            path = asyncio.run(service.export(args.export or None))
            if path:
                recorder.console.print(f"Exported to {path}", style="green")
        if args.play:
            service.play()
            time.sleep(service.snapshot().elapsed_seconds + 1)
        return 0
    finally:
        recorder.cleanup()


def run_formats(args) -> int:
    config = CareAudioConfig(args.config)
    setup_logging(config, args.log_level or config.get('logging.level', 'INFO'))
    settings = config.capture_settings()
    probe = SoundFileProbe(args.profile or settings.playback_profile,
                           args.user_agent if args.user_agent is not None else settings.user_agent)
    Console().print(render_formats(supported_formats(probe, settings.sample_rate),
                                   negotiate_format(probe, settings.sample_rate)))
    return 0


def run_delete(args) -> int:
    recorder = Recorder(args.config, args.log_level)
    try:
        recorder.init(owner_id=args.owner, parent_record_id=args.parent)
        manager = recorder.service.upload_manager
        if manager is None:
            recorder.console.print("❌ No storage configured", style="red")
            return 1
        removed = asyncio.run(manager.delete(args.address, args.owner, args.parent))
        recorder.console.print("✅ Deleted" if removed else "⚠️  Deleted with errors (see log)")
        return 0 if removed else 1
    finally:
        recorder.cleanup()


def run_sync(args) -> int:
    recorder = Recorder(args.config, args.log_level)
    try:
        recorder.init()
        synced = asyncio.run(recorder.service.sync_pending())
        remaining = len(recorder.service.file_manager.list_pending())
        recorder.console.print(f"Synchronised {synced} recording(s), {remaining} still pending")
        return 0 if remaining == 0 else 1
    finally:
        recorder.cleanup()


def run_open(args) -> int:
    recorder = Recorder(args.config, args.log_level)
    try:
        recorder.init(owner_id=args.owner, parent_record_id=args.parent)
        service = recorder.service
        address = asyncio.run(service.open_stored())
        if not address:
            recorder.console.print(f"❌ No stored recording for {args.parent}", style="red")
            return 1
        recorder.console.print(f"Address: {address}")
        if args.export is not None:
            path = asyncio.run(service.export(args.export or None))
            if path:
                recorder.console.print(f"Exported to {path}", style="green")
        if args.play:
            service.play()
            while service.playback.is_playing:
                time.sleep(0.5)
        return 0
    finally:
        recorder.cleanup()


def run_check(args) -> int:
    recorder = Recorder(args.config, args.log_level)
    try:
        recorder.init()
        report = asyncio.run(recorder.service.storage_report(args.cleanup_days))
        recorder.console.print(render_storage_report(report))
        return 0 if report["remote_accessible"] is not False else 1
    finally:
        recorder.cleanup()


def main() -> None:
    """Main entry point for careaudio."""
    parser = argparse.ArgumentParser(
        description="careaudio - Record, store and replay intervention audio"
    )
    parser.add_argument(
        "--config",
        type=str,
        default="careaudio.yaml",
        help="Path to configuration YAML file (default: careaudio.yaml)"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config)"
    )
    parser.add_argument(
        "--version",
        action="version",
        version="careaudio v0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    record_parser = subparsers.add_parser("record", help="Record from the microphone")
    record_parser.add_argument("--duration", type=int, default=10,
                               help="Recording duration in seconds (default: 10)")
    record_parser.add_argument("--owner", type=str, help="Owner id; enables upload")
    record_parser.add_argument("--parent", type=str, help="Parent record id to link to")
    record_parser.add_argument("--export", type=str, nargs="?", const="",
                               help="Export the recording (optionally into this directory)")
    record_parser.add_argument("--play", action="store_true", help="Play the recording back")
    record_parser.set_defaults(handler=run_record)

    formats_parser = subparsers.add_parser("formats", help="Show supported encodings")
    formats_parser.add_argument("--profile", choices=["auto", "restricted", "general"])
    formats_parser.add_argument("--user-agent", type=str)
    formats_parser.set_defaults(handler=run_formats)

    delete_parser = subparsers.add_parser("delete", help="Delete a stored recording")
    delete_parser.add_argument("address", type=str, help="Durable address of the recording")
    delete_parser.add_argument("--owner", type=str, required=True)
    delete_parser.add_argument("--parent", type=str, help="Parent record whose reference is cleared")
    delete_parser.set_defaults(handler=run_delete)

    sync_parser = subparsers.add_parser("sync", help="Upload recordings saved locally")
    sync_parser.set_defaults(handler=run_sync)

    open_parser = subparsers.add_parser("open", help="Open the recording a parent record references")
    open_parser.add_argument("--parent", type=str, required=True, help="Parent record id")
    open_parser.add_argument("--owner", type=str, help="Owner id, used if the recording is deleted")
    open_parser.add_argument("--export", type=str, nargs="?", const="",
                             help="Export the recording (optionally into this directory)")
    open_parser.add_argument("--play", action="store_true", help="Play the recording")
    open_parser.set_defaults(handler=run_open)

    check_parser = subparsers.add_parser("check", help="Show local storage usage and remote access")
    check_parser.add_argument("--cleanup-days", type=int,
                              help="First delete exports older than this many days")
    check_parser.set_defaults(handler=run_check)

    args = parser.parse_args()

    try:
        sys.exit(args.handler(args))
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
    except Exception as e:
        print(f"❌ Error: {e}")
        logging.error(f"Application error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
