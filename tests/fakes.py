"""Test doubles for the device, encoder, ticker, probe, storage and player seams."""

import asyncio
import time
from typing import Callable, Dict, List, Optional

from careaudio.audio.device import AudioTrack
from careaudio.errors import (
    NETWORK_FAILURE,
    PARENT_LINK_FAILED,
    STORAGE_WRITE_FAILED,
    RecordStoreError,
    StorageError,
)
from careaudio.storage.object_urls import ObjectUrlRegistry


class FakeStream:
    """Microphone stream serving a fixed chunk (or a script of chunks)."""

    def __init__(self, chunk: bytes = b"\x01\x00" * 512, sample_rate: int = 16000,
                 channels: int = 1, read_delay: float = 0.001):
        self.chunk = chunk
        self.sample_rate = sample_rate
        self.channels = channels
        self.read_delay = read_delay
        self.tracks = [AudioTrack("fake")]
        self.reads = 0
        self.close_count = 0
        self.fail_reads = False

    def read(self, frames: int) -> bytes:
        time.sleep(self.read_delay)
        if self.fail_reads:
            self.tracks[0].end()
            raise OSError("device unplugged")
        self.reads += 1
        return self.chunk

    def close(self) -> None:
        self.close_count += 1
        for track in self.tracks:
            track.stop()


class FakeMicrophone:
    """Device capture API returning FakeStreams, or raising `error`."""

    def __init__(self, error: Optional[BaseException] = None, stream_factory: Callable[[], FakeStream] = FakeStream):
        self.error = error
        self.stream_factory = stream_factory
        self.requests = 0
        self.streams: List[FakeStream] = []

    def request_microphone(self) -> FakeStream:
        self.requests += 1
        if self.error is not None:
            raise self.error
        stream = self.stream_factory()
        self.streams.append(stream)
        return stream


class FakeEncoder:
    """Encoder driven by the test: emit() buffers, request_data() flushes, stop() signals."""

    def __init__(self, stream, encoding, on_data, on_stop, signal_stop: bool = True):
        self.stream = stream
        self.encoding = encoding
        self.on_data = on_data
        self.on_stop = on_stop
        self.signal_stop = signal_stop
        self.started = False
        self.stopped = False
        self.flush_requests = 0
        self._pending: List[bytes] = []

    def start(self) -> None:
        self.started = True

    def emit(self, chunk: bytes) -> None:
        """Deliver a chunk immediately, as a timeslice flush would."""
        self.on_data(chunk)

    def buffer(self, chunk: bytes) -> None:
        """Hold a chunk until the next request_data()."""
        self._pending.append(chunk)

    def request_data(self) -> None:
        self.flush_requests += 1
        data = b"".join(self._pending)
        self._pending.clear()
        self.on_data(data)

    def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True
        if self.signal_stop:
            self.on_stop()


class ManualTicker:
    """Ticker advanced explicitly by the test."""

    def __init__(self, interval: float, callback: Callable[[], None]):
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def tick(self, count: int = 1) -> None:
        for _ in range(count):
            if self.cancelled:
                return
            self.callback()


class FakeProbe:
    """Capability probe answering from a set of supported labels."""

    def __init__(self, supported=("wav",), restricted: bool = False, raises: bool = False):
        self.supported = set(supported)
        self.restricted = restricted
        self.raises = raises
        self.checked: List[str] = []

    def is_supported(self, fmt) -> bool:
        self.checked.append(fmt.label)
        if self.raises:
            raise RuntimeError("probe unavailable")
        return fmt.label in self.supported

    def is_restricted_playback(self) -> bool:
        return self.restricted


class InMemoryStorage:
    """Object storage service keeping objects in a dict."""

    base = "https://project.supabase.co/storage/v1/object/public/intervention-audios"

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.put_calls: List[str] = []
        self.delete_calls: List[str] = []
        self.fail_put = False
        self.fail_delete = False
        self.put_delay = 0.0
        self.accessible = True

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        self.put_calls.append(path)
        if self.put_delay:
            await asyncio.sleep(self.put_delay)
        if self.fail_put:
            raise StorageError(STORAGE_WRITE_FAILED, "403 - bucket policy")
        self.objects[path] = data
        self.content_types[path] = content_type
        return f"{self.base}/{path}"

    async def delete(self, path: str) -> None:
        self.delete_calls.append(path)
        if self.fail_delete:
            raise StorageError(STORAGE_WRITE_FAILED, "500 - unavailable")
        self.objects.pop(path, None)

    def path_from_address(self, address: str) -> Optional[str]:
        prefix = f"{self.base}/"
        return address[len(prefix):] if address.startswith(prefix) else None

    def resolve_address(self, path_or_address: Optional[str]) -> Optional[str]:
        if not path_or_address:
            return None
        if path_or_address.startswith(("https://", "blob:")):
            return path_or_address
        return f"{self.base}/{path_or_address}"

    async def check_access(self) -> bool:
        return self.accessible


class InMemoryRecordStore:
    """Parent record store with a fixed set of existing records."""

    def __init__(self, record_ids=("report-42",)):
        self.references: Dict[str, Optional[str]] = {record_id: None for record_id in record_ids}
        self.updates: List[tuple] = []
        self.fail_update = False
        self.fail_read = False
        self.update_delay = 0.0

    async def update_audio_reference(self, parent_record_id: str, address: Optional[str]) -> None:
        self.updates.append((parent_record_id, address))
        if self.update_delay:
            await asyncio.sleep(self.update_delay)
        if self.fail_update:
            raise RecordStoreError("permission denied for table")
        if parent_record_id not in self.references:
            raise RecordStoreError(f"No row with id={parent_record_id}", code=PARENT_LINK_FAILED)
        self.references[parent_record_id] = address

    async def get_audio_reference(self, parent_record_id: str) -> Optional[str]:
        if self.fail_read:
            raise RecordStoreError("connection reset", code=NETWORK_FAILURE)
        return self.references.get(parent_record_id)


class FakePlayer:
    """Playback handle recording calls; the test triggers ended/error."""

    def __init__(self, address, on_ended, on_error, fail_on_play: bool = False):
        self.address = address
        self.on_ended = on_ended
        self.on_error = on_error
        self.fail_on_play = fail_on_play
        self.play_calls = 0
        self.pause_calls = 0
        self.stop_calls = 0

    def play(self) -> None:
        self.play_calls += 1
        if self.fail_on_play:
            raise RuntimeError("unsupported media")

    def pause(self) -> None:
        self.pause_calls += 1

    def stop(self) -> None:
        self.stop_calls += 1


class CountingRegistry(ObjectUrlRegistry):
    """Registry that remembers every revoke result."""

    def __init__(self):
        super().__init__()
        self.revoke_results: List[bool] = []

    def revoke(self, address: str) -> bool:
        result = super().revoke(address)
        self.revoke_results.append(result)
        return result


