"""Pytest configuration and fixtures for careaudio tests."""

import logging
import tempfile
import time
from types import SimpleNamespace
from typing import Callable, Optional

import numpy as np
import pytest

from careaudio.audio.formats import WAV
from careaudio.audio.session import CaptureSession
from careaudio.config import CareAudioConfig
from careaudio.models.audio import AudioArtifact, AudioBlob

from tests.fakes import (
    CountingRegistry,
    FakeEncoder,
    FakeMicrophone,
    FakeProbe,
    InMemoryRecordStore,
    InMemoryStorage,
    ManualTicker,
)


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without hardware or network")
    config.addinivalue_line("markers", "integration: tests wiring several components together")


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def sample_audio_chunk():
    """Generate a sample audio chunk for testing."""
    # Generate 1024 samples of 16-bit audio (sine wave)
    sample_rate = 16000
    duration = 1024 / sample_rate
    freq = 440  # A4 note

    t = np.linspace(0, duration, 1024, False)
    wave_data = np.sin(2 * np.pi * freq * t)

    audio_data = (wave_data * 32767).astype(np.int16)
    return audio_data.tobytes()


@pytest.fixture
def notices():
    """Collects emitted notices; pass `notices.append` as the notify callback."""
    return []


@pytest.fixture
def registry():
    return CountingRegistry()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def records():
    return InMemoryRecordStore()


@pytest.fixture
def make_artifact(registry, sample_audio_chunk):
    """Build a finalized artifact holding a local address."""
    def _make(data: Optional[bytes] = None, local: bool = True) -> AudioArtifact:
        artifact = AudioArtifact(
            blob=AudioBlob(sample_audio_chunk * 4 if data is None else data, WAV.mime_type),
            encoding=WAV,
            duration_seconds=3,
            registry=registry,
        )
        if local:
            artifact.ensure_local()
        return artifact
    return _make


@pytest.fixture
def capture_kit(registry, notices):
    """Capture session wired to fakes. Returns a namespace with session, mic, encoders, tickers."""
    def _build(microphone: Optional[FakeMicrophone] = None, signal_stop: bool = True,
               probe: Optional[FakeProbe] = None, **kwargs):
        kit = SimpleNamespace(
            microphone=microphone or FakeMicrophone(),
            probe=probe or FakeProbe(),
            encoders=[],
            tickers=[],
            blobs=[],
            states=[],
            sleeps=[],
        )

        def encoder_factory(stream, encoding, on_data, on_stop):
            encoder = FakeEncoder(stream, encoding, on_data, on_stop, signal_stop=signal_stop)
            kit.encoders.append(encoder)
            return encoder

        def ticker_factory(interval, callback):
            ticker = ManualTicker(interval, callback)
            kit.tickers.append(ticker)
            return ticker

        kwargs.setdefault("finalize_timeout_seconds", 0.05)
        kit.session = CaptureSession(
            kit.microphone,
            kit.probe,
            registry,
            encoder_factory=encoder_factory,
            ticker_factory=ticker_factory,
            notify=notices.append,
            on_blob=kit.blobs.append,
            on_state_change=lambda old, new: kit.states.append(new),
            sleep=kit.sleeps.append,
            **kwargs,
        )
        return kit

    return _build


@pytest.fixture
def service_config(temp_data_dir):
    return CareAudioConfig.from_dict({
        "capture": {"flush_grace_seconds": 0, "finalize_timeout_seconds": 0.5},
        "upload": {"timeout_seconds": 2},
        "storage": {"data_directory": temp_data_dir},
    })


@pytest.fixture
def wait_for():
    """Poll a predicate until it holds or the timeout elapses."""
    def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return predicate()
    return _wait
