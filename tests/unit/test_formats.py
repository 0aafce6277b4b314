"""Unit tests for encoding negotiation and container encoding."""

from unittest.mock import patch

import numpy as np
import pytest

from careaudio.audio import formats
from careaudio.audio.formats import (
    COMPATIBILITY_FIRST,
    COMPRESSION_FIRST,
    FLAC,
    MP3,
    OGG_OPUS,
    OGG_VORBIS,
    WAV,
    SoundFileProbe,
    accepts_sample_rate,
    decode_audio,
    detect_restricted_playback,
    encode_pcm,
    extension_for_mime_type,
    negotiate_format,
    supported_formats,
)

from tests.fakes import FakeProbe

IPAD_UA = "Mozilla/5.0 (iPad; CPU OS 16_0 like Mac OS X) AppleWebKit/605.1.15 Mobile/15E148"
SAFARI_UA = ("Mozilla/5.0 (Macintosh; Intel Mac OS X 13_0) AppleWebKit/605.1.15 "
             "(KHTML, like Gecko) Version/16.0 Safari/605.1.15")
CHROME_UA = ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
             "(KHTML, like Gecko) Chrome/120.0 Safari/537.36")


@pytest.mark.unit
class TestNegotiation:
    """Test cases for negotiate_format."""

    def test_general_platform_prefers_compression(self):
        probe = FakeProbe(supported={"ogg/opus", "mp3", "wav"})

        assert negotiate_format(probe) == OGG_OPUS

    def test_restricted_platform_prefers_compatibility(self):
        probe = FakeProbe(supported={"ogg/opus", "mp3", "wav"}, restricted=True)

        assert negotiate_format(probe) == MP3

    def test_restricted_falls_back_to_wav(self):
        probe = FakeProbe(supported={"wav", "flac"}, restricted=True)

        assert negotiate_format(probe) == WAV

    def test_first_supported_candidate_wins(self):
        probe = FakeProbe(supported={"flac"})

        assert negotiate_format(probe) == FLAC
        assert probe.checked == ["ogg/opus", "ogg/vorbis", "mp3", "flac"]

    def test_nothing_supported_uses_last_resort(self):
        assert negotiate_format(FakeProbe(supported=set())) == WAV

    def test_probe_errors_never_propagate(self):
        assert negotiate_format(FakeProbe(raises=True)) == WAV

    def test_platform_detection_error_assumes_general(self):
        probe = FakeProbe(supported={"ogg/opus", "mp3"})
        probe.is_restricted_playback = lambda: 1 / 0

        assert negotiate_format(probe) == OGG_OPUS

    def test_candidate_orders(self):
        assert COMPRESSION_FIRST[0] == OGG_OPUS
        assert COMPATIBILITY_FIRST[:2] == (MP3, WAV)

    def test_supported_formats_lists_every_candidate(self):
        listed = supported_formats(FakeProbe(supported={"wav"}))

        assert [fmt for fmt, _ in listed] == list(COMPATIBILITY_FIRST)
        assert dict((fmt.label, ok) for fmt, ok in listed)["wav"] is True


@pytest.mark.unit
class TestPlatformDetection:
    """Test cases for restricted playback detection."""

    @pytest.mark.parametrize("user_agent, touch_points, expected", [
        (IPAD_UA, 0, True),
        ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X)", 0, True),
        (SAFARI_UA, 0, True),
        ("Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15", 5, True),
        (CHROME_UA, 0, False),
        ("Mozilla/5.0 (Linux; Android 14) Safari/537.36", 0, False),
        ("", 0, False),
    ])
    def test_detect_restricted_playback(self, user_agent, touch_points, expected):
        assert detect_restricted_playback(user_agent, touch_points) is expected

    def test_probe_profiles(self):
        assert SoundFileProbe("restricted").is_restricted_playback() is True
        assert SoundFileProbe("general", user_agent=IPAD_UA).is_restricted_playback() is False
        assert SoundFileProbe("auto", user_agent=IPAD_UA).is_restricted_playback() is True

    def test_unknown_profile_rejected(self):
        with pytest.raises(ValueError):
            SoundFileProbe("mobile")

    def test_probe_asks_libsndfile(self):
        with patch.object(formats.sf, "check_format", return_value=False) as check:
            assert SoundFileProbe("general").is_supported(OGG_OPUS) is False
        check.assert_called_once_with("OGG", "OPUS")

    def test_wav_is_always_writable(self):
        assert SoundFileProbe("general").is_supported(WAV) is True


@pytest.mark.unit
class TestExtensions:
    """Test cases for extension_for_mime_type."""

    @pytest.mark.parametrize("mime_type, extension", [
        ("audio/mp4", "mp4"),
        ("audio/mpeg", "mp3"),
        ("audio/webm;codecs=opus", "webm"),
        ("audio/ogg;codecs=opus", "ogg"),
        ("audio/flac", "flac"),
        ("audio/wav", "wav"),
        ("audio/x-unknown", "wav"),
        (None, "wav"),
    ])
    def test_extension_for_mime_type(self, mime_type, extension):
        assert extension_for_mime_type(mime_type) == extension

    def test_labels(self):
        assert OGG_OPUS.label == "ogg/opus"
        assert MP3.label == "mp3"
        assert WAV.label == "wav"


@pytest.mark.unit
class TestEncoding:
    """Test cases for encode_pcm / decode_audio."""

    def test_wav_preserves_samples(self, sample_audio_chunk):
        encoded = encode_pcm(sample_audio_chunk, WAV, 16000)

        assert encoded[:4] == b"RIFF"
        samples, sample_rate = decode_audio(encoded)
        assert sample_rate == 16000
        assert samples.shape == (1024, 1)
        np.testing.assert_array_equal(samples[:, 0], np.frombuffer(sample_audio_chunk, dtype=np.int16))

    def test_partial_frame_is_dropped(self):
        encoded = encode_pcm(b"\x01\x00\x02\x00\x03", WAV, 8000)

        samples, _ = decode_audio(encoded)
        assert samples[:, 0].tolist() == [1, 2]

    def test_stereo(self):
        pcm = np.array([1, -1, 2, -2], dtype=np.int16).tobytes()

        samples, _ = decode_audio(encode_pcm(pcm, WAV, 8000, channels=2))

        assert samples.tolist() == [[1, -1], [2, -2]]


@pytest.mark.unit
class TestSampleRates:
    """Test cases for sample-rate aware negotiation."""

    @pytest.mark.parametrize("fmt, sample_rate, expected", [
        (OGG_OPUS, 48000, True),
        (OGG_OPUS, 44100, False),
        (MP3, 44100, True),
        (MP3, 96000, False),
        (FLAC, 96000, True),
        (WAV, 44100, True),
        (OGG_OPUS, None, True),
    ])
    def test_accepts_sample_rate(self, fmt, sample_rate, expected):
        assert accepts_sample_rate(fmt, sample_rate) is expected

    def test_opus_skipped_at_44100_hz(self):
        probe = FakeProbe(supported={"ogg/opus", "ogg/vorbis"})

        assert negotiate_format(probe, 44100) == OGG_VORBIS
        assert "ogg/opus" not in probe.checked

    def test_opus_kept_at_48000_hz(self):
        assert negotiate_format(FakeProbe(supported={"ogg/opus"}), 48000) == OGG_OPUS

    def test_supported_formats_reflect_sample_rate(self):
        listed = dict((fmt.label, ok) for fmt, ok in
                      supported_formats(FakeProbe(supported={"ogg/opus", "wav"}), 44100))

        assert listed["ogg/opus"] is False
        assert listed["wav"] is True
