"""Encoding negotiation and container encoding for captured audio."""

import io
import logging
import re
from typing import List, Optional, Protocol, Sequence, Tuple

import numpy as np
import soundfile as sf

from ..models.audio import EncodingFormat

logger = logging.getLogger(__name__)


OGG_OPUS = EncodingFormat("audio/ogg;codecs=opus", "ogg", "OGG", "OPUS")
OGG_VORBIS = EncodingFormat("audio/ogg;codecs=vorbis", "ogg", "OGG", "VORBIS")
MP3 = EncodingFormat("audio/mpeg", "mp3", "MP3", "MPEG_LAYER_III")
FLAC = EncodingFormat("audio/flac", "flac", "FLAC", "PCM_16")
WAV = EncodingFormat("audio/wav", "wav", "WAV", "PCM_16")

# General platforms: smallest files first.
COMPRESSION_FIRST: Tuple[EncodingFormat, ...] = (OGG_OPUS, OGG_VORBIS, MP3, FLAC)

# Platforms with restrictive native playback (iPad, iPhone, Safari).
COMPATIBILITY_FIRST: Tuple[EncodingFormat, ...] = (MP3, WAV, OGG_OPUS, OGG_VORBIS, FLAC)

LAST_RESORT = WAV

# Sample rates libsndfile accepts when writing these subtypes; others take any rate.
RESTRICTED_SAMPLE_RATES = {
    "OPUS": frozenset({8000, 12000, 16000, 24000, 48000}),
    "MPEG_LAYER_III": frozenset({8000, 11025, 12000, 16000, 22050, 24000, 32000, 44100, 48000}),
}

_SAFARI_RE = re.compile(r"^((?!chrome|android).)*safari", re.IGNORECASE)
_IOS_RE = re.compile(r"iPad|iPhone|iPod")


class CapabilityProbe(Protocol):
    def is_supported(self, fmt: EncodingFormat) -> bool: ...

    def is_restricted_playback(self) -> bool: ...


def detect_restricted_playback(user_agent: str, max_touch_points: int = 0) -> bool:
    """True for iOS devices, iPadOS posing as a Mac, and desktop Safari."""
    if not user_agent:
        return False
    if _IOS_RE.search(user_agent):
        return True
    if "Macintosh" in user_agent and max_touch_points > 1:
        return True
    return bool(_SAFARI_RE.search(user_agent))


class SoundFileProbe:
    """Capability probe backed by the local libsndfile build."""

    def __init__(self, playback_profile: str = "auto", user_agent: str = "",
                 max_touch_points: int = 0):
        """Initialize the probe.

        Args:
            playback_profile: "restricted", "general" or "auto" (sniff user_agent)
            user_agent: Client user-agent string used when the profile is "auto"
            max_touch_points: Touch points reported by the client
        """
        if playback_profile not in ("auto", "restricted", "general"):
            raise ValueError(f"Unknown playback profile: {playback_profile}")
        self.playback_profile = playback_profile
        self.user_agent = user_agent
        self.max_touch_points = max_touch_points

    def is_supported(self, fmt: EncodingFormat) -> bool:
        return sf.check_format(fmt.container, fmt.subtype)

    def is_restricted_playback(self) -> bool:
        if self.playback_profile == "restricted":
            return True
        if self.playback_profile == "general":
            return False
        return detect_restricted_playback(self.user_agent, self.max_touch_points)


def accepts_sample_rate(fmt: EncodingFormat, sample_rate: Optional[int]) -> bool:
    """True if libsndfile can write `fmt` at `sample_rate` (None means any rate)."""
    if sample_rate is None:
        return True
    rates = RESTRICTED_SAMPLE_RATES.get((fmt.subtype or "").upper())
    return rates is None or sample_rate in rates


def candidate_formats(restricted: bool) -> Sequence[EncodingFormat]:
    return COMPATIBILITY_FIRST if restricted else COMPRESSION_FIRST


def negotiate_format(probe: CapabilityProbe, sample_rate: Optional[int] = None) -> EncodingFormat:
    """Pick the first supported encoding for this runtime and capture rate. Never fails."""
    try:
        restricted = probe.is_restricted_playback()
    except Exception as e:
        logger.warning(f"Platform detection failed, assuming general platform: {e}")
        restricted = False

    for fmt in candidate_formats(restricted):
        if not accepts_sample_rate(fmt, sample_rate):
            logger.debug(f"Skipping {fmt.label}: {sample_rate}Hz not supported")
            continue
        try:
            supported = probe.is_supported(fmt)
        except Exception as e:
            logger.debug(f"Capability check failed for {fmt.label}: {e}")
            supported = False
        if supported:
            logger.info(f"Negotiated encoding {fmt.label} (restricted={restricted})")
            return fmt

    logger.warning(f"No candidate encoding reported as supported, using {LAST_RESORT.label}")
    return LAST_RESORT


def supported_formats(probe: CapabilityProbe,
                      sample_rate: Optional[int] = None) -> List[Tuple[EncodingFormat, bool]]:
    """List every known candidate with its support flag."""
    seen = []
    for fmt in COMPATIBILITY_FIRST:
        try:
            supported = accepts_sample_rate(fmt, sample_rate) and probe.is_supported(fmt)
        except Exception:
            supported = False
        seen.append((fmt, supported))
    return seen


def extension_for_mime_type(mime_type: Optional[str], default: str = "wav") -> str:
    """Derive a file extension from a declared media type."""
    if not mime_type:
        return default
    mime_type = mime_type.lower()
    if "mp4" in mime_type:
        return "mp4"
    if "mpeg" in mime_type or "mp3" in mime_type:
        return "mp3"
    if "webm" in mime_type:
        return "webm"
    if "ogg" in mime_type or "opus" in mime_type:
        return "ogg"
    if "flac" in mime_type:
        return "flac"
    if "wav" in mime_type:
        return "wav"
    return default


def encode_pcm(pcm: bytes, fmt: EncodingFormat, sample_rate: int, channels: int = 1) -> bytes:
    """Wrap concatenated 16-bit PCM in the negotiated container.

    Args:
        pcm: Little-endian signed 16-bit samples, interleaved by channel
        fmt: Target encoding
        sample_rate: Capture sample rate in Hz
        channels: Number of interleaved channels

    Returns:
        The encoded file bytes
    """
    frame_bytes = 2 * channels
    usable = len(pcm) - (len(pcm) % frame_bytes)
    samples = np.frombuffer(pcm[:usable], dtype=np.int16)
    if channels > 1:
        samples = samples.reshape(-1, channels)

    buffer = io.BytesIO()
    sf.write(buffer, samples, sample_rate, format=fmt.container, subtype=fmt.subtype)
    encoded = buffer.getvalue()
    logger.debug(f"Encoded {usable} PCM bytes as {fmt.label}: {len(encoded)} bytes")
    return encoded


def decode_audio(data: bytes) -> Tuple[np.ndarray, int]:
    """Decode an encoded recording to int16 samples and its sample rate."""
    samples, sample_rate = sf.read(io.BytesIO(data), dtype="int16", always_2d=True)
    return samples, sample_rate
