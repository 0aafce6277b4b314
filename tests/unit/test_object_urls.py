"""Unit tests for local ephemeral addresses and artifact ownership."""

import pytest

from careaudio.models.audio import AudioArtifact, AudioBlob
from careaudio.audio.formats import WAV
from careaudio.storage.object_urls import ObjectUrlRegistry, is_local_address


@pytest.mark.unit
class TestObjectUrlRegistry:
    """Test cases for ObjectUrlRegistry."""

    def test_create_and_resolve(self):
        registry = ObjectUrlRegistry()
        blob = AudioBlob(b"abc", "audio/wav")

        address = registry.create(blob)

        assert address.startswith("blob:careaudio/")
        assert is_local_address(address)
        assert registry.resolve(address) is blob
        assert registry.live_count == 1

    def test_addresses_are_unique(self):
        registry = ObjectUrlRegistry()
        blob = AudioBlob(b"abc", "audio/wav")

        assert registry.create(blob) != registry.create(blob)
        assert registry.created_count == 2

    def test_revoke_once(self):
        registry = ObjectUrlRegistry()
        address = registry.create(AudioBlob(b"abc", "audio/wav"))

        assert registry.revoke(address) is True
        assert registry.revoke(address) is False

        assert registry.revoked_count == 1
        assert registry.resolve(address) is None

    def test_revoke_all(self):
        registry = ObjectUrlRegistry()
        for _ in range(3):
            registry.create(AudioBlob(b"x", "audio/wav"))

        assert registry.revoke_all() == 3
        assert registry.live_count == 0

    @pytest.mark.parametrize("address, expected", [
        ("blob:careaudio/123", True),
        ("https://x.supabase.co/storage/v1/object/public/b/a.wav", False),
        ("", False),
        (None, False),
    ])
    def test_is_local_address(self, address, expected):
        assert is_local_address(address) is expected


@pytest.mark.unit
class TestAudioArtifact:
    """Test cases for AudioArtifact address ownership."""

    def make(self, registry):
        return AudioArtifact(blob=AudioBlob(b"\x00\x01", WAV.mime_type), encoding=WAV, registry=registry)

    def test_ensure_local_is_idempotent(self):
        registry = ObjectUrlRegistry()
        artifact = self.make(registry)

        first = artifact.ensure_local()

        assert artifact.ensure_local() == first
        assert registry.created_count == 1
        assert artifact.address == first
        assert artifact.is_durable is False

    def test_release_local_exactly_once(self):
        registry = ObjectUrlRegistry()
        artifact = self.make(registry)
        artifact.ensure_local()

        assert artifact.release_local() is True
        assert artifact.release_local() is False

        assert registry.revoked_count == 1
        assert artifact.address is None

    def test_attach_remote_swaps_address(self):
        registry = ObjectUrlRegistry()
        artifact = self.make(registry)
        artifact.ensure_local()

        artifact.attach_remote("https://cdn/a.wav", storage_path="a.wav", parent_record_id="r1")

        assert artifact.address == "https://cdn/a.wav"
        assert artifact.is_durable is True
        assert artifact.local_address is None
        assert registry.live_count == 0
        assert artifact.parent_record_id == "r1"

    def test_discard_forgets_everything(self):
        registry = ObjectUrlRegistry()
        artifact = self.make(registry)
        artifact.ensure_local()
        artifact.attach_remote("https://cdn/a.wav")

        artifact.discard()

        assert artifact.address is None
        assert artifact.storage_path is None
        assert registry.created_count == registry.revoked_count == 1

    def test_ensure_local_requires_registry(self):
        artifact = self.make(None)

        with pytest.raises(RuntimeError):
            artifact.ensure_local()
