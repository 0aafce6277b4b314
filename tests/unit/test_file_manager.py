"""Unit tests for FileManager class."""

import os
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from careaudio.storage.file_manager import FileManager


@pytest.mark.unit
class TestFileManager:
    """Test cases for FileManager class."""

    def test_initialization(self, temp_data_dir):
        """Test FileManager initialization."""
        fm = FileManager(temp_data_dir)

        assert fm.data_dir == Path(temp_data_dir)
        assert fm.exports_dir == Path(temp_data_dir) / "exports"
        assert fm.pending_dir == Path(temp_data_dir) / "pending"

        # Check directories were created
        assert fm.exports_dir.exists()
        assert fm.pending_dir.exists()

    def test_initialization_default_path(self):
        """Test FileManager initialization with default path."""
        with patch.object(Path, 'mkdir') as mock_mkdir:
            fm = FileManager()

            assert fm.data_dir == Path("./data")
            assert mock_mkdir.call_count >= 3

    def test_save_export(self, temp_data_dir, sample_audio_chunk):
        """Test exporting to the default directory."""
        fm = FileManager(temp_data_dir)

        path = fm.save_export(sample_audio_chunk, "recording_1.wav")

        assert Path(path) == fm.exports_dir / "recording_1.wav"
        assert Path(path).read_bytes() == sample_audio_chunk

    def test_save_export_to_new_directory(self, temp_data_dir, tmp_path):
        """Test exporting creates the target directory."""
        fm = FileManager(temp_data_dir)
        target = tmp_path / "nested" / "out"

        path = fm.save_export(b"RIFF", "a.wav", str(target))

        assert Path(path).parent == target
        assert Path(path).exists()

    def test_spool_and_load_pending(self, temp_data_dir, sample_audio_chunk):
        """Test a failed upload is kept on disk with its metadata."""
        fm = FileManager(temp_data_dir)

        pending = fm.spool_pending(sample_audio_chunk, "audio/wav", "wav", "user-1", "report-42",
                                   last_error="NETWORK_FAILURE")

        # Pending ID should be timestamp format with random suffix
        assert len(pending.pending_id) == 20  # YYYYMMDD_HHMMSS_XXXX
        assert (fm.pending_dir / pending.pending_id / "audio.wav").exists()

        loaded = fm.load_pending(pending.pending_id)

        assert loaded == pending
        assert fm.read_pending_audio(loaded) == sample_audio_chunk

    def test_load_missing_pending(self, temp_data_dir):
        fm = FileManager(temp_data_dir)

        assert fm.load_pending("nope") is None

    def test_load_corrupted_pending(self, temp_data_dir):
        """Test an unreadable info file is reported as missing."""
        fm = FileManager(temp_data_dir)
        pending = fm.spool_pending(b"x", "audio/wav", "wav", "user-1", "report-42")
        (fm.pending_dir / pending.pending_id / "pending_info.json").write_text("{ not json")

        assert fm.load_pending(pending.pending_id) is None

    def test_list_mark_and_remove_pending(self, temp_data_dir):
        fm = FileManager(temp_data_dir)
        first = fm.spool_pending(b"a", "audio/wav", "wav", "user-1", "report-1")
        second = fm.spool_pending(b"b", "audio/ogg", "ogg", "user-1", "report-2")
        (fm.pending_dir / "stray").mkdir()

        assert sorted([first.pending_id, second.pending_id]) == fm.list_pending()

        fm.mark_pending_failed(first.pending_id, "STORAGE_WRITE_FAILED")
        assert fm.load_pending(first.pending_id).last_error == "STORAGE_WRITE_FAILED"

        fm.remove_pending(first.pending_id)
        assert fm.list_pending() == [second.pending_id]

    def test_mark_missing_pending_is_ignored(self, temp_data_dir):
        fm = FileManager(temp_data_dir)

        fm.mark_pending_failed("nope", "NETWORK_FAILURE")

        assert fm.list_pending() == []

    def test_cleanup_old_exports(self, temp_data_dir):
        """Test only exports older than the cutoff are removed."""
        fm = FileManager(temp_data_dir)
        old_path = fm.save_export(b"old", "old.wav")
        new_path = fm.save_export(b"new", "new.wav")
        old_time = time.time() - 40 * 24 * 60 * 60
        os.utime(old_path, (old_time, old_time))

        assert fm.cleanup_old_exports(max_age_days=30) == 1

        assert not Path(old_path).exists()
        assert Path(new_path).exists()

    def test_get_storage_stats(self, temp_data_dir):
        fm = FileManager(temp_data_dir)
        fm.save_export(b"1234", "a.wav")
        fm.spool_pending(b"123456", "audio/wav", "wav", "user-1", "report-1")

        stats = fm.get_storage_stats()

        assert stats["export_count"] == 1
        assert stats["pending_count"] == 1
        assert stats["total_size_bytes"] >= 10
        assert stats["data_directory"] == str(fm.data_dir)
