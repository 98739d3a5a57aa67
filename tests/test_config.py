import pytest
import tempfile
import shutil
import json
from pathlib import Path
from unittest.mock import patch
import sys
import os

# Add the parent directory to the path so we can import ytdl
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import ytdl


class TestConfigRecord:
    """Test the typed configuration record."""

    def test_from_dict_reads_known_keys(self):
        config = ytdl.Config.from_dict({"DownloadDir": "/srv/media", "AliasName": "yt"})
        assert config.download_dir == Path("/srv/media")
        assert config.alias_name == "yt"

    def test_from_dict_defaults_blank_and_missing_values(self):
        config = ytdl.Config.from_dict({"DownloadDir": "   ", "Other": 5})
        assert config.download_dir is None
        assert config.alias_name is None

    def test_from_dict_expands_home(self):
        config = ytdl.Config.from_dict({"DownloadDir": "~/Videos"})
        assert config.download_dir == Path.home() / "Videos"

    def test_to_dict_skips_unset_fields(self):
        assert ytdl.Config().to_dict() == {}
        assert ytdl.Config(download_dir=Path("/x")).to_dict() == {"DownloadDir": str(Path("/x"))}


class TestConfigStore:
    """Test the JSON-backed configuration store."""

    def setup_method(self):
        """Setup for each test method."""
        self.temp_dir = Path(tempfile.mkdtemp())
        self.path = self.temp_dir / "config.json"
        self.store = ytdl.ConfigStore(self.path)

    def teardown_method(self):
        """Cleanup after each test method."""
        if self.temp_dir.exists():
            shutil.rmtree(self.temp_dir)

    def test_missing_file_is_empty_config(self):
        config = self.store.load()
        assert config.download_dir is None
        assert config.alias_name is None
        assert self.store.get("DownloadDir") is None

    def test_corrupt_file_is_empty_config(self):
        self.path.write_text("{not json", encoding="utf-8")
        assert self.store.load() == ytdl.Config()

    def test_non_object_document_is_empty_config(self):
        self.path.write_text("[1, 2, 3]", encoding="utf-8")
        assert self.store.load() == ytdl.Config()

    def test_read_after_write_returns_written_value(self):
        self.store.set("DownloadDir", str(self.temp_dir))
        assert self.store.get("DownloadDir") == str(self.temp_dir)

        # A fresh store sees the same value on disk
        fresh = ytdl.ConfigStore(self.path)
        assert fresh.get("DownloadDir") == str(self.temp_dir)
        assert fresh.load().download_dir == self.temp_dir

    def test_save_preserves_unknown_keys(self):
        self.path.write_text(json.dumps({"Theme": "dark", "AliasName": "old"}), encoding="utf-8")
        self.store.save(ytdl.Config(download_dir=self.temp_dir, alias_name="new"))

        data = json.loads(self.path.read_text(encoding="utf-8"))
        assert data == {"Theme": "dark", "AliasName": "new", "DownloadDir": str(self.temp_dir)}

    def test_save_drops_cleared_fields(self):
        self.store.save(ytdl.Config(download_dir=self.temp_dir, alias_name="yt"))
        self.store.save(ytdl.Config(download_dir=self.temp_dir))

        data = json.loads(self.path.read_text(encoding="utf-8"))
        assert "AliasName" not in data

    def test_load_is_cached_until_reload(self):
        self.store.set("DownloadDir", "/first")
        # Another writer changes the file behind our back
        self.path.write_text(json.dumps({"DownloadDir": "/second"}), encoding="utf-8")

        assert self.store.load().download_dir == Path("/first")
        assert self.store.reload().download_dir == Path("/second")

    def test_interrupted_write_leaves_previous_file_intact(self):
        self.store.set("DownloadDir", "/original")
        before = self.path.read_text(encoding="utf-8")

        with patch("ytdl.json.dump", side_effect=RuntimeError("interrupted")):
            with pytest.raises(RuntimeError):
                self.store.set("DownloadDir", "/changed")

        assert self.path.read_text(encoding="utf-8") == before
        # No temporary files are left behind
        assert [p.name for p in self.temp_dir.iterdir()] == ["config.json"]
        # The cached document was not updated either
        assert self.store.get("DownloadDir") == "/original"

    def test_failed_rename_raises_config_error(self):
        self.store.set("DownloadDir", "/original")

        with patch("ytdl.os.replace", side_effect=PermissionError("read-only")):
            with pytest.raises(ytdl.ConfigError) as exc_info:
                self.store.set("DownloadDir", "/changed")

        assert "Could not save configuration" in str(exc_info.value)
        assert exc_info.value.hint
        assert json.loads(self.path.read_text(encoding="utf-8")) == {"DownloadDir": "/original"}
        assert [p.name for p in self.temp_dir.iterdir()] == ["config.json"]

    def test_write_creates_parent_directory(self):
        store = ytdl.ConfigStore(self.temp_dir / "nested" / "config.json")
        store.set("AliasName", "yt")
        assert (self.temp_dir / "nested" / "config.json").exists()

    def test_written_file_is_valid_json(self):
        self.store.set("AliasName", "ytdl")
        self.store.set("DownloadDir", "/media/Vidéos")
        data = json.loads(self.path.read_text(encoding="utf-8"))
        assert data == {"AliasName": "ytdl", "DownloadDir": "/media/Vidéos"}
