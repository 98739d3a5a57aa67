"""
Integration tests for the command line front end.

These tests drive main() and the interactive menu the way a user would,
with the external tools replaced by scripted outcomes.
"""

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


def engine(fail_downloads=True):
    """Scripted run_process: self-update and version succeed, everything else follows fail_downloads."""
    calls = []

    def run(args, capture=False, console=None):
        args = [str(a) for a in args]
        calls.append(args)
        if "-U" in args or "--version" in args:
            return ytdl.ProcessOutcome(tuple(args), 0, stdout="2024.01.01\n")
        if fail_downloads:
            return ytdl.ProcessOutcome(tuple(args), 1, failure=ytdl.FailureKind.EXIT_STATUS)
        return ytdl.ProcessOutcome(tuple(args), 0)

    run.calls = calls
    return run


class TestCommandLine:
    """Test main() entry points."""

    def setup_method(self):
        """Setup for each test method."""
        self.temp_dir = Path(tempfile.mkdtemp())
        self.home = self.temp_dir / "home"
        self.downloads = self.temp_dir / "downloads"
        self.home.mkdir()
        self.downloads.mkdir()
        (self.home / "config.json").write_text(json.dumps({"DownloadDir": str(self.downloads)}), encoding="utf-8")
        ytdl.ytdlp_executable(self.home).write_text("#!/bin/sh\n")

        self._patches = [
            patch.dict(os.environ, {"YTDL_HOME": str(self.home)}),
            patch("ytdl.colorama_init"),
        ]
        for p in self._patches:
            p.start()

    def teardown_method(self):
        """Cleanup after each test method."""
        for p in reversed(self._patches):
            p.stop()
        if self.temp_dir.exists():
            shutil.rmtree(self.temp_dir)

    def test_help(self, capsys):
        assert ytdl.main(["--help"]) == 0
        err = capsys.readouterr().err
        assert "USAGE:" in err
        assert "--audio, -a" in err
        assert str(self.home) in err

    def test_invalid_url(self, capsys):
        assert ytdl.main(["youtube.com/watch?v=abc"]) == 2
        assert "INVALID URL" in capsys.readouterr().err

    def test_audio_without_url(self, capsys):
        with patch("ytdl.interactive") as mock_interactive:
            assert ytdl.main(["--audio"]) == 2
        mock_interactive.assert_not_called()
        assert "--audio needs a URL" in capsys.readouterr().err

    def test_unknown_option_is_reported(self, capsys):
        with patch("ytdl.run_direct", return_value=0) as mock_direct:
            assert ytdl.main(["--fast", "https://youtu.be/abc"]) == 0
        assert mock_direct.call_args[0][1] == "https://youtu.be/abc"
        assert "Ignoring unknown option: --fast" in capsys.readouterr().err

    def test_direct_video_download(self, capsys):
        run = engine(fail_downloads=False)
        with patch("ytdl.run_process", side_effect=run):
            assert ytdl.main(["https://youtu.be/abc"]) == 0

        assert len(run.calls) == 1
        args = run.calls[0]
        assert args[0] == str(ytdl.ytdlp_executable(self.home))
        assert args[-3:] == ["-P", str(self.downloads), "https://youtu.be/abc"]
        assert "Download complete!" in capsys.readouterr().err

    def test_direct_video_failure_exit_code(self, capsys):
        (self.home / "cookies.txt").write_text("# Netscape HTTP Cookie File\n")
        run = engine()
        with patch("ytdl.run_process", side_effect=run):
            assert ytdl.main(["https://youtu.be/abc"]) == 1

        assert len(run.calls) == 3
        err = capsys.readouterr().err
        assert "Download failed after 3 attempt(s) (none, cookies, cookies+mobile)" in err
        assert "Troubleshooting tips:" in err

    def test_direct_audio_probe_failure(self, capsys):
        run = engine()
        with patch("ytdl.run_process", side_effect=run):
            assert ytdl.main(["-a", "https://youtu.be/abc"]) == 1

        assert "-j" in run.calls[0]
        assert "Failed to fetch video info" in capsys.readouterr().err
        assert list(self.downloads.iterdir()) == []

    def test_update_option(self):
        run = engine()
        with patch("ytdl.run_process", side_effect=run):
            assert ytdl.main(["--update"]) == 0
        assert run.calls[0][-1] == "-U"

    def test_missing_engine_runs_bootstrap(self):
        ytdl.ytdlp_executable(self.home).unlink()
        with patch("ytdl.YtDlpManager.ensure", side_effect=ytdl.ToolBootstrapError("Failed to download yt-dlp: offline")):
            assert ytdl.main(["https://youtu.be/abc"]) == 1

    def test_keyboard_interrupt(self):
        with patch("ytdl.interactive", side_effect=KeyboardInterrupt):
            assert ytdl.main([]) == 130

    def test_end_of_input(self):
        with patch("builtins.input", side_effect=EOFError):
            assert ytdl.main([]) == 0


class TestInteractiveMenu:
    """Test the interactive loop."""

    def setup_method(self):
        """Setup for each test method."""
        self.temp_dir = Path(tempfile.mkdtemp())
        self.home = self.temp_dir / "home"
        self.downloads = self.temp_dir / "downloads"
        self.home.mkdir()
        self.downloads.mkdir()
        ytdl.ConfigStore(self.home / "config.json").set("DownloadDir", str(self.downloads))
        ytdl.ytdlp_executable(self.home).write_text("#!/bin/sh\n")

        self._patches = [
            patch.dict(os.environ, {"YTDL_HOME": str(self.home)}),
            patch("ytdl.colorama_init"),
        ]
        for p in self._patches:
            p.start()

    def teardown_method(self):
        """Cleanup after each test method."""
        for p in reversed(self._patches):
            p.stop()
        if self.temp_dir.exists():
            shutil.rmtree(self.temp_dir)

    @patch("builtins.input", side_effect=["q"])
    def test_quit(self, mock_input, capsys):
        assert ytdl.main([]) == 0
        err = capsys.readouterr().err
        assert f"DOWNLOAD LOCATION: {self.downloads}" in err
        assert "YOUTUBE DOWNLOADER" in err
        assert "GOODBYE!" in err

    @patch("builtins.input", side_effect=["x", "", "Q"])
    def test_invalid_option(self, mock_input, capsys):
        assert ytdl.main([]) == 0
        assert "INVALID OPTION" in capsys.readouterr().err

    def test_failed_download_returns_to_menu(self, capsys):
        run = engine()
        answers = ["1", "not a url", "https://youtu.be/abc", "", "q"]
        with patch("builtins.input", side_effect=answers):
            with patch("ytdl.run_process", side_effect=run):
                assert ytdl.main([]) == 0

        # self-update, then one anonymous attempt (no cookies available)
        assert run.calls[0][-1] == "-U"
        assert len(run.calls) == 2
        err = capsys.readouterr().err
        assert "INVALID URL" in err
        assert "Download failed after 1 attempt(s) (none)" in err
        assert "GOODBYE!" in err

    def test_interrupt_returns_to_menu(self, capsys):
        answers = ["u", "", "q"]
        with patch("builtins.input", side_effect=answers):
            with patch("ytdl.YtDlpManager.update", side_effect=KeyboardInterrupt):
                assert ytdl.main([]) == 0
        assert "Interrupted, back to the menu." in capsys.readouterr().err

    def test_first_run_starts_setup(self, capsys):
        (self.home / "config.json").unlink()
        target = self.temp_dir / "chosen"
        answers = [str(target), "n", "n", "q"]

        with patch("builtins.input", side_effect=answers):
            with patch("ytdl.DependencyResolver.check"):
                with patch("ytdl.Path.home", return_value=self.temp_dir):
                    assert ytdl.main([]) == 0

        config = ytdl.ConfigStore(self.home / "config.json").load()
        assert config.download_dir == target.resolve()
        err = capsys.readouterr().err
        assert "Setup complete!" in err
        assert f"DOWNLOAD LOCATION: {target.resolve()}" in err

    def test_setup_failure_is_reported(self, capsys):
        missing = ytdl.DependencyMissingError(["ffmpeg"], hint="Install manually using your package manager:")
        with patch("builtins.input", side_effect=["s", "", "q"]):
            with patch("ytdl.DependencyResolver.check", side_effect=missing):
                assert ytdl.main([]) == 0

        err = capsys.readouterr().err
        assert "Cannot continue without: ffmpeg" in err
        assert "Install manually" in err
