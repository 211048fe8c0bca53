"""
Tests for the filemover command line.
"""

import json
import logging
import threading
from unittest import mock

import pytest

from filemover import cli
from filemover.errors import MonitorStartupError
from filemover.settings import ENV_OVERRIDES


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    def _write(**values):
        data = {
            "upload_folder": str(tmp_path / "uploads"),
            "destination_folder": str(tmp_path / "library"),
            "rejected_log_path": str(tmp_path / "rejected_files.log"),
            "verbose": False,
        }
        data.update(values)
        path = tmp_path / "filemover.json"
        path.write_text(json.dumps(data))
        return path
    return _write


class TestParser:
    def test_defaults(self):
        args = cli.build_parser().parse_args([])

        assert args.config is None
        assert args.once is False
        assert args.status_port is None
        assert args.status_host == "127.0.0.1"

    def test_all_options(self, tmp_path):
        args = cli.build_parser().parse_args([
            "--source", str(tmp_path / "in"),
            "--destination", str(tmp_path / "out"),
            "--debounce-ms", "500",
            "--rejected-log", str(tmp_path / "r.log"),
            "--once",
            "--quiet",
            "--status-port", "9877",
        ])

        assert args.source == tmp_path / "in"
        assert args.debounce_ms == 500
        assert args.once and args.quiet
        assert args.status_port == 9877


class TestMainOnce:
    """Tests for main() with --once."""

    def test_processes_existing_files(self, tmp_path, config_file, make_file):
        config = config_file(strict_mode=False)
        make_file(tmp_path / "uploads" / "album" / "01.mp3", 10)
        make_file(tmp_path / "uploads" / "album" / "notes.exe", 10)

        assert cli.main(["--config", str(config), "--once"]) == 0

        assert (tmp_path / "library" / "album" / "01.mp3").exists()
        assert not (tmp_path / "uploads" / "album").exists()
        lines = (tmp_path / "rejected_files.log").read_text().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["filename"] == "notes.exe"

    def test_command_line_overrides_config(self, tmp_path, config_file, make_file):
        config = config_file(strict_mode=False)
        make_file(tmp_path / "other" / "a.mp3", 10)

        code = cli.main([
            "--config", str(config),
            "--source", str(tmp_path / "other"),
            "--once",
        ])

        assert code == 0
        assert (tmp_path / "library" / "a.mp3").exists()

    def test_missing_ffprobe_in_strict_mode(self, config_file):
        config = config_file(strict_mode=True)

        with mock.patch("filemover.probes.shutil.which", return_value=None):
            assert cli.main(["--config", str(config), "--once"]) == 2


class TestMainErrors:
    """Configuration errors exit with 2."""

    def test_missing_folders(self):
        assert cli.main(["--once"]) == 2

    def test_missing_config_file(self, tmp_path):
        assert cli.main(["--config", str(tmp_path / "nope.json")]) == 2

    def test_overlapping_folders(self, tmp_path):
        code = cli.main(["--source", str(tmp_path), "--destination", str(tmp_path / "out"), "--once"])
        assert code == 2


class TestMainWatch:
    """Tests for main() without --once."""

    def test_runs_monitor_with_signals_and_status_server(self, config_file):
        config = config_file()

        with mock.patch.object(cli, "install_signal_handlers") as install, \
                mock.patch.object(cli, "start_status_server") as start_server, \
                mock.patch.object(cli, "run_monitor", return_value=0) as run:
            code = cli.main(["--config", str(config), "--status-port", "9877"])

        assert code == 0
        install.assert_called_once()
        monitor = run.call_args[0][0]
        start_server.assert_called_once_with(monitor, 9877, "127.0.0.1")

    def test_no_status_server_by_default(self, config_file):
        with mock.patch.object(cli, "install_signal_handlers"), \
                mock.patch.object(cli, "start_status_server") as start_server, \
                mock.patch.object(cli, "run_monitor", return_value=0):
            cli.main(["--config", str(config_file())])

        start_server.assert_not_called()

    def test_startup_failure_exits_2(self, config_file):
        with mock.patch.object(cli, "install_signal_handlers"), \
                mock.patch.object(cli, "run_monitor", side_effect=MonitorStartupError("ffprobe not found")):
            assert cli.main(["--config", str(config_file())]) == 2


class TestRunMonitor:
    """Tests for run_monitor() with a mocked monitor."""

    def test_signal_stops_cleanly(self):
        monitor = mock.Mock(fatal_error=None)
        monitor.wait.return_value = False
        stop_requested = threading.Event()
        stop_requested.set()

        assert cli.run_monitor(monitor, stop_requested) == 0

        monitor.start.assert_called_once()
        monitor.stop.assert_called_once()

    def test_fatal_error_exits_1(self):
        monitor = mock.Mock(fatal_error=RuntimeError("destination gone"))
        monitor.wait.return_value = True

        assert cli.run_monitor(monitor, threading.Event()) == 1
        monitor.stop.assert_called_once()


class TestConfigureLogging:
    def test_watchdog_is_kept_at_info(self):
        cli.configure_logging(verbose=True)
        assert logging.getLogger("watchdog").level == logging.INFO

    def test_quiet_raises_watchdog_level(self):
        cli.configure_logging(verbose=True, quiet=True)
        assert logging.getLogger("watchdog").level == logging.WARNING
