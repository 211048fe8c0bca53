"""
Pytest configuration and shared fakes for the file mover test suite.

The fakes stand in for the external collaborators so the pipeline can be
driven deterministically:
- FakeAudioProber / FakeImageSniffer replace ffprobe and libmagic
- ManualTimerFactory replaces threading.Timer; tests fire timers by hand
- FakeWatcher replaces the watchdog-backed UploadFolderWatcher
"""

from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from filemover.monitor import UploadFolderMonitor
from filemover.probes import AudioProbe, ProbeStream, SniffResult
from filemover.rejections import RejectionLog
from filemover.settings import MonitorSettings


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow"
    )
    config.addinivalue_line(
        "markers", "e2e: marks tests as end-to-end (requires FFmpeg)"
    )


# -----------------------------------------------------------------------------
# Fake collaborators
# -----------------------------------------------------------------------------

class FakeAudioProber:
    """Returns a canned AudioProbe, or raises `error` when set."""

    def __init__(self):
        self.result = AudioProbe(
            streams=[ProbeStream(codec_type="audio", codec_name="mp3")],
            duration=180.0,
            bit_rate=320000,
        )
        self.error: Optional[Exception] = None
        self.available = True
        self.calls: List[Path] = []

    def is_available(self) -> bool:
        return self.available

    def probe(self, path: Path) -> AudioProbe:
        self.calls.append(Path(path))
        if self.error is not None:
            raise self.error
        return self.result


class FakeImageSniffer:
    """Returns `result`, or a per-filename override from `by_name`."""

    def __init__(self):
        self.result: Optional[SniffResult] = SniffResult(mime="image/jpeg", ext="jpg")
        self.by_name: Dict[str, Optional[SniffResult]] = {}
        self.error: Optional[Exception] = None
        self.calls: List[Path] = []
        self.available = True

    def is_available(self) -> bool:
        return self.available

    def sniff(self, path: Path) -> Optional[SniffResult]:
        path = Path(path)
        self.calls.append(path)
        if self.error is not None:
            raise self.error
        return self.by_name.get(path.name, self.result)


class ManualTimer:
    """Timer that only fires when the test says so."""

    def __init__(self, interval: float, callback: Callable[[], None]):
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if self.started and not self.cancelled:
            self.callback()


class ManualTimerFactory:
    """Drop-in for default_timer_factory that records every timer built."""

    def __init__(self):
        self.timers: List[ManualTimer] = []

    def __call__(self, interval: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(interval, callback)
        self.timers.append(timer)
        return timer

    @property
    def latest(self) -> ManualTimer:
        return self.timers[-1]

    @property
    def active(self) -> List[ManualTimer]:
        return [t for t in self.timers if t.started and not t.cancelled]


class FakeWatcher:
    """Records how the monitor builds and drives its watcher."""

    instances: List["FakeWatcher"] = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.started = False
        self.stopped = False
        FakeWatcher.instances.append(self)

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def fake_prober() -> FakeAudioProber:
    return FakeAudioProber()


@pytest.fixture
def fake_sniffer() -> FakeImageSniffer:
    return FakeImageSniffer()


@pytest.fixture
def timers() -> ManualTimerFactory:
    return ManualTimerFactory()


@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    return tmp_path / "uploads"


@pytest.fixture
def destination_dir(tmp_path: Path) -> Path:
    return tmp_path / "library"


@pytest.fixture
def make_settings(tmp_path: Path, upload_dir: Path, destination_dir: Path):
    """Build MonitorSettings rooted in tmp_path; keyword arguments override fields."""

    def _make(**overrides) -> MonitorSettings:
        values = {
            "upload_folder": upload_dir,
            "destination_folder": destination_dir,
            "rejected_log_path": tmp_path / "rejected_files.log",
            "debounce_timeout_ms": 50,
            "stability_threshold_ms": 0,
        }
        values.update(overrides)
        return MonitorSettings(**values)

    return _make


@pytest.fixture
def make_monitor(make_settings, fake_prober, fake_sniffer, timers):
    """Build an UploadFolderMonitor wired to the fakes."""
    FakeWatcher.instances = []

    def _make(**overrides) -> UploadFolderMonitor:
        settings = make_settings(**overrides)
        return UploadFolderMonitor(
            settings,
            audio_prober=fake_prober,
            image_sniffer=fake_sniffer,
            rejection_log=RejectionLog(settings.rejected_log_path),
            watcher_factory=FakeWatcher,
            timer_factory=timers,
        )

    return _make


def write_bytes(path: Path, size: int = 200, fill: bytes = b"x") -> Path:
    """Create a file (and its parents) holding `size` bytes."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(fill * size)
    return path


@pytest.fixture
def make_file():
    return write_bytes
