"""
Upload folder watcher.

Wraps a watchdog observer and adds what the monitor needs on top of raw
filesystem events:
- dotfiles and files below dot-directories are ignored
- files are reported only after their writes have finished (size and mtime
  stable for the quiet period), so half-uploaded files never reach a batch
- a dead observer thread is reported and re-established

Reported files go to on_add(path). Problems go to on_error(WatchError).
"""

import logging
import os
import threading
import time
from pathlib import Path
from typing import Callable, Optional, Set, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .errors import WatchError
from .stability import FileStabilityChecker

logger = logging.getLogger(__name__)


class _UploadEventHandler(FileSystemEventHandler):
    """Forwards creations and move-ins to the watcher."""

    def __init__(self, watcher: "UploadFolderWatcher"):
        super().__init__()
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            self._watcher.track_directory(event.src_path)
        else:
            self._watcher.track(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            self._watcher.track_directory(event.dest_path)
        else:
            self._watcher.track(event.dest_path)


class UploadFolderWatcher:
    """
    Recursive watch on the upload folder with await-write-finish semantics.

    Args:
        root: Folder to watch
        on_add: Called with the absolute path of each file that finished writing
        on_error: Called with a WatchError for watch failures
        stability_threshold: Seconds a file must stay unchanged before it is reported
        poll_interval: Seconds between stability polls
        observer_factory: Builds the watchdog observer (watchdog.observers.Observer)
    """

    def __init__(
        self,
        root: Union[str, Path],
        on_add: Callable[[Path], None],
        on_error: Callable[[WatchError], None],
        stability_threshold: float = 2.0,
        poll_interval: float = 0.1,
        observer_factory: Callable[[], object] = Observer,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.root = Path(root)
        self.on_add = on_add
        self.on_error = on_error
        self.poll_interval = poll_interval
        self._observer_factory = observer_factory
        self.stability_checker = FileStabilityChecker(
            stability_threshold=stability_threshold, clock=clock
        )

        self._lock = threading.Lock()
        self._candidates: Set[str] = set()
        self._observer = None
        self._poll_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._poll_thread is not None and not self._stop_event.is_set()

    # -------------------------------------------------------------------------
    # Filtering and tracking
    # -------------------------------------------------------------------------

    def is_ignored(self, path: Union[str, Path]) -> bool:
        """True for dotfiles and anything inside a dot-directory below root."""
        try:
            relative = Path(path).relative_to(self.root)
        except ValueError:
            return True
        return any(part.startswith(".") for part in relative.parts)

    def track(self, path: Union[str, Path]) -> None:
        """Start waiting for a file to finish writing."""
        path = Path(path)
        if self.is_ignored(path):
            logger.debug(f"Ignoring hidden path: {path}")
            return
        with self._lock:
            if str(path) not in self._candidates:
                logger.debug(f"Tracking new file until writes finish: {path}")
            self._candidates.add(str(path))

    def track_directory(self, directory: Union[str, Path]) -> None:
        """Track every file of a directory that appeared in one go (e.g. moved in)."""
        directory = Path(directory)
        if self.is_ignored(directory):
            return
        for dirpath, dirnames, filenames in os.walk(directory):
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            for name in filenames:
                self.track(Path(dirpath) / name)

    @property
    def tracked_count(self) -> int:
        with self._lock:
            return len(self._candidates)

    def poll_once(self) -> int:
        """
        Check every tracked file once and report the stable ones.

        Returns:
            Number of files reported
        """
        with self._lock:
            candidates = sorted(self._candidates)

        reported = 0
        for path_str in candidates:
            path = Path(path_str)
            check = self.stability_checker.check_stability(path)

            if check.size_bytes is None:
                # Vanished or unreadable before it settled
                logger.debug(f"Dropping {path}: {check.reason}")
                self._forget(path_str)
                continue

            if not check.is_stable:
                continue

            self._forget(path_str)
            logger.info(f"New file detected: {self._relative(path)}")
            self.on_add(path)
            reported += 1
        return reported

    def _forget(self, path_str: str) -> None:
        with self._lock:
            self._candidates.discard(path_str)
        self.stability_checker.reset_tracking(Path(path_str))

    def _relative(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.root))
        except ValueError:
            return str(path)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """
        Start the observer and the stability poller.

        Raises:
            WatchError: If the observer cannot be started
        """
        if self.is_running:
            return
        self._stop_event.clear()
        self._start_observer()
        self._poll_thread = threading.Thread(
            target=self._poll_loop, daemon=True, name="upload-watch-poll"
        )
        self._poll_thread.start()
        logger.debug(f"Watching {self.root}")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        observer, self._observer = self._observer, None
        if observer is not None:
            try:
                observer.stop()
                observer.join(timeout)
            except RuntimeError as e:
                logger.warning(f"Error stopping observer: {e}")
        if self._poll_thread is not None and self._poll_thread is not threading.current_thread():
            self._poll_thread.join(timeout)
        self._poll_thread = None
        with self._lock:
            self._candidates.clear()
        self.stability_checker.clear_all_tracking()

    def _start_observer(self) -> None:
        observer = self._observer_factory()
        try:
            observer.schedule(_UploadEventHandler(self), str(self.root), recursive=True)
            observer.start()
        except (OSError, RuntimeError) as e:
            raise WatchError(f"Cannot watch {self.root}: {e}", recoverable=False)
        self._observer = observer

    def check_observer(self) -> None:
        """Re-establish the observer if its thread died."""
        observer = self._observer
        if observer is None or self._stop_event.is_set() or observer.is_alive():
            return

        self.on_error(WatchError(f"Watcher for {self.root} stopped unexpectedly; restarting"))
        try:
            self._start_observer()
        except WatchError as e:
            self._observer = None
            self.on_error(e)
            return
        # Files created while the observer was down produced no events
        self.track_directory(self.root)

    def _poll_loop(self) -> None:
        while not self._stop_event.wait(self.poll_interval):
            try:
                self.check_observer()
                self.poll_once()
            except Exception as e:
                self.on_error(WatchError(f"Watcher error: {e}"))
