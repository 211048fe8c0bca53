"""
Await-write-finish for uploads.

An upload is only handed to a batch once its writer is done. Finished means
stable: a file is stable when its size and modification time have not
changed for a configured quiet period.
"""

import time
from pathlib import Path
from typing import Callable, Dict, Tuple

from .models import FileStabilityCheck


class FileStabilityChecker:
    """
    Poll-based file stability detector.

    Tracks (size, mtime) per file and the moment they were last seen to
    change. A file is stable once that moment is at least
    stability_threshold seconds in the past.

    Example:
        With stability_threshold=2.0 and polling every 0.1s, an upload that
        stops growing is reported roughly 2 seconds after its last write.
    """

    def __init__(
        self,
        stability_threshold: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.stability_threshold = stability_threshold
        self._clock = clock

        # {path: ((size, mtime_ns), last_change_time)}
        self._file_state: Dict[str, Tuple[Tuple[int, int], float]] = {}

    def check_stability(self, path: Path) -> FileStabilityCheck:
        """
        Poll one file.

        Stable means:
        1. File exists and is accessible
        2. Size and mtime are unchanged for stability_threshold seconds
        """
        path_str = str(path)
        now = self._clock()

        try:
            stat = path.stat()
        except FileNotFoundError:
            self._file_state.pop(path_str, None)
            return FileStabilityCheck(
                path=path_str,
                is_stable=False,
                size_bytes=None,
                reason="File does not exist",
            )
        except OSError as e:
            self._file_state.pop(path_str, None)
            return FileStabilityCheck(
                path=path_str,
                is_stable=False,
                size_bytes=None,
                reason=f"File not accessible: {e}",
            )

        signature = (stat.st_size, stat.st_mtime_ns)
        previous = self._file_state.get(path_str)

        if previous is None or previous[0] != signature:
            self._file_state[path_str] = (signature, now)
            reason = (
                "First stability check"
                if previous is None
                else f"File changed (prev size: {previous[0][0]}, current: {stat.st_size})"
            )
            if self.stability_threshold <= 0:
                return FileStabilityCheck(
                    path=path_str, is_stable=True, size_bytes=stat.st_size
                )
            return FileStabilityCheck(
                path=path_str,
                is_stable=False,
                size_bytes=stat.st_size,
                reason=reason,
            )

        stable_for = now - previous[1]
        if stable_for >= self.stability_threshold:
            return FileStabilityCheck(
                path=path_str,
                is_stable=True,
                size_bytes=stat.st_size,
                stable_for_seconds=stable_for,
            )

        return FileStabilityCheck(
            path=path_str,
            is_stable=False,
            size_bytes=stat.st_size,
            stable_for_seconds=stable_for,
            reason=f"Stable for {stable_for:.1f}s/{self.stability_threshold:g}s",
        )

    def reset_tracking(self, path: Path) -> None:
        """Stop tracking a file (reported, vanished, or ignored)."""
        self._file_state.pop(str(path), None)

    def clear_all_tracking(self) -> None:
        self._file_state.clear()
