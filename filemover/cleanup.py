"""
Post-batch cleanup of the upload tree.

Depth-first: subdirectories are cleaned before their parent is inspected,
so a chain of directories emptied by a batch collapses in a single pass.

Runs concurrently with new uploads, so "directory not empty" and
"no such file or directory" are expected outcomes, not errors.
"""

import errno
import logging
import os
from pathlib import Path
from typing import Optional, Union

from .classifier import CategoryClassifier
from .models import CleanupReport
from .rejections import RejectionLog

logger = logging.getLogger(__name__)

_EXPECTED_RMDIR_ERRORS = {errno.ENOTEMPTY, errno.EEXIST, errno.ENOENT}


class DirectoryCleaner:
    """
    Removes disallowed leftovers and empty directories below root.

    The root itself is never removed.
    """

    def __init__(
        self,
        root: Union[str, Path],
        classifier: CategoryClassifier,
        rejection_log: Optional[RejectionLog] = None,
    ):
        self.root = Path(root)
        self.classifier = classifier
        self.rejection_log = rejection_log

    def run(self) -> CleanupReport:
        report = CleanupReport()
        self._clean(self.root, report)
        if report.files_removed or report.directories_removed:
            logger.info(
                f"Cleanup removed {report.files_removed} file(s) and "
                f"{report.directories_removed} empty director(ies)"
            )
        return report

    def _relative(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.root))
        except ValueError:
            return str(path)

    def _clean(self, directory: Path, report: CleanupReport) -> None:
        try:
            with os.scandir(directory) as it:
                subdirs = [Path(e.path) for e in it if e.is_dir(follow_symlinks=False)]
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error(f"Error during directory cleanup for {directory}: {e}")
            report.errors += 1
            return

        for subdir in subdirs:
            self._clean(subdir, report)

        self._remove_disallowed_files(directory, report)

        if directory == self.root:
            return
        self._remove_if_empty(directory, report)

    def _remove_disallowed_files(self, directory: Path, report: CleanupReport) -> None:
        try:
            with os.scandir(directory) as it:
                files = [e for e in it if e.is_file(follow_symlinks=False)]
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error(f"Error during directory cleanup for {directory}: {e}")
            report.errors += 1
            return

        for entry in files:
            if self.classifier.is_allowed(entry.name):
                continue

            path = Path(entry.path)
            try:
                size = entry.stat(follow_symlinks=False).st_size
                os.unlink(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.error(f"Failed to remove orphaned file {path}: {e}")
                report.errors += 1
                continue

            relative = self._relative(path)
            report.files_removed += 1
            logger.info(f"Cleaned up orphaned file: {relative}")
            if self.rejection_log is not None:
                self.rejection_log.record(
                    entry.name,
                    "Orphaned file removed during cleanup: extension not allowed",
                    size,
                    relative,
                )

    def _remove_if_empty(self, directory: Path, report: CleanupReport) -> None:
        try:
            if any(directory.iterdir()):
                return
            directory.rmdir()
        except OSError as e:
            if e.errno not in _EXPECTED_RMDIR_ERRORS:
                logger.error(f"Failed to remove directory {directory}: {e}")
                report.errors += 1
            return

        report.directories_removed += 1
        logger.info(f"Removed empty directory: {self._relative(directory)}")
