"""
Upload folder monitor: orchestration for unattended upload ingestion.

Coordinates:
1. Startup scan of files already waiting in the upload folder
2. Directory watching with await-write-finish (via UploadFolderWatcher)
3. Debounced, non-overlapping batches (via BatchOrchestrator)
4. Per-file pipeline: extension gate -> validation -> move or delete+log
5. Post-batch cleanup of the upload tree (via DirectoryCleaner)

Warn-and-continue semantics: a failure on one file never stops the batch.
Only a destination root that cannot be (re)created ends the service.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Callable, List, Optional

from .classifier import CategoryClassifier
from .cleanup import DirectoryCleaner
from .errors import (
    FatalIngestError,
    FileMoverError,
    MonitorStartupError,
    TransientAccessError,
    WatchError,
)
from .models import BatchSummary, MonitorState
from .mover import FileMover
from .orchestrator import BatchOrchestrator, default_timer_factory
from .probes import AudioProber, FFprobeAudioProber, ImageSniffer, MagicImageSniffer
from .rejections import RejectionLog
from .settings import MonitorSettings
from .validators import AudioValidator, FileValidator, ImageValidator
from .watcher import UploadFolderWatcher

logger = logging.getLogger(__name__)


class UploadFolderMonitor:
    """
    Watches the upload folder and ingests arrivals into the destination folder.

    All collaborators default to the production implementations and can be
    replaced for tests.
    """

    def __init__(
        self,
        settings: MonitorSettings,
        audio_prober: Optional[AudioProber] = None,
        image_sniffer: Optional[ImageSniffer] = None,
        rejection_log: Optional[RejectionLog] = None,
        watcher_factory: Optional[Callable[..., UploadFolderWatcher]] = None,
        timer_factory: Callable = default_timer_factory,
    ):
        self.settings = settings
        self.upload_folder = settings.upload_folder
        self.destination_folder = settings.destination_folder

        self.audio_prober = audio_prober or FFprobeAudioProber(
            ffprobe_path=settings.ffprobe_path, timeout=settings.probe_timeout_seconds
        )
        self.image_sniffer = image_sniffer or MagicImageSniffer(
            timeout=settings.probe_timeout_seconds
        )
        self.rejection_log = rejection_log or RejectionLog(settings.rejected_log_path)

        self.classifier = CategoryClassifier(settings.allowed_extensions)
        self.validator = FileValidator(
            classifier=self.classifier,
            audio_validator=AudioValidator(self.audio_prober, settings.min_audio_duration),
            image_validator=ImageValidator(self.image_sniffer, settings.min_image_size),
            max_file_size=settings.max_file_size_bytes,
            strict_mode=settings.strict_mode,
        )
        self.mover = FileMover(self.destination_folder)
        self.cleaner = DirectoryCleaner(self.upload_folder, self.classifier, self.rejection_log)
        self.orchestrator = BatchOrchestrator(
            process_batch=self.process_batch,
            debounce_seconds=settings.debounce_seconds,
            timer_factory=timer_factory,
            on_fatal=self._on_fatal,
        )

        self._watcher_factory = watcher_factory or UploadFolderWatcher
        self.watcher: Optional[UploadFolderWatcher] = None
        self.is_running = False
        self.fatal_error: Optional[FileMoverError] = None
        self._finished = threading.Event()

        logger.info("Upload Folder Monitor initialized")
        logger.info(f"Upload folder: {self.upload_folder}")
        logger.info(f"Destination folder: {self.destination_folder}")
        logger.info(f"Rejected log: {self.rejection_log.log_path}")
        logger.info(f"Debounce timeout: {settings.debounce_seconds:g}s")

    # -------------------------------------------------------------------------
    # Startup
    # -------------------------------------------------------------------------

    def ensure_directories(self) -> None:
        """
        Create the upload and destination folders if missing.

        Raises:
            MonitorStartupError: If a folder cannot be created
        """
        for label, folder in (("upload", self.upload_folder), ("destination", self.destination_folder)):
            if folder.is_dir():
                continue
            try:
                folder.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise MonitorStartupError(f"Cannot create {label} directory {folder}: {e}")
            logger.info(f"Created {label} directory: {folder}")

    def check_probers(self) -> None:
        """
        Refuse to start in strict mode when a prober tool is missing.

        Without ffprobe every audio upload would be rejected and deleted;
        without libmagic the same happens to every image.
        """
        if not self.settings.strict_mode:
            return
        if self.classifier.audio_extensions and not self._prober_available(self.audio_prober):
            raise MonitorStartupError(
                "ffprobe not found. Install ffmpeg or disable strict_mode."
            )
        if self.classifier.image_extensions and not self._prober_available(self.image_sniffer):
            raise MonitorStartupError(
                "libmagic not found. Install libmagic (python-magic) or disable strict_mode."
            )

    @staticmethod
    def _prober_available(prober) -> bool:
        is_available = getattr(prober, "is_available", None)
        return is_available is None or is_available()

    def scan_existing_files(self) -> int:
        """
        Queue every file already present in the upload folder.

        This is also how work interrupted by a restart is picked up again.

        Returns:
            Number of files found
        """
        logger.info("Scanning for existing files in upload folder...")
        found: List[Path] = []

        def onerror(error: OSError) -> None:
            logger.error(f"Error scanning existing files: {error}")

        for dirpath, _dirnames, filenames in os.walk(self.upload_folder, onerror=onerror):
            for name in filenames:
                path = Path(dirpath) / name
                if path.is_file():
                    found.append(path)

        logger.info(f"Found {len(found)} existing files")
        if found:
            self.orchestrator.add_many(found)
        return len(found)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """
        Start monitoring.

        Raises:
            MonitorStartupError: If folders or probers are unusable
            WatchError: If the watch cannot be established
        """
        if self.is_running:
            logger.warning("Monitor is already running")
            return

        self.ensure_directories()
        self.check_probers()
        self.is_running = True
        self._finished.clear()

        self.scan_existing_files()

        logger.info("Starting folder monitoring...")
        self.watcher = self._watcher_factory(
            root=self.upload_folder,
            on_add=self.on_file_added,
            on_error=self.on_watch_error,
            stability_threshold=self.settings.stability_threshold_ms / 1000.0,
            poll_interval=self.settings.stability_poll_interval_ms / 1000.0,
        )
        try:
            self.watcher.start()
        except WatchError:
            self.is_running = False
            self.orchestrator.stop(wait=True)
            raise
        logger.info("Monitoring started successfully")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop watching, cancel the debounce timer and let a running batch finish."""
        if not self.is_running:
            logger.warning("Monitor is not running")
            return

        self.is_running = False
        if self.watcher is not None:
            self.watcher.stop()
            self.watcher = None
        if not self.orchestrator.stop(wait=True, timeout=timeout):
            logger.warning("Running batch did not finish before the stop timeout")
        self._finished.set()
        logger.info("Monitor stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the monitor stops or fails. Returns True if it did."""
        return self._finished.wait(timeout)

    def run_once(self) -> BatchSummary:
        """Process everything currently in the upload folder, without watching."""
        self.ensure_directories()
        self.check_probers()
        self.scan_existing_files()
        summary = self.orchestrator.flush()
        self.orchestrator.stop(wait=True)
        if self.fatal_error is not None:
            raise self.fatal_error
        if summary is None:
            self.cleaner.run()
            summary = BatchSummary()
        return summary

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    def on_file_added(self, path: Path) -> None:
        self.orchestrator.add(path)

    def on_watch_error(self, error: WatchError) -> None:
        if error.recoverable:
            logger.warning(f"Watcher error: {error}")
            return
        logger.critical(f"Watcher cannot be re-established: {error}")
        self._fail(error)

    def _on_fatal(self, error: FatalIngestError) -> None:
        self._fail(error)

    def _fail(self, error: FileMoverError) -> None:
        self.fatal_error = error
        self._finished.set()

    # -------------------------------------------------------------------------
    # Batch pipeline
    # -------------------------------------------------------------------------

    def _ensure_destination_root(self) -> None:
        if self.destination_folder.is_dir():
            return
        try:
            self.destination_folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FatalIngestError(
                f"Destination folder {self.destination_folder} is unavailable: {e}"
            )
        logger.warning(f"Recreated missing destination folder: {self.destination_folder}")

    def relative_path(self, path: Path) -> Path:
        return Path(os.path.relpath(path, self.upload_folder))

    def process_batch(self, paths: List[Path]) -> BatchSummary:
        """
        Run the per-file pipeline over a drained batch, then clean up.

        Raises:
            FatalIngestError: If the destination folder is unusable
        """
        logger.info(f"Processing batch of {len(paths)} files...")
        self._ensure_destination_root()

        summary = BatchSummary(processed=len(paths))
        for path in paths:
            try:
                outcome = self.process_file(Path(path))
            except TransientAccessError as e:
                logger.info(f"Skipping {e.path} ({e.reason})")
                continue
            except Exception:
                logger.exception(f"Unexpected error processing {path}")
                continue
            if outcome == "moved":
                summary.moved += 1
            elif outcome == "rejected":
                summary.rejected += 1

        self.cleaner.run()

        logger.info("Batch Summary:")
        logger.info(f"   Processed: {summary.processed} files")
        logger.info(f"   Moved to destination: {summary.moved} files")
        logger.info(f"   Rejected/Deleted: {summary.rejected} files")
        return summary

    def process_file(self, path: Path) -> str:
        """
        Ingest one file.

        Returns:
            "moved", "rejected" or "failed"

        Raises:
            TransientAccessError: If the file vanished before it could be handled
        """
        if not path.is_file():
            raise TransientAccessError(path)

        relative = self.relative_path(path)

        if not self.classifier.is_allowed(path.name):
            ext = path.suffix.lower() or "(none)"
            return self._reject(
                path,
                relative,
                f"File extension not allowed: '{ext}' is not in the allowed list",
                self._size_or_zero(path),
            )

        validation = self.validator.validate(path)
        if validation.valid:
            logger.info(f"Validation passed: {relative} ({validation.category.value})")
            result = self.mover.move(path, relative)
            if not result.success:
                return "failed"
            if not result.source_removed:
                logger.error(f"Duplicate left in upload folder: {relative}")
            return "moved"

        if not path.exists():
            # Vanished while being validated; not a content problem
            raise TransientAccessError(path, "file disappeared during validation")

        logger.info(f"Validation failed: {relative} - {validation.reason}")
        return self._reject(path, relative, validation.reason, validation.file_size)

    def _reject(self, path: Path, relative: Path, reason: str, file_size: int) -> str:
        self.rejection_log.record(path.name, reason, file_size, str(relative))
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to delete rejected file {relative}: {e}")
            return "failed"
        logger.info(f"Deleted rejected file: {relative}")
        return "rejected"

    @staticmethod
    def _size_or_zero(path: Path) -> int:
        try:
            return path.stat().st_size
        except OSError:
            return 0

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    @property
    def state(self) -> MonitorState:
        return self.orchestrator.state
