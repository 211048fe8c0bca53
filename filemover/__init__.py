"""
File mover: unattended ingestion of an upload drop folder.

Watches an upload folder, batches arrivals behind a debounce window,
validates each file's real content, then moves accepted files into a
mirrored destination tree or deletes and logs rejected ones.

Public API:
    MonitorSettings: Immutable configuration (load_settings to build one)
    UploadFolderMonitor: Lifecycle: startup scan, watching, batches
    BatchOrchestrator: Debounce timer and non-overlapping batch execution
    CategoryClassifier: Extension allow-list and audio/image/other mapping
    FileValidator: Precondition + content validation
    FileMover: Atomic rename with cross-device copy fallback
    RejectionLog: JSON Lines rejection sink
    DirectoryCleaner: Post-batch cleanup of the upload tree
"""

from .errors import (
    FileMoverError,
    ConfigurationError,
    MonitorStartupError,
    FatalIngestError,
    TransientAccessError,
    MoveError,
    WatchError,
)
from .models import (
    FileCategory,
    MonitorState,
    ValidationResult,
    BatchSummary,
    MoveResult,
    RejectionLogEntry,
)
from .settings import MonitorSettings, load_settings
from .classifier import CategoryClassifier
from .validators import AudioValidator, ImageValidator, FileValidator
from .mover import FileMover
from .rejections import RejectionLog
from .cleanup import DirectoryCleaner
from .orchestrator import BatchOrchestrator
from .monitor import UploadFolderMonitor

__version__ = "0.1.0"

__all__ = [
    # Errors
    "FileMoverError",
    "ConfigurationError",
    "MonitorStartupError",
    "FatalIngestError",
    "TransientAccessError",
    "MoveError",
    "WatchError",
    # Models
    "FileCategory",
    "MonitorState",
    "ValidationResult",
    "BatchSummary",
    "MoveResult",
    "RejectionLogEntry",
    # Settings
    "MonitorSettings",
    "load_settings",
    # Core
    "CategoryClassifier",
    "AudioValidator",
    "ImageValidator",
    "FileValidator",
    "FileMover",
    "RejectionLog",
    "DirectoryCleaner",
    "BatchOrchestrator",
    "UploadFolderMonitor",
]
