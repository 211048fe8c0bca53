"""
File mover error hierarchy.

All errors inherit from FileMoverError for easy catching.

Only MonitorStartupError and FatalIngestError stop the service. Every other
error is converted into a per-file result (ValidationResult, MoveResult) at
the component seams and the batch continues.
"""

from pathlib import Path
from typing import Optional, Union


class FileMoverError(Exception):
    """Base exception for all file mover failures."""
    pass


class ConfigurationError(FileMoverError):
    """Raised when settings cannot be loaded or fail validation."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.message = message
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__(message)


class MonitorStartupError(FileMoverError):
    """Raised when the monitor cannot prepare its folders or start watching."""
    pass


class FatalIngestError(FileMoverError):
    """
    Orchestrator-level failure that ends the process.

    Raised when a resource shared by the whole batch is unusable, e.g. the
    destination root is gone and cannot be recreated.
    """
    pass


class TransientAccessError(FileMoverError):
    """File vanished before it could be processed. Skipped, never logged as a rejection."""

    def __init__(self, path: Union[str, Path], reason: str = "file no longer exists"):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"{self.path}: {reason}")


class MoveError(FileMoverError):
    """Raised when a validated file could not be relocated."""

    def __init__(self, source: Union[str, Path], destination: Union[str, Path], reason: str):
        self.source = str(source)
        self.destination = str(destination)
        self.reason = reason
        super().__init__(f"Failed to move {self.source} -> {self.destination}: {reason}")


class WatchError(FileMoverError):
    """
    Raised when the directory watch fails.

    recoverable=False means the watch could not be re-established and the
    monitor has to stop.
    """

    def __init__(self, message: str, recoverable: bool = True):
        self.recoverable = recoverable
        super().__init__(message)
