"""
File mover data models.

All models use Pydantic with strict validation and no silent coercion.
Results are frozen: a ValidationResult or MoveResult describes one attempt
on one file and is never edited afterwards.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator


class FileCategory(str, Enum):
    """Category of an uploaded file, derived from its extension."""

    AUDIO = "audio"
    IMAGE = "image"
    OTHER = "other"


class MonitorState(str, Enum):
    """
    Batch orchestrator states.

    IDLE -> DEBOUNCING -> PROCESSING -> IDLE (or DEBOUNCING when files
    arrived during the batch). STOPPED is terminal.
    """

    IDLE = "idle"
    DEBOUNCING = "debouncing"
    PROCESSING = "processing"
    STOPPED = "stopped"


class ValidationResult(BaseModel):
    """
    Outcome of validating a single file.

    Invalid content is a normal result (valid=False), not an exception.
    A reason is mandatory whenever the file is rejected.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    valid: bool
    reason: Optional[str] = None
    category: FileCategory
    file_size: int = Field(default=0, ge=0)
    metadata: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def require_reason_when_invalid(self) -> "ValidationResult":
        if not self.valid and not self.reason:
            raise ValueError("reason is required when valid is False")
        return self

    @classmethod
    def accept(
        cls,
        category: FileCategory,
        file_size: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "ValidationResult":
        return cls(valid=True, category=category, file_size=file_size, metadata=metadata)

    @classmethod
    def reject(
        cls,
        category: FileCategory,
        reason: str,
        file_size: int = 0,
    ) -> "ValidationResult":
        return cls(valid=False, category=category, reason=reason, file_size=file_size)


class BatchSummary(BaseModel):
    """Counters for one batch run. Logged and then discarded."""

    model_config = ConfigDict(extra="forbid")

    processed: int = Field(default=0, ge=0)
    moved: int = Field(default=0, ge=0)
    rejected: int = Field(default=0, ge=0)


class MoveResult(BaseModel):
    """
    Result of relocating one file.

    method is "rename" for same-filesystem moves and "copy" when the
    cross-device fallback was used. A copy whose source could not be deleted
    is still successful (the file was delivered) but carries an error and
    source_removed=False.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    success: bool
    source_path: str
    destination_path: str
    method: Optional[str] = None
    source_removed: bool = False
    error: Optional[str] = None


class RejectionLogEntry(BaseModel):
    """
    One line of the rejection log.

    Field names and order are the on-disk contract, hence the camelCase
    aliases.
    """

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    filename: str
    file_path: str = Field(alias="filePath")
    file_size: int = Field(default=0, ge=0, alias="fileSize")
    reason: str
    action: str = "REJECTED"

    @field_serializer("timestamp")
    def serialize_timestamp(self, value: datetime) -> str:
        """UTC with millisecond precision and a Z suffix, e.g. 2024-05-01T12:00:00.000Z"""
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


class FileStabilityCheck(BaseModel):
    """
    Result of a file stability check.

    Files are considered stable when their size and modification time have
    not changed for the configured quiet period.
    """

    model_config = ConfigDict(extra="forbid")

    path: str = Field(..., description="Absolute path to checked file")
    is_stable: bool = Field(..., description="Whether file is stable")
    size_bytes: Optional[int] = Field(
        None, description="Current file size in bytes (None if file inaccessible)"
    )
    stable_for_seconds: float = Field(
        default=0.0, description="How long size and mtime have been unchanged"
    )
    reason: Optional[str] = Field(
        None, description="Human-readable explanation if unstable or inaccessible"
    )


class CleanupReport(BaseModel):
    """What one cleanup pass removed."""

    model_config = ConfigDict(extra="forbid")

    files_removed: int = 0
    directories_removed: int = 0
    errors: int = 0
