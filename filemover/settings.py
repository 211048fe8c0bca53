"""
MonitorSettings: process-wide configuration for the upload folder monitor.

Settings are loaded ONCE at startup and are immutable afterwards.
There is no hot-reload: restart the process to pick up changes.

Load order (later wins):
1. Built-in defaults
2. Optional JSON config file
3. Environment variables (UPLOAD_FOLDER, DESTINATION_FOLDER, REJECTED_LOG, ...)
4. Explicit overrides (command line)
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ConfigurationError


AUDIO_EXTENSIONS = (".mp3", ".flac", ".wav", ".m4a", ".aac", ".ogg", ".wma", ".opus")
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tiff", ".webp", ".svg")

DEFAULT_ALLOWED_EXTENSIONS = AUDIO_EXTENSIONS + IMAGE_EXTENSIONS

# Environment variable -> settings field
ENV_OVERRIDES = {
    "UPLOAD_FOLDER": "upload_folder",
    "DESTINATION_FOLDER": "destination_folder",
    "REJECTED_LOG": "rejected_log_path",
    "DEBOUNCE_TIMEOUT_MS": "debounce_timeout_ms",
    "MAX_FILE_SIZE_MB": "max_file_size_mb",
    "FILEMOVER_VERBOSE": "verbose",
}


def normalize_extension(ext: str) -> str:
    """Lower-case an extension and make sure it has a leading dot."""
    ext = ext.strip().lower()
    if ext and not ext.startswith("."):
        ext = "." + ext
    return ext


class MonitorSettings(BaseModel):
    """
    Upload folder monitor configuration.

    Frozen: any attempt to mutate a loaded settings object raises.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    # Folder paths
    upload_folder: Path = Field(..., description="Folder to monitor for new uploads")
    destination_folder: Path = Field(
        ..., description="Folder where approved files are moved to"
    )

    # Monitor settings
    debounce_timeout_ms: int = Field(
        default=30000,
        gt=0,
        description="Quiet period after the last detected upload before a batch runs",
    )
    rejected_log_path: Path = Field(default=Path("./rejected_files.log"))
    verbose: bool = True
    max_file_size_mb: Optional[float] = Field(
        default=1500, description="Maximum file size in MB, None for no limit"
    )
    allowed_extensions: Tuple[str, ...] = DEFAULT_ALLOWED_EXTENSIONS

    # Validation settings
    strict_mode: bool = Field(
        default=True,
        description="Probe file contents; if False only basic checks are performed",
    )
    min_image_size: int = Field(default=100, ge=0, description="Bytes")
    min_audio_duration: float = Field(default=1.0, ge=0, description="Seconds")
    probe_timeout_seconds: Optional[float] = Field(
        default=60.0, description="Bound on a single prober call, None disables"
    )
    ffprobe_path: str = "ffprobe"

    # Await-write-finish settings for the watcher
    stability_threshold_ms: int = Field(default=2000, ge=0)
    stability_poll_interval_ms: int = Field(default=100, gt=0)

    @field_validator("allowed_extensions", mode="before")
    @classmethod
    def normalize_extensions(cls, v: Any) -> Tuple[str, ...]:
        if isinstance(v, str):
            v = [part for part in v.split(",")]
        normalized = []
        for ext in v:
            ext = normalize_extension(str(ext))
            if ext and ext not in normalized:
                normalized.append(ext)
        return tuple(normalized)

    @field_validator("max_file_size_mb", "probe_timeout_seconds")
    @classmethod
    def positive_or_none(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("must be positive, or null to disable")
        return v

    @field_validator("upload_folder", "destination_folder")
    @classmethod
    def expand_folder(cls, v: Path) -> Path:
        return Path(v).expanduser().resolve()

    @model_validator(mode="after")
    def separate_folders(self) -> "MonitorSettings":
        """Moved files must never land back in the watched tree."""
        up, dest = self.upload_folder, self.destination_folder
        if up == dest or up in dest.parents or dest in up.parents:
            raise ValueError(
                f"upload_folder and destination_folder must not contain each other: {up}, {dest}"
            )
        # Cleanup would delete a log kept in the upload tree as a disallowed file
        log = Path(self.rejected_log_path).expanduser().resolve()
        if up in log.parents:
            raise ValueError(f"rejected_log_path must not be inside upload_folder: {log}")
        return self

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_timeout_ms / 1000.0

    @property
    def max_file_size_bytes(self) -> Optional[int]:
        if self.max_file_size_mb is None:
            return None
        return int(self.max_file_size_mb * 1024 * 1024)


def _read_config_file(config_path: Path) -> Dict[str, Any]:
    if not config_path.is_file():
        raise ConfigurationError("Config file not found", source=str(config_path))
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON: {e}", source=str(config_path))
    if not isinstance(data, dict):
        raise ConfigurationError("Config file must contain a JSON object", source=str(config_path))
    return data


def _read_environment(environ: Mapping[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for env_name, field_name in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        if field_name == "max_file_size_mb" and raw.lower() in ("none", "null", "unlimited"):
            values[field_name] = None
        elif field_name == "verbose":
            values[field_name] = raw.lower() in ("1", "true", "yes", "on")
        else:
            values[field_name] = raw
    return values


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> MonitorSettings:
    """
    Build the process-wide settings.

    Args:
        config_path: Optional JSON file with settings field names as keys
        environ: Environment mapping (defaults to os.environ)
        overrides: Explicit values, e.g. from the command line. None values are ignored.

    Returns:
        Frozen MonitorSettings

    Raises:
        ConfigurationError: If the file is unreadable or any value is invalid
    """
    environ = os.environ if environ is None else environ

    values: Dict[str, Any] = {}
    if config_path is not None:
        values.update(_read_config_file(Path(config_path)))
    values.update(_read_environment(environ))
    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return MonitorSettings(**values)
    except ValidationError as e:
        raise ConfigurationError(str(e), source=str(config_path) if config_path else None)
