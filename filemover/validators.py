"""
Content validation for uploaded files.

Validation is two-stage:
1. Shared precondition checks (exists, non-empty, within the size limit),
   run once per file regardless of category.
2. Category-specific content checks. Audio files must contain a decodable
   audio stream with a positive duration; images must be a whitelisted
   raster format according to their magic bytes.

Invalid content is returned as ValidationResult(valid=False). Validators
never raise for bad content, and prober failures count as invalid content.
"""

import logging
from pathlib import Path
from typing import Optional

from .classifier import CategoryClassifier, file_extension
from .models import FileCategory, ValidationResult
from .probes import AudioProber, ImageSniffer, ProbeTimeoutError

logger = logging.getLogger(__name__)


# Raster formats accepted as images. Extension is never trusted.
VALID_IMAGE_TYPES = frozenset({
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/bmp",
    "image/tiff",
    "image/webp",
})


class AudioValidator:
    """Checks that a file is structurally a playable audio file."""

    def __init__(self, prober: AudioProber, min_duration: float = 0.0):
        self.prober = prober
        self.min_duration = min_duration

    def validate(self, path: Path, file_size: int) -> ValidationResult:
        category = FileCategory.AUDIO

        try:
            probe = self.prober.probe(path)
        except ProbeTimeoutError as e:
            logger.warning(f"Audio probe timed out for {path}: {e}")
            return ValidationResult.reject(category, f"Audio probe timed out: {e}", file_size)
        except Exception as e:
            logger.debug(f"Audio probe failed for {path}: {e}")
            return ValidationResult.reject(category, f"FFmpeg validation failed: {e}", file_size)

        audio_streams = probe.audio_streams
        if not audio_streams:
            return ValidationResult.reject(category, "No audio streams found in file", file_size)

        duration = probe.duration
        if not duration or duration <= 0:
            return ValidationResult.reject(category, "Invalid or zero duration", file_size)

        if duration < self.min_duration:
            return ValidationResult.reject(
                category,
                f"Audio duration {duration:.2f}s is below minimum of {self.min_duration:g}s",
                file_size,
            )

        return ValidationResult.accept(
            category,
            file_size,
            metadata={
                "duration": duration,
                "bitrate": probe.bit_rate,
                "codec": audio_streams[0].codec_name,
                "streams": len(audio_streams),
            },
        )


class ImageValidator:
    """Checks that a file really is a supported raster image."""

    def __init__(self, sniffer: ImageSniffer, min_size: int = 100):
        self.sniffer = sniffer
        self.min_size = min_size

    def validate(self, path: Path, file_size: int) -> ValidationResult:
        category = FileCategory.IMAGE

        try:
            detected = self.sniffer.sniff(path)
        except ProbeTimeoutError as e:
            logger.warning(f"Image type detection timed out for {path}: {e}")
            return ValidationResult.reject(category, f"Image type detection timed out: {e}", file_size)
        except Exception as e:
            logger.debug(f"Image sniff failed for {path}: {e}")
            return ValidationResult.reject(category, f"Image validation error: {e}", file_size)

        if detected is None:
            return ValidationResult.reject(
                category, "Could not determine file type from header", file_size
            )

        if detected.mime not in VALID_IMAGE_TYPES:
            return ValidationResult.reject(category, f"Invalid image type: {detected.mime}", file_size)

        # Truncated uploads can still carry a valid header
        if file_size < self.min_size:
            return ValidationResult.reject(
                category,
                f"File too small to be a valid image ({file_size} bytes, minimum {self.min_size})",
                file_size,
            )

        return ValidationResult.accept(
            category,
            file_size,
            metadata={"type": detected.mime, "extension": detected.ext, "size": file_size},
        )


class FileValidator:
    """
    Entry point for validating one file.

    Runs the category-agnostic precondition checks, then dispatches to the
    audio or image validator. In non-strict mode only the precondition and
    category checks run.
    """

    def __init__(
        self,
        classifier: CategoryClassifier,
        audio_validator: AudioValidator,
        image_validator: ImageValidator,
        max_file_size: Optional[int] = None,
        strict_mode: bool = True,
    ):
        self.classifier = classifier
        self.audio_validator = audio_validator
        self.image_validator = image_validator
        self.max_file_size = max_file_size
        self.strict_mode = strict_mode

    def check_preconditions(self, path: Path, category: FileCategory) -> ValidationResult:
        """Exists, non-empty, within the size limit. Valid results carry the file size."""
        try:
            size = path.stat().st_size
        except OSError as e:
            return ValidationResult.reject(category, f"File access error: {e}", 0)

        if size == 0:
            return ValidationResult.reject(category, "File is empty (0 bytes)", 0)

        if self.max_file_size is not None and size > self.max_file_size:
            limit_mb = self.max_file_size / 1024 / 1024
            return ValidationResult.reject(
                category,
                f"File exceeds maximum size limit of {limit_mb:g} MB",
                size,
            )

        return ValidationResult.accept(category, size)

    def validate(self, path: Path) -> ValidationResult:
        path = Path(path)
        category = self.classifier.classify(path.name)

        precheck = self.check_preconditions(path, category)
        if not precheck.valid:
            return precheck
        size = precheck.file_size

        if category == FileCategory.OTHER:
            return ValidationResult.reject(
                category,
                f"File type not supported: '{file_extension(path.name)}' is not an audio or image file",
                size,
            )

        if not self.strict_mode:
            return precheck

        if category == FileCategory.AUDIO:
            return self.audio_validator.validate(path, size)
        return self.image_validator.validate(path, size)
