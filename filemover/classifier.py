"""
Extension-based file classification.

The classifier never looks at file contents. It answers two questions:
- is this filename allowed at all (allow-list membership)
- which validator should inspect it (audio, image, or other)
"""

import os
from typing import Iterable, Optional

from .models import FileCategory
from .settings import AUDIO_EXTENSIONS, IMAGE_EXTENSIONS, normalize_extension


def file_extension(filename: str) -> str:
    """Lower-cased extension including the dot, '' when there is none."""
    return os.path.splitext(filename)[1].lower()


class CategoryClassifier:
    """
    Maps filenames to categories using the configured allow-list.

    The audio and image subsets are the allow-list filtered by the known
    audio and image extension families, so an extension removed from the
    allow-list is never classified as audio or image.
    """

    def __init__(
        self,
        allowed_extensions: Iterable[str],
        audio_family: Optional[Iterable[str]] = None,
        image_family: Optional[Iterable[str]] = None,
    ):
        self.allowed_extensions = frozenset(normalize_extension(e) for e in allowed_extensions)
        audio_family = AUDIO_EXTENSIONS if audio_family is None else audio_family
        image_family = IMAGE_EXTENSIONS if image_family is None else image_family

        self.audio_extensions = frozenset(
            e for e in self.allowed_extensions if e in {normalize_extension(a) for a in audio_family}
        )
        self.image_extensions = frozenset(
            e for e in self.allowed_extensions if e in {normalize_extension(i) for i in image_family}
        )

    def is_allowed(self, filename: str) -> bool:
        """An empty allow-list allows every file."""
        if not self.allowed_extensions:
            return True
        return file_extension(filename) in self.allowed_extensions

    def classify(self, filename: str) -> FileCategory:
        ext = file_extension(filename)
        if ext in self.audio_extensions:
            return FileCategory.AUDIO
        if ext in self.image_extensions:
            return FileCategory.IMAGE
        return FileCategory.OTHER
