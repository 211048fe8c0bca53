"""
Relocation of validated files into the destination tree.

The relative path below the upload folder is preserved below the
destination folder. Moves are attempted as an atomic rename first; only a
cross-device rename (EXDEV) falls back to copy-then-delete.

Fallback ordering:
- copy fails  -> partial sibling removed, source and any earlier delivery untouched, failure
- delete fails -> file delivered, duplicate left at the source, logged as error
"""

import errno
import logging
import os
import shutil
from pathlib import Path
from typing import Union

from .errors import MoveError
from .models import MoveResult

logger = logging.getLogger(__name__)


class FileMover:
    """Moves files from the upload tree into destination_root."""

    def __init__(self, destination_root: Union[str, Path]):
        self.destination_root = Path(destination_root)

    def destination_for(self, relative_path: Union[str, Path]) -> Path:
        return self.destination_root / Path(relative_path)

    def move(self, source: Union[str, Path], relative_path: Union[str, Path]) -> MoveResult:
        """
        Move one file.

        Args:
            source: Absolute path of the validated file
            relative_path: Path of the file relative to the upload folder

        Returns:
            MoveResult. Never raises for filesystem errors.
        """
        source = Path(source)
        destination = self.destination_for(relative_path)

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create destination directory {destination.parent}: {e}")
            return MoveResult(
                success=False,
                source_path=str(source),
                destination_path=str(destination),
                error=f"Cannot create destination directory: {e}",
            )

        try:
            os.replace(source, destination)
        except OSError as e:
            if e.errno != errno.EXDEV:
                logger.error(f"Error moving {relative_path}: {e}")
                return MoveResult(
                    success=False,
                    source_path=str(source),
                    destination_path=str(destination),
                    method="rename",
                    error=str(e),
                )
            logger.debug(f"Cross-device move for {relative_path}, falling back to copy+delete")
            return self._copy_then_delete(source, destination, relative_path)

        logger.info(f"Moved: {relative_path} -> {destination}")
        return MoveResult(
            success=True,
            source_path=str(source),
            destination_path=str(destination),
            method="rename",
            source_removed=True,
        )

    def _copy_then_delete(self, source: Path, destination: Path, relative_path) -> MoveResult:
        try:
            self._copy(source, destination)
        except MoveError as e:
            logger.error(f"Error moving {relative_path}: {e.reason}")
            return MoveResult(
                success=False,
                source_path=str(source),
                destination_path=str(destination),
                method="copy",
                error=e.reason,
            )

        try:
            os.unlink(source)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(
                f"Copied {relative_path} to {destination} but could not delete the source "
                f"(duplicate remains): {e}"
            )
            return MoveResult(
                success=True,
                source_path=str(source),
                destination_path=str(destination),
                method="copy",
                source_removed=False,
                error=f"Source not removed after copy: {e}",
            )

        logger.info(f"Moved (copy+delete): {relative_path} -> {destination}")
        return MoveResult(
            success=True,
            source_path=str(source),
            destination_path=str(destination),
            method="copy",
            source_removed=True,
        )

    @staticmethod
    def partial_path(destination: Path) -> Path:
        """Hidden sibling the cross-device copy is written to before it is swapped in."""
        return destination.with_name(f".{destination.name}.partial")

    @classmethod
    def _copy(cls, source: Path, destination: Path) -> None:
        """
        Copy contents and metadata into place.

        The copy lands in a sibling and replaces destination only once it is
        complete, so a failed copy never touches a file already delivered there.
        """
        partial = cls.partial_path(destination)
        try:
            shutil.copy2(source, partial)
            os.replace(partial, destination)
        except OSError as e:
            try:
                partial.unlink()
            except FileNotFoundError:
                pass
            except OSError as cleanup_error:
                logger.warning(f"Could not remove partial copy {partial}: {cleanup_error}")
            raise MoveError(source, destination, str(e))
