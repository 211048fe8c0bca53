"""
Rejection log.

Append-only JSON Lines file, one RejectionLogEntry per rejected or deleted
file:

    {"timestamp":"2024-05-01T12:00:00.000Z","filename":"a.exe","filePath":"sub/a.exe","fileSize":12,"reason":"...","action":"REJECTED"}

This format is read by other tools; keys, key order and separators are fixed.
A failed write is logged and swallowed so ingestion keeps running.
"""

import logging
import threading
from pathlib import Path
from typing import List, Union

from .models import RejectionLogEntry

logger = logging.getLogger(__name__)


class RejectionLog:
    """Writes rejection entries to the log sink."""

    def __init__(self, log_path: Union[str, Path]):
        self.log_path = Path(log_path)
        self._lock = threading.Lock()

    def record(
        self,
        filename: str,
        reason: str,
        file_size: int = 0,
        relative_path: str = "",
    ) -> bool:
        """
        Append one entry.

        Returns:
            True if the entry was written, False if the write failed
        """
        entry = RejectionLogEntry(
            filename=filename,
            file_path=relative_path,
            file_size=max(0, int(file_size)),
            reason=reason,
        )
        return self.append(entry)

    def append(self, entry: RejectionLogEntry) -> bool:
        line = entry.model_dump_json(by_alias=True) + "\n"
        try:
            with self._lock:
                self.log_path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.log_path, "a", encoding="utf-8") as f:
                    f.write(line)
        except OSError as e:
            logger.error(f"Failed to write to rejection log {self.log_path}: {e}")
            return False

        logger.info(f"Logged rejection: {entry.filename} - {entry.reason}")
        return True

    def read_entries(self) -> List[RejectionLogEntry]:
        """
        Load all entries. Unparseable lines are skipped.

        Reader for operators and tests inspecting the audit trail; ingestion
        itself only appends.
        """
        if not self.log_path.is_file():
            return []
        entries: List[RejectionLogEntry] = []
        with open(self.log_path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(RejectionLogEntry.model_validate_json(line))
                except ValueError:
                    logger.warning(f"Skipping malformed rejection log line: {line[:80]}")
        return entries
