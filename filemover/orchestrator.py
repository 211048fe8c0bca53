"""
Debounce coordinator and batch orchestrator.

Owns the only shared mutable state of the service: the pending-file set and
the debounce timer. Both are guarded by one lock; nothing else reads or
writes them.

State machine:

    IDLE --add--> DEBOUNCING --timer--> PROCESSING --done--> IDLE
                     ^  |add (reset)                  |
                     |__|                             | pending non-empty
                     ^________________________________|

    any --stop--> STOPPED (an in-flight batch finishes first)

Design rules:
- At most one batch runs at a time
- Adds during PROCESSING are queued for the next batch, never the current one
- Adds during PROCESSING never arm the timer; the batch re-arms it when done
- A stale timer callback (reset or cancelled) is ignored
"""

import logging
import threading
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set, Union

from .errors import FatalIngestError
from .models import BatchSummary, MonitorState

logger = logging.getLogger(__name__)


BatchProcessor = Callable[[List[Path]], BatchSummary]


def default_timer_factory(interval: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(interval, callback)
    timer.daemon = True
    return timer


class BatchOrchestrator:
    """
    Accumulates detected files and runs debounced, non-overlapping batches.

    Args:
        process_batch: Callable running the full per-file pipeline and cleanup
        debounce_seconds: Quiet period after the last add before a batch runs
        timer_factory: Builds a startable/cancellable timer (threading.Timer by default)
        on_fatal: Called with the error when a batch raises FatalIngestError
    """

    def __init__(
        self,
        process_batch: BatchProcessor,
        debounce_seconds: float,
        timer_factory: Callable[[float, Callable[[], None]], object] = default_timer_factory,
        on_fatal: Optional[Callable[[FatalIngestError], None]] = None,
    ):
        self._process_batch = process_batch
        self.debounce_seconds = debounce_seconds
        self._timer_factory = timer_factory
        self._on_fatal = on_fatal

        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)
        self._pending: Set[Path] = set()
        self._state = MonitorState.IDLE
        self._timer = None
        self._timer_generation = 0
        self._stopped = False

        self._batches_run = 0
        self._last_summary: Optional[BatchSummary] = None

    # -------------------------------------------------------------------------
    # Read-only views
    # -------------------------------------------------------------------------

    @property
    def state(self) -> MonitorState:
        with self._lock:
            return self._state

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def batches_run(self) -> int:
        with self._lock:
            return self._batches_run

    @property
    def last_summary(self) -> Optional[BatchSummary]:
        with self._lock:
            return self._last_summary

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def add(self, path: Union[str, Path]) -> None:
        """Register a detected file and (re)start the debounce window."""
        self.add_many([path])

    def add_many(self, paths: Iterable[Union[str, Path]]) -> int:
        """
        Register several files with a single timer reset.

        Returns:
            Number of paths accepted (0 once stopped)
        """
        paths = [Path(p) for p in paths]
        with self._lock:
            if self._stopped:
                logger.debug(f"Ignoring {len(paths)} file(s) added after stop")
                return 0
            self._pending.update(paths)
            if not paths:
                return 0

            if self._state == MonitorState.PROCESSING:
                logger.debug(
                    f"Batch in progress; {len(paths)} file(s) queued for the next batch"
                )
                return len(paths)

            self._arm_timer_locked()
            return len(paths)

    def flush(self) -> Optional[BatchSummary]:
        """
        Run the pending files now, on the calling thread.

        Returns:
            The batch summary, or None if nothing ran (nothing pending, a
            batch already in progress, or stopped)
        """
        with self._lock:
            if self._state in (MonitorState.PROCESSING, MonitorState.STOPPED):
                return None
            self._cancel_timer_locked()
            batch = self._begin_batch_locked()
        if batch is None:
            return None
        return self._execute(batch)

    def stop(self, wait: bool = True, timeout: Optional[float] = None) -> bool:
        """
        Cancel the timer and refuse further work.

        A batch already running is allowed to finish. Pending files that
        never reached a batch are dropped; they are picked up again by the
        startup scan of the next run.

        Returns:
            True once no batch is running
        """
        with self._lock:
            self._stopped = True
            self._cancel_timer_locked()
            if self._pending:
                logger.info(f"Stopping with {len(self._pending)} pending file(s) not processed")
                self._pending.clear()

            if self._state != MonitorState.PROCESSING:
                self._state = MonitorState.STOPPED
                return True

            if not wait:
                return False
            logger.info("Waiting for the running batch to finish")
            return self._changed.wait_for(
                lambda: self._state != MonitorState.PROCESSING, timeout=timeout
            )

    # -------------------------------------------------------------------------
    # Internals (caller holds the lock unless stated otherwise)
    # -------------------------------------------------------------------------

    def _arm_timer_locked(self) -> None:
        self._cancel_timer_locked()
        self._timer_generation += 1
        generation = self._timer_generation
        self._timer = self._timer_factory(
            self.debounce_seconds, lambda: self._on_timer(generation)
        )
        self._timer.start()
        self._state = MonitorState.DEBOUNCING
        logger.debug(f"Debounce timer reset ({self.debounce_seconds:g}s)")

    def _cancel_timer_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _begin_batch_locked(self) -> Optional[List[Path]]:
        if not self._pending:
            if not self._stopped:
                self._state = MonitorState.IDLE
            return None
        batch = sorted(self._pending)
        self._pending.clear()
        self._state = MonitorState.PROCESSING
        return batch

    def _on_timer(self, generation: int) -> None:
        """Timer thread entry point. Acquires the lock itself."""
        with self._lock:
            if generation != self._timer_generation or self._state != MonitorState.DEBOUNCING:
                return
            self._timer = None
            batch = self._begin_batch_locked()
            if batch is not None:
                logger.info(
                    f"Debounce timeout reached. Processing {len(batch)} pending file(s)..."
                )
        if batch is not None:
            self._execute(batch)

    def _execute(self, batch: List[Path]) -> Optional[BatchSummary]:
        """Run one batch without holding the lock, then settle the next state."""
        summary: Optional[BatchSummary] = None
        fatal: Optional[FatalIngestError] = None
        try:
            summary = self._process_batch(batch)
        except FatalIngestError as e:
            logger.critical(f"Fatal error while processing batch: {e}")
            fatal = e
        except Exception:
            logger.exception("Unexpected error while processing batch")
        finally:
            with self._lock:
                self._batches_run += 1
                if summary is not None:
                    self._last_summary = summary
                if self._stopped or fatal is not None:
                    self._stopped = True
                    self._state = MonitorState.STOPPED
                elif self._pending:
                    logger.info(
                        f"{len(self._pending)} file(s) arrived during the batch; starting a new debounce cycle"
                    )
                    self._arm_timer_locked()
                else:
                    self._state = MonitorState.IDLE
                self._changed.notify_all()

        if fatal is not None and self._on_fatal is not None:
            self._on_fatal(fatal)
        return summary
