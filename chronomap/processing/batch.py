"""Batch driver with bounded concurrency and per-item failure isolation.

``BatchProcessor.process(items, unit_of_work)`` slices *items* into
fixed-size batches and hands each batch to an ``ExecutionStrategy``:

- ``SequentialStrategy`` runs items one after another.
- ``ChunkedParallelStrategy`` splits a batch into ``concurrency``-sized
  chunks and runs each chunk's items on a thread pool, waiting for the
  whole chunk before starting the next.  At most ``concurrency``
  unit-of-work calls are ever in flight.

A failing item is recorded in ``BatchStats.errors`` and the run
continues.  After each batch a ``ProgressEvent`` is emitted; between
batches the optional ``cancel_event`` is checked and, if set, the run
stops with ``stats.cancelled = True``.

``RetryBatchProcessor`` retries each failing item up to ``max_retries``
times with a linearly growing delay before recording it as failed.
"""

from __future__ import annotations

import abc
import logging
import threading
import time
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from chronomap.core.constants import DEFAULT_BATCH_SIZE, DEFAULT_MAX_RETRIES
from chronomap.models.batch import BatchItemError, BatchStats, ProgressEvent

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    ProgressCallback = Callable[[ProgressEvent], None]
    ErrorCallback = Callable[[Exception, Any], None]

logger = logging.getLogger("chronomap.processing.batch")

UNKNOWN_ITEM = "unknown"


def item_identifier(item: object) -> str:
    """Best-effort identifier for error records: ``id``, then ``name``, then ``"unknown"``."""
    for key in ("id", "name"):
        if isinstance(item, Mapping):
            value = item.get(key)
        else:
            value = getattr(item, key, None)
        if value is not None and value != "":
            return str(value)
    return UNKNOWN_ITEM


@dataclass(frozen=True, slots=True)
class ItemOutcome:
    """Result of driving one item through the unit of work.

    Attributes:
        attempts: Calls made to the unit of work for this item.
        error: The final exception, or ``None`` when the item succeeded.
    """

    attempts: int
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Execution strategies
# ---------------------------------------------------------------------------


class ExecutionStrategy(abc.ABC):
    """How the items of one batch are driven through the item handler.

    The handler passed to ``execute`` records its own outcome and never
    raises for unit-of-work failures, so a strategy only has to decide
    ordering and parallelism.
    """

    #: Upper bound on simultaneously running handler calls.
    max_in_flight: int = 1

    @abc.abstractmethod
    def execute(self, items: Sequence[Any], handle: Callable[[Any], None]) -> None:
        """Run *handle* once for every item in *items*."""

    def close(self) -> None:  # noqa: B027
        """Release any resources held by the strategy."""


class SequentialStrategy(ExecutionStrategy):
    """Process items one at a time in input order."""

    def execute(self, items: Sequence[Any], handle: Callable[[Any], None]) -> None:
        for item in items:
            handle(item)

    def __repr__(self) -> str:
        return "SequentialStrategy()"


class ChunkedParallelStrategy(ExecutionStrategy):
    """Run ``concurrency``-sized chunks of a batch in parallel.

    Each chunk is awaited before the next one is submitted, capping the
    in-flight work at ``concurrency`` without unbounded fan-out.
    """

    def __init__(self, concurrency: int) -> None:
        if concurrency < 1:
            msg = f"concurrency must be >= 1, got {concurrency}"
            raise ValueError(msg)
        self.max_in_flight = concurrency
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()

    def execute(self, items: Sequence[Any], handle: Callable[[Any], None]) -> None:
        executor = self._get_executor()
        for start in range(0, len(items), self.max_in_flight):
            chunk = items[start : start + self.max_in_flight]
            futures = [executor.submit(handle, item) for item in chunk]
            for future in futures:
                future.result()

    def close(self) -> None:
        with self._lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_in_flight,
                    thread_name_prefix="chronomap-batch",
                )
            return self._executor

    def __repr__(self) -> str:
        return f"ChunkedParallelStrategy(concurrency={self.max_in_flight})"


def strategy_for(concurrency: int) -> ExecutionStrategy:
    """Return the strategy matching a ``concurrency`` setting."""
    if concurrency <= 1:
        return SequentialStrategy()
    return ChunkedParallelStrategy(concurrency)


# ---------------------------------------------------------------------------
# Batch processor
# ---------------------------------------------------------------------------


class BatchProcessor:
    """Drive items through a unit of work in fixed-size batches.

    Args:
        batch_size: Items per batch.
        strategy: Execution strategy; defaults to ``strategy_for(concurrency)``.
        concurrency: Used only when *strategy* is not given.
        on_progress: Called after each batch with a ``ProgressEvent``.
        on_error: Called with ``(exception, item)`` for each terminal failure.
        cancel_event: Checked at batch boundaries; when set the run stops.
    """

    def __init__(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        *,
        strategy: ExecutionStrategy | None = None,
        concurrency: int = 1,
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        if batch_size < 1:
            msg = f"batch_size must be >= 1, got {batch_size}"
            raise ValueError(msg)
        self.batch_size = batch_size
        self.strategy = strategy or strategy_for(concurrency)
        self.on_progress = on_progress
        self.on_error = on_error
        self.cancel_event = cancel_event

    def process(
        self,
        items: Iterable[Any],
        unit_of_work: Callable[[Any], object],
    ) -> BatchStats:
        """Run *unit_of_work* over every item and return fresh ``BatchStats``."""
        pending = list(items)
        stats = BatchStats(total=len(pending), start_time=datetime.now(UTC))
        lock = threading.Lock()
        batches = [
            pending[start : start + self.batch_size]
            for start in range(0, len(pending), self.batch_size)
        ]
        total_batches = len(batches)

        logger.info(
            "batch run started | total=%d | batch_size=%d | batches=%d | strategy=%r",
            stats.total,
            self.batch_size,
            total_batches,
            self.strategy,
        )

        try:
            for batch_index, batch in enumerate(batches, start=1):
                if self.cancel_event is not None and self.cancel_event.is_set():
                    stats.cancelled = True
                    logger.warning(
                        "batch run cancelled | before_batch=%d/%d | processed=%d/%d",
                        batch_index,
                        total_batches,
                        stats.processed,
                        stats.total,
                    )
                    break

                with lock:
                    stats.batch_count += 1

                def handle(item: Any, _batch: int = batch_index) -> None:
                    self._handle_item(item, unit_of_work, stats, lock, _batch)

                self.strategy.execute(batch, handle)
                self._emit_progress(stats, lock, batch_index, total_batches)
        finally:
            stats.end_time = datetime.now(UTC)

        logger.info(
            "batch run completed | total=%d | succeeded=%d | failed=%d | "
            "batches=%d | cancelled=%s | duration=%.2fs",
            stats.total,
            stats.succeeded,
            stats.failed,
            stats.batch_count,
            stats.cancelled,
            stats.duration_seconds,
        )
        return stats

    def close(self) -> None:
        """Release strategy resources (thread pools)."""
        self.strategy.close()

    # ------------------------------------------------------------------
    # Per-item handling
    # ------------------------------------------------------------------

    def run_item(self, item: Any, unit_of_work: Callable[[Any], object]) -> ItemOutcome:
        """Run one item and report its outcome as data.

        Subclasses override this to add retry behaviour.
        """
        try:
            unit_of_work(item)
        except Exception as exc:
            return ItemOutcome(attempts=1, error=exc)
        return ItemOutcome(attempts=1)

    def _handle_item(
        self,
        item: Any,
        unit_of_work: Callable[[Any], object],
        stats: BatchStats,
        lock: threading.Lock,
        batch_index: int,
    ) -> None:
        outcome = self.run_item(item, unit_of_work)
        if outcome.ok:
            with lock:
                stats.processed += 1
                stats.succeeded += 1
            return

        exc = outcome.error
        identifier = item_identifier(item)
        with lock:
            stats.processed += 1
            stats.failed += 1
            stats.errors.append(
                BatchItemError(
                    item=identifier,
                    batch=batch_index,
                    error=str(exc) or type(exc).__name__,
                    attempts=outcome.attempts,
                )
            )
        logger.warning(
            "batch item failed | item=%s | batch=%d | attempts=%d | error=%s",
            identifier,
            batch_index,
            outcome.attempts,
            exc,
        )
        if self.on_error is not None:
            self.on_error(exc, item)

    def _emit_progress(
        self,
        stats: BatchStats,
        lock: threading.Lock,
        batch_index: int,
        total_batches: int,
    ) -> None:
        with lock:
            snapshot = stats.to_dict()
            pct = 100.0 if stats.total == 0 else round(stats.processed / stats.total * 100, 2)
        logger.info(
            "batch %d/%d complete | processed=%d/%d | failed=%d",
            batch_index,
            total_batches,
            snapshot["processed"],
            stats.total,
            snapshot["failed"],
        )
        if self.on_progress is not None:
            self.on_progress(
                ProgressEvent(
                    current_batch=batch_index,
                    total_batches=total_batches,
                    stats=snapshot,
                    progress_pct=pct,
                )
            )


class RetryBatchProcessor(BatchProcessor):
    """Batch processor that retries failing items before recording them.

    An item is attempted up to ``max_retries + 1`` times; before retry
    ``n`` (zero-based) the processor sleeps ``retry_delay_s * (n + 1)``.
    Only the final failure is counted in ``failed`` / ``errors``.

    ``retry_if`` narrows which exceptions are retried; an exception it
    rejects is recorded immediately with the attempts made so far.
    """

    def __init__(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_s: float = 1.0,
        retry_if: Callable[[Exception], bool] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        **kwargs: Any,
    ) -> None:
        if max_retries < 0:
            msg = f"max_retries must be >= 0, got {max_retries}"
            raise ValueError(msg)
        super().__init__(batch_size, **kwargs)
        self.max_retries = max_retries
        self.retry_delay_s = retry_delay_s
        self.retry_if = retry_if
        self._sleep = sleep

    def run_item(self, item: Any, unit_of_work: Callable[[Any], object]) -> ItemOutcome:
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                unit_of_work(item)
            except Exception as exc:
                if attempt >= self.max_retries or (
                    self.retry_if is not None and not self.retry_if(exc)
                ):
                    return ItemOutcome(attempts=attempt + 1, error=exc)
                delay = self.retry_delay_s * (attempt + 1)
                logger.warning(
                    "batch item attempt %d/%d failed (retryable) | item=%s | "
                    "delay=%.1fs | error=%s",
                    attempt + 1,
                    attempts,
                    item_identifier(item),
                    delay,
                    exc,
                )
                self._sleep(delay)
            else:
                return ItemOutcome(attempts=attempt + 1)
        msg = "retry loop exited without an outcome"
        raise AssertionError(msg)
