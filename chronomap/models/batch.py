"""Batch run accounting models.

``BatchStats`` is owned by exactly one ``BatchProcessor.process`` call:
it is created at the start of the run, mutated only under the run's
lock, and handed back to the caller when the run ends.  It is never
shared between runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True, slots=True)
class BatchItemError:
    """A terminal per-item failure recorded by a batch run.

    Attributes:
        item: Best-effort item identifier (``id``, then ``name``, then ``"unknown"``).
        batch: One-based index of the batch the item belonged to.
        error: Error message of the final failed attempt.
        attempts: Number of attempts made before giving up.
    """

    item: str
    batch: int
    error: str
    attempts: int = 1

    def to_dict(self) -> dict[str, object]:
        return {
            "item": self.item,
            "batch": self.batch,
            "error": self.error,
            "attempts": self.attempts,
        }


@dataclass(slots=True)
class BatchStats:
    """Aggregate outcome of one batch run.

    Attributes:
        total: Number of items handed to the run.
        processed: Items whose outcome (success or failure) is recorded.
        succeeded: Items whose unit of work completed.
        failed: Items that failed terminally.
        errors: One entry per terminal failure.
        batch_count: Batches actually started.
        cancelled: Whether the run stopped early at a batch boundary.
        start_time: UTC time the run started.
        end_time: UTC time the run finished (``None`` while running).
    """

    total: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[BatchItemError] = field(default_factory=list)
    batch_count: int = 0
    cancelled: bool = False
    start_time: datetime | None = None
    end_time: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        """Elapsed wall-clock time of the run (0 until it has finished)."""
        if self.start_time is None or self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success_rate(self) -> float:
        """Fraction of processed items that succeeded (1.0 when nothing ran)."""
        if self.processed == 0:
            return 1.0
        return self.succeeded / self.processed

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": [e.to_dict() for e in self.errors],
            "batch_count": self.batch_count,
            "cancelled": self.cancelled,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Progress notification emitted after each completed batch.

    Attributes:
        current_batch: One-based index of the batch that just finished.
        total_batches: Number of batches in the run.
        stats: Snapshot of the cumulative ``BatchStats.to_dict()``.
        progress_pct: Processed items as a percentage of the total.
    """

    current_batch: int
    total_batches: int
    stats: dict[str, object]
    progress_pct: float
