"""Tests for the batch processor and its execution strategies.

Covers:
- Batch slicing, counters and progress events
- Per-item failure isolation
- Retry semantics (attempt counts, delays, retry_if)
- Cancellation at batch boundaries
- Chunked parallel execution never exceeding the concurrency bound
"""

from __future__ import annotations

import threading
import time

import pytest

from chronomap.models.batch import ProgressEvent
from chronomap.processing.batch import (
    BatchProcessor,
    ChunkedParallelStrategy,
    ItemOutcome,
    RetryBatchProcessor,
    SequentialStrategy,
    item_identifier,
    strategy_for,
)


def _records(n: int) -> list[dict[str, object]]:
    return [{"id": f"rec-{i}", "value": i} for i in range(n)]


class TestBatchProcessor:
    def test_all_items_succeed(self) -> None:
        seen: list[object] = []
        stats = BatchProcessor(batch_size=10).process(_records(25), lambda r: seen.append(r))

        assert stats.total == 25
        assert stats.processed == 25
        assert stats.succeeded == 25
        assert stats.failed == 0
        assert stats.batch_count == 3
        assert len(seen) == 25
        assert stats.end_time is not None

    def test_failing_item_is_isolated(self) -> None:
        def unit(record: dict[str, object]) -> None:
            if record["value"] == 7:
                raise ValueError("record 7 is broken")

        stats = BatchProcessor(batch_size=5).process(_records(12), unit)

        assert stats.succeeded == 11
        assert stats.failed == 1
        assert stats.succeeded + stats.failed == stats.total
        error = stats.errors[0]
        assert error.item == "rec-7"
        assert error.batch == 2
        assert error.error == "record 7 is broken"
        assert error.attempts == 1

    def test_on_error_callback(self) -> None:
        failures: list[tuple[str, object]] = []

        def unit(record: dict[str, object]) -> None:
            raise RuntimeError("nope")

        BatchProcessor(on_error=lambda exc, item: failures.append((str(exc), item))).process(
            _records(2), unit
        )
        assert [msg for msg, _ in failures] == ["nope", "nope"]

    def test_empty_input(self) -> None:
        events: list[ProgressEvent] = []
        stats = BatchProcessor(on_progress=events.append).process([], lambda r: None)
        assert stats.total == 0
        assert stats.batch_count == 0
        assert events == []
        assert stats.success_rate == 1.0

    def test_progress_after_each_batch(self) -> None:
        events: list[ProgressEvent] = []
        BatchProcessor(batch_size=4, on_progress=events.append).process(
            _records(10), lambda r: None
        )

        assert [e.current_batch for e in events] == [1, 2, 3]
        assert all(e.total_batches == 3 for e in events)
        assert [e.stats["processed"] for e in events] == [4, 8, 10]
        assert events[-1].progress_pct == 100.0
        assert events[0].progress_pct == 40.0

    def test_cancel_between_batches(self) -> None:
        cancel = threading.Event()
        processed: list[object] = []

        def on_progress(event: ProgressEvent) -> None:
            if event.current_batch == 2:
                cancel.set()

        stats = BatchProcessor(
            batch_size=3, on_progress=on_progress, cancel_event=cancel
        ).process(_records(10), processed.append)

        assert stats.cancelled is True
        assert stats.batch_count == 2
        assert stats.processed == 6
        assert len(processed) == 6

    def test_cancelled_before_start(self) -> None:
        cancel = threading.Event()
        cancel.set()
        stats = BatchProcessor(cancel_event=cancel).process(_records(3), lambda r: None)
        assert stats.cancelled is True
        assert stats.processed == 0

    def test_invalid_batch_size(self) -> None:
        with pytest.raises(ValueError, match="batch_size"):
            BatchProcessor(batch_size=0)

    def test_stats_are_fresh_per_run(self) -> None:
        processor = BatchProcessor(batch_size=2)
        first = processor.process(_records(3), lambda r: None)
        second = processor.process(_records(1), lambda r: None)
        assert first.total == 3
        assert second.total == 1
        assert first is not second


class TestRetryBatchProcessor:
    def test_fails_twice_then_succeeds(self) -> None:
        attempts: dict[str, int] = {}
        delays: list[float] = []

        def flaky(record: dict[str, object]) -> None:
            key = str(record["id"])
            attempts[key] = attempts.get(key, 0) + 1
            if attempts[key] <= 2:
                raise ConnectionError("temporarily unavailable")

        processor = RetryBatchProcessor(
            batch_size=10, max_retries=2, retry_delay_s=0.5, sleep=delays.append
        )
        stats = processor.process(_records(1), flaky)

        assert stats.succeeded == 1
        assert stats.failed == 0
        assert attempts == {"rec-0": 3}
        assert delays == [0.5, 1.0]

    def test_exhaustion_records_attempts(self) -> None:
        processor = RetryBatchProcessor(max_retries=2, retry_delay_s=0.0, sleep=lambda s: None)

        def always_fails(record: object) -> None:
            raise ConnectionError("down")

        stats = processor.process(_records(2), always_fails)

        assert stats.failed == 2
        assert [e.attempts for e in stats.errors] == [3, 3]

    def test_retry_if_short_circuits(self) -> None:
        calls = {"n": 0}

        def invalid(record: object) -> None:
            calls["n"] += 1
            raise ValueError("deterministic")

        processor = RetryBatchProcessor(
            max_retries=5,
            retry_delay_s=0.0,
            retry_if=lambda exc: not isinstance(exc, ValueError),
            sleep=lambda s: None,
        )
        outcome = processor.run_item({"id": "x"}, invalid)

        assert outcome == ItemOutcome(attempts=1, error=outcome.error)
        assert not outcome.ok
        assert calls["n"] == 1

    def test_negative_retries_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_retries"):
            RetryBatchProcessor(max_retries=-1)


class TestStrategies:
    def test_strategy_for(self) -> None:
        assert isinstance(strategy_for(1), SequentialStrategy)
        parallel = strategy_for(4)
        assert isinstance(parallel, ChunkedParallelStrategy)
        assert parallel.max_in_flight == 4

    def test_invalid_concurrency(self) -> None:
        with pytest.raises(ValueError, match="concurrency"):
            ChunkedParallelStrategy(0)

    def test_parallel_respects_bound(self) -> None:
        lock = threading.Lock()
        state = {"active": 0, "peak": 0}

        def unit(record: object) -> None:
            with lock:
                state["active"] += 1
                state["peak"] = max(state["peak"], state["active"])
            time.sleep(0.01)
            with lock:
                state["active"] -= 1

        processor = BatchProcessor(batch_size=10, concurrency=3)
        try:
            stats = processor.process(_records(20), unit)
        finally:
            processor.close()

        assert stats.succeeded == 20
        assert 1 <= state["peak"] <= 3

    def test_parallel_failures_counted(self) -> None:
        def unit(record: dict[str, object]) -> None:
            if int(str(record["value"])) % 2:
                raise ValueError("odd")

        processor = BatchProcessor(batch_size=8, concurrency=4)
        try:
            stats = processor.process(_records(16), unit)
        finally:
            processor.close()

        assert stats.succeeded == 8
        assert stats.failed == 8
        assert stats.processed == 16


class TestItemIdentifier:
    def test_prefers_id_then_name(self) -> None:
        assert item_identifier({"id": 5, "name": "x"}) == "5"
        assert item_identifier({"name": "x"}) == "x"
        assert item_identifier({"id": ""}) == "unknown"

    def test_attribute_lookup(self) -> None:
        class Record:
            name = "attr-name"

        assert item_identifier(Record()) == "attr-name"
        assert item_identifier(42) == "unknown"
