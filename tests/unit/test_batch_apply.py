from __future__ import annotations

import pytest

from sheet_reconcile.db.batch_apply import BatchApplier, BatchMetrics
from sheet_reconcile.models.mutation import Mutation
from sheet_reconcile.store.memory import MemoryStore


@pytest.fixture()
def store() -> MemoryStore:
    s = MemoryStore()
    s.add_table("T", {"name": "Text"}, [{"id": 1, "name": "existing"}])
    return s


def _adds(n: int) -> list[Mutation]:
    return [Mutation.add("T", {"name": f"row {i}"}) for i in range(n)]


def test_batches_in_order_and_ids_collected(store: MemoryStore):
    result = BatchApplier(store, batch_size=100).apply(_adds(250))
    assert result.batches == 3
    assert store.apply_calls == 3
    assert result.error_count == 0
    assert result.added_ids == list(range(2, 252))
    assert len(result.applied) == 250


def test_failed_batch_is_skipped_and_next_batches_still_run(store: MemoryStore, caplog):
    store.failing_calls = {2}
    result = BatchApplier(store, batch_size=100).apply(_adds(250))

    assert result.error_count == 100
    assert len(result.failures) == 1
    failure = result.failures[0]
    assert (failure.first, failure.last, failure.size) == (101, 200, 100)
    assert "injected failure" in failure.message
    # Ids from batches 1 and 3 only
    assert len(result.added_ids) == 150
    assert len(result.applied) == 150
    assert len(store.records("T")) == 151
    assert "batch 101-200 rejected" in caplog.text


def test_store_rejection_rolls_back_the_whole_batch(store: MemoryStore):
    batch = [Mutation.add("T", {"name": "ok"}), Mutation.update("T", 99, {"name": "missing row"})]
    result = BatchApplier(store).apply(batch)
    assert result.error_count == 2
    assert result.added_ids == []
    assert [r["name"] for r in store.records("T")] == ["existing"]


def test_updates_and_removes_return_no_ids(store: MemoryStore):
    result = BatchApplier(store).apply([
        Mutation.update("T", 1, {"name": "changed"}),
        Mutation.add("T", {"name": "new"}),
        Mutation.remove("T", 1),
    ])
    assert result.added_ids == [2]
    assert store.get("T", 1) is None


def test_dry_run_submits_nothing(store: MemoryStore):
    result = BatchApplier(store).apply(_adds(5), dry_run=True)
    assert store.apply_calls == 0
    assert result.batches == 0
    assert result.added_ids == []


def test_metrics_callback_called_per_batch(store: MemoryStore):
    captured: list[BatchMetrics] = []
    store.failing_calls = {1}
    BatchApplier(store, batch_size=2, metrics_callback=captured.append).apply(_adds(5))
    assert [m.batch_size for m in captured] == [2, 2, 1]
    assert all(m.elapsed_seconds >= 0 for m in captured)


def test_invalid_batch_size(store: MemoryStore):
    with pytest.raises(ValueError):
        BatchApplier(store, batch_size=0)
