from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..models.mutation import Mutation, MutationKind
from ..store.base import StoreError, TableStore

"""Batched mutation submission.

Mutations are cut into fixed-size batches and submitted strictly in order,
one call per batch. A rejected batch is logged with its position range,
counted and skipped; the following batches are still submitted. New row ids
returned for insertions are collected in submission order.
"""

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "BatchMetrics",
    "BatchFailure",
    "ApplyResult",
    "BatchApplier",
]

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


@dataclass(frozen=True)
class BatchMetrics:
    """Timing of one submitted batch."""
    batch_size: int  # Number of mutations in this batch
    elapsed_seconds: float  # Time spent in apply_mutations
    start_time: float  # Start timestamp (time.time())
    end_time: float  # End timestamp (time.time())


@dataclass(frozen=True)
class BatchFailure:
    first: int  # 1-based position of the first mutation of the batch
    last: int  # 1-based position of the last mutation, inclusive
    size: int
    message: str


@dataclass
class ApplyResult:
    added_ids: list[Any] = field(default_factory=list)
    error_count: int = 0  # mutations in rejected batches
    applied: list[Mutation] = field(default_factory=list)  # mutations the store accepted
    failures: list[BatchFailure] = field(default_factory=list)
    batches: int = 0


class BatchApplier:
    def __init__(
        self,
        store: TableStore,
        batch_size: int = DEFAULT_BATCH_SIZE,
        metrics_callback: Callable[[BatchMetrics], None] | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._store = store
        self.batch_size = batch_size
        self._metrics_callback = metrics_callback

    def apply(self, mutations: Sequence[Mutation], dry_run: bool = False) -> ApplyResult:
        """Submit ``mutations``; with dry_run nothing is sent to the store."""
        result = ApplyResult()
        if dry_run:
            logger.info(f"[dry-run] {len(mutations)} mutation(s) not submitted")
            return result

        for start in range(0, len(mutations), self.batch_size):
            batch = list(mutations[start:start + self.batch_size])
            first, last = start + 1, start + len(batch)
            result.batches += 1

            start_time = time.time()
            try:
                returned = self._store.apply_mutations(batch)
            except StoreError as e:
                logger.error(f"batch {first}-{last} rejected: {e}")
                result.error_count += len(batch)
                result.failures.append(BatchFailure(first, last, len(batch), str(e)))
                continue
            finally:
                end_time = time.time()
                if self._metrics_callback is not None:
                    self._metrics_callback(BatchMetrics(
                        batch_size=len(batch),
                        elapsed_seconds=end_time - start_time,
                        start_time=start_time,
                        end_time=end_time,
                    ))

            result.applied.extend(batch)
            for mutation, value in zip(batch, returned or []):
                if mutation.kind is MutationKind.ADD and value is not None:
                    result.added_ids.append(value)

        logger.debug(
            f"{len(mutations)} mutation(s) in {result.batches} batch(es), {result.error_count} in error"
        )
        return result
