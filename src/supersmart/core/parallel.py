"""
Worker pool for independent units of pipeline work.

Units (one bootstrap replicate, one clade, one tree to calibrate) are
submitted to a thread or process pool. Results are collected by input index
and handed back in input order, never in completion order, so that output
files are reproducible. A failing unit is logged and left out of the
results instead of aborting the batch.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, Literal, TypeVar

if TYPE_CHECKING:
    from supersmart.models.config import PipelineConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

Backend = Literal["thread", "process"]


@dataclass(frozen=True)
class WorkResult(Generic[T, R]):
    """Outcome of one unit of work."""

    index: int
    item: T
    value: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class WorkerPool:
    """Map-then-reduce pool with per-unit failure isolation.

    With ``workers == 1`` units run sequentially in the calling thread.
    The process backend requires ``fn`` and the items to be picklable.

    Example:
        >>> pool = WorkerPool(workers=4)
        >>> pool.map(len, ["a", "bb", "ccc"])
        [1, 2, 3]
    """

    def __init__(self, workers: int = 1, backend: Backend = "thread"):
        if workers < 1:
            msg = f"workers must be >= 1, got {workers}"
            raise ValueError(msg)
        self.workers = workers
        self.backend = backend

    @classmethod
    def from_config(cls, config: PipelineConfig) -> WorkerPool:
        return cls(workers=config.workers, backend=config.worker_backend)

    def _executor(self) -> Executor:
        if self.backend == "process":
            return ProcessPoolExecutor(max_workers=self.workers)
        return ThreadPoolExecutor(max_workers=self.workers)

    def map_results(
        self,
        fn: Callable[[T], R],
        items: Iterable[T],
        *,
        label: str = "work unit",
    ) -> list[WorkResult[T, R]]:
        """
        Apply ``fn`` to every item and return all outcomes in input order.

        Exceptions raised by ``fn`` are captured in the result and logged.
        """
        indexed = list(enumerate(items))
        results: dict[int, WorkResult[T, R]] = {}

        if self.workers == 1 or len(indexed) <= 1:
            for index, item in indexed:
                results[index] = self._call(fn, index, item, label)
        else:
            with self._executor() as executor:
                future_to_index = {
                    executor.submit(fn, item): (index, item) for index, item in indexed
                }
                for future in as_completed(future_to_index):
                    index, item = future_to_index[future]
                    try:
                        results[index] = WorkResult(index, item, value=future.result())
                    except Exception as e:
                        logger.warning("%s %d failed: %s", label.capitalize(), index + 1, e)
                        results[index] = WorkResult(index, item, error=e)

        return [results[i] for i in sorted(results)]

    def map(
        self,
        fn: Callable[[T], R],
        items: Iterable[T],
        *,
        label: str = "work unit",
    ) -> list[R]:
        """Apply ``fn`` to every item; return successful values in input order."""
        outcomes = self.map_results(fn, items, label=label)
        failed = sum(1 for o in outcomes if not o.ok)
        if failed:
            logger.warning("%d of %d %ss failed and were skipped", failed, len(outcomes), label)
        return [o.value for o in outcomes if o.ok]  # type: ignore[misc]

    @staticmethod
    def _call(fn: Callable[[T], R], index: int, item: T, label: str) -> WorkResult[T, R]:
        try:
            return WorkResult(index, item, value=fn(item))
        except Exception as e:
            logger.warning("%s %d failed: %s", label.capitalize(), index + 1, e)
            return WorkResult(index, item, error=e)
