"""Fork-join helpers on a thread pool.

``parallel_for`` splits an index range into blocks and runs a body on each
block; ``parallel_reduce`` runs split copies of a reduction body over chunks
and joins the partial results back into the original body. Both poll an
optional :class:`~distview.stale_result_guard.EpochGuard` before every block,
which is the batch boundary for cancellation.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional, Protocol, Sequence, Tuple, TypeVar

from distview.stale_result_guard import EpochGuard

R = TypeVar("R", bound="Reducer")


class Reducer(Protocol):
    """Reduction body: callable on a chunk, splittable and joinable."""

    def __call__(self, chunk: Sequence) -> None: ...

    def split(self: R) -> R: ...

    def join(self: R, other: R) -> None: ...


def blocked_ranges(n: int, block_size: int) -> List[Tuple[int, int]]:
    """Return ``[(start, stop), ...]`` covering ``range(n)``."""
    size = max(1, int(block_size))
    return [(start, min(start + size, n)) for start in range(0, max(0, n), size)]


class WorkerPool:
    """Thread pool running data-parallel passes.

    Parameters
    ----------
    workers : int
        Number of worker threads; ``1`` runs every pass inline.
    """

    def __init__(self, workers: int = 4) -> None:
        self.workers = max(1, int(workers))
        self._executor: Optional[ThreadPoolExecutor] = None
        if self.workers > 1:
            self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="distview")

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _gather(self, futures: List[Future]) -> list:
        results = []
        try:
            for fut in futures:
                results.append(fut.result())
        except BaseException:
            for fut in futures:
                fut.cancel()
            raise
        return results

    def parallel_for(
        self,
        n: int,
        body: Callable[[int, int], None],
        block_size: int,
        guard: Optional[EpochGuard] = None,
    ) -> None:
        """Run ``body(start, stop)`` over blocks of ``range(n)``."""

        def run(block: Tuple[int, int]) -> None:
            if guard is not None:
                guard.check()
            body(*block)

        blocks = blocked_ranges(n, block_size)
        if self._executor is None:
            for block in blocks:
                run(block)
            return
        self._gather([self._executor.submit(run, block) for block in blocks])

    def parallel_reduce(self, body: R, chunks: Sequence[Sequence], guard: Optional[EpochGuard] = None) -> R:
        """Reduce ``chunks`` with split copies of ``body`` and join into it.

        Partial bodies are joined in chunk order, but the join operation must
        be associative and commutative for the result to be independent of
        partitioning.
        """
        if self._executor is None:
            for chunk in chunks:
                if guard is not None:
                    guard.check()
                body(chunk)
            return body

        def run(chunk: Sequence) -> R:
            if guard is not None:
                guard.check()
            part = body.split()
            part(chunk)
            return part

        for part in self._gather([self._executor.submit(run, chunk) for chunk in chunks]):
            body.join(part)
        return body
