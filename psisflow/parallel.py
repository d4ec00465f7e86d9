from __future__ import annotations

from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from typing import Callable, List, Literal, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")

Backend = Literal["thread", "process"]


def _make_executor(backend: Backend, max_workers: int) -> Executor:
    if backend == "process":
        return ProcessPoolExecutor(max_workers=max_workers)
    return ThreadPoolExecutor(max_workers=max_workers)


def map_ordered(
    fn: Callable[[T], R],
    items: Sequence[T],
    n_workers: int = 1,
    backend: Backend = "thread",
) -> List[R]:
    """
    Apply ``fn`` to every item and return the results in input order.

    Workers finish in any order; results are slotted back by index. With the
    process backend ``fn`` and the items must be picklable.
    """
    total = len(items)
    if n_workers <= 1 or total <= 1:
        return [fn(item) for item in items]

    results: List[R] = [None] * total  # type: ignore[list-item]
    with _make_executor(backend, min(n_workers, total)) as executor:
        future_map = {executor.submit(fn, item): idx for idx, item in enumerate(items)}
        for future in as_completed(future_map):
            results[future_map[future]] = future.result()
    return results
