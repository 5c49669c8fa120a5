"""
All-or-nothing concurrent execution for batch media operations.
"""

from __future__ import annotations

import concurrent.futures
from typing import Callable, Iterable, List, Optional, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def run_all(
    fn: Callable[[T], R], items: Iterable[T], max_workers: Optional[int] = None
) -> List[R]:
    """
    Runs ``fn`` over ``items`` concurrently and returns results in input order.

    The first failure is raised as soon as it is seen. Sub-operations that
    have not started are cancelled; ones already running are left to finish
    in the background and their results are discarded.
    """
    items = list(items)
    if not items:
        return []
    workers = max_workers or min(8, len(items))
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=workers)
    try:
        futures = [executor.submit(fn, item) for item in items]
        done, _ = concurrent.futures.wait(
            futures, return_when=concurrent.futures.FIRST_EXCEPTION
        )
        failed = [f for f in futures if f in done and f.exception() is not None]
        if failed:
            raise failed[0].exception()
        results = [future.result() for future in futures]
    except BaseException:
        executor.shutdown(wait=False, cancel_futures=True)
        raise
    executor.shutdown(wait=True)
    return results
