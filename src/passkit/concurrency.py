"""Bounded worker pools with per-call timeouts."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import TypeVar

from passkit.errors import IOTimeoutError, OperationCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def call_with_timeout(fn: Callable[[], T], timeout: float, what: str) -> T:
    """Run ``fn`` on a worker thread, raising IOTimeoutError if it hangs.

    Args:
        fn: Zero-argument callable (typically a collaborator query)
        timeout: Seconds to wait for the result
        what: Description used in the error message

    Returns:
        Whatever ``fn`` returns. Exceptions raised by ``fn`` propagate.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="passkit-io")
    future = executor.submit(fn)
    try:
        return future.result(timeout=timeout)
    except FuturesTimeoutError:
        raise IOTimeoutError(
            f"{what} timed out after {timeout}s",
            details={"operation": what, "timeout": timeout},
        ) from None
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def map_bounded(
    fn: Callable[[T], R],
    items: Iterable[T],
    workers: int,
    timeout: float,
    what: str,
    cancel_event: threading.Event | None = None,
) -> list[R]:
    """Apply ``fn`` to every item on a fixed-size pool.

    Results are returned in input order regardless of completion order.
    The cancel event is checked between results; once set, pending work is
    dropped and OperationCancelledError is raised.
    """
    items = list(items)
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="passkit-hash")
    try:
        futures: list[Future[R]] = [executor.submit(fn, item) for item in items]
        results: list[R] = []
        for item, future in zip(items, futures):
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelledError(
                    f"{what} cancelled after {len(results)} of {len(items)} items",
                    details={"completed": len(results), "total": len(items)},
                )
            try:
                results.append(future.result(timeout=timeout))
            except FuturesTimeoutError:
                raise IOTimeoutError(
                    f"{what} timed out after {timeout}s on {item}",
                    details={"operation": what, "item": str(item), "timeout": timeout},
                ) from None
        return results
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
