"""Bounded, order-preserving fan-out over a thread pool.

Two entry points share one submission window:

- :func:`p_map` maps an iterable through a function with at most
  ``concurrency`` calls in flight and returns the values in input order. The
  first error propagates and unstarted work is cancelled.
- :func:`p_settle` runs every task to completion and returns one
  :class:`Settled` per task, in submission order, holding either the value or
  the exception. One task failing never affects the others.

Both hide ``ThreadPoolExecutor`` mechanics (priming, top-up, shutdown).
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Generic, TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


@dataclass(frozen=True, slots=True)
class Settled(Generic[OutT]):
    """Outcome of one task: exactly one of ``value`` / ``error`` is meaningful."""

    index: int
    value: OutT | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _run_window(
    iterable: Iterable[InT],
    fn: Callable[[InT], OutT],
    *,
    concurrency: int,
    on_done: Callable[[int, Future[OutT], ThreadPoolExecutor], None],
) -> int:
    """Drive a sliding submission window; return the number of tasks submitted."""

    if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    it = enumerate(iterable)
    index_of: dict[Future[OutT], int] = {}
    submitted = 0

    with ThreadPoolExecutor(max_workers=concurrency) as pool:

        def _submit_next() -> Future[OutT] | None:
            nonlocal submitted
            try:
                idx, item = next(it)
            except StopIteration:
                return None
            fut = pool.submit(fn, item)
            index_of[fut] = idx
            submitted += 1
            return fut

        active: set[Future[OutT]] = set()
        for _ in range(concurrency):
            fut = _submit_next()
            if fut is None:
                break
            active.add(fut)

        while active:
            done, active = wait(active, return_when=FIRST_COMPLETED)
            for fut in done:
                on_done(index_of.pop(fut), fut, pool)
            for _ in range(len(done)):
                fut = _submit_next()
                if fut is None:
                    break
                active.add(fut)

    return submitted


def p_map(
    iterable: Iterable[InT],
    fn: Callable[[InT], OutT],
    *,
    concurrency: int,
) -> list[OutT]:
    """Return ``[fn(x) for x in iterable]`` computed concurrently, in input order."""

    results: dict[int, OutT] = {}

    def _collect(idx: int, fut: Future[OutT], pool: ThreadPoolExecutor) -> None:
        try:
            results[idx] = fut.result()
        except Exception:
            pool.shutdown(wait=False, cancel_futures=True)
            raise

    submitted = _run_window(iterable, fn, concurrency=concurrency, on_done=_collect)
    return [results[i] for i in range(submitted)]


def p_settle(
    iterable: Iterable[InT],
    fn: Callable[[InT], OutT],
    *,
    concurrency: int,
) -> list[Settled[OutT]]:
    """Run ``fn`` over every item and capture each outcome without raising.

    The returned list is in submission order regardless of completion order.
    """

    settled: dict[int, Settled[OutT]] = {}

    def _capture(idx: int, fut: Future[OutT], _pool: ThreadPoolExecutor) -> None:
        try:
            settled[idx] = Settled(index=idx, value=fut.result())
        except Exception as e:  # noqa: BLE001
            settled[idx] = Settled(index=idx, error=e)

    submitted = _run_window(iterable, fn, concurrency=concurrency, on_done=_capture)
    return [settled[i] for i in range(submitted)]


__all__ = ["Settled", "p_map", "p_settle"]
