"""Async concurrency primitives for pipeline runs and matrix fan-out."""

from __future__ import annotations

import asyncio
import inspect
import signal
from contextlib import suppress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable

T = TypeVar("T")

_DEFAULT_CANCEL_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``.

    The first ``cancel`` call wins and fixes ``reason``; later calls are no-ops.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError(f"operation cancelled: {self._reason}")


@dataclass(slots=True)
class WorkerPool(Generic[T]):
    """Run coroutines with bounded concurrency and yield results as they finish."""

    max_concurrency: int
    cancel_token: CancellationToken | None = None
    _token: CancellationToken = field(init=False, repr=False)
    _semaphore: asyncio.Semaphore = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        self._token = self.cancel_token or CancellationToken()
        self._semaphore = asyncio.Semaphore(self.max_concurrency)

    async def run(self, coroutines: Iterable[Awaitable[T]]) -> AsyncIterator[T]:
        tasks: set[asyncio.Task[T]] = set()

        for coroutine in coroutines:
            if self._token.is_cancelled:
                _close_unscheduled_coroutine(coroutine)
                continue
            tasks.add(asyncio.create_task(self._run_one(coroutine)))

        try:
            while tasks:
                done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
                tasks = set(pending)

                for task in done:
                    if task.cancelled():
                        raise asyncio.CancelledError("worker task cancelled")
                    exc = task.exception()
                    if exc is not None:
                        await self._cancel_all(tasks)
                        raise exc
                    yield task.result()
        except asyncio.CancelledError:
            await self._cancel_all(tasks)
            raise

    async def _run_one(self, coroutine: Awaitable[T]) -> T:
        async with self._semaphore:
            return await coroutine

    async def _cancel_all(self, tasks: set[asyncio.Task[T]]) -> None:
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


async def run_with_timeout(
    coroutine: Awaitable[T],
    timeout_seconds: float | None,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Run ``coroutine`` with an optional deadline and cooperative cancellation.

    Raises ``TimeoutError`` when the deadline expires and ``asyncio.CancelledError``
    when ``cancel_token`` fires. In both cases the inner task is cancelled and awaited
    before this function returns, so cleanup in the inner coroutine has completed.
    """
    if timeout_seconds is not None and timeout_seconds <= 0:
        _close_unscheduled_coroutine(coroutine)
        raise ValueError("timeout_seconds must be > 0")

    token = cancel_token or CancellationToken()
    if token.is_cancelled:
        _close_unscheduled_coroutine(coroutine)
        raise asyncio.CancelledError(f"operation cancelled: {token.reason}")

    task: asyncio.Task[T] = asyncio.create_task(_await_value(coroutine))
    cancel_wait_task = asyncio.create_task(token.wait())

    try:
        done, _ = await asyncio.wait(
            {task, cancel_wait_task},
            timeout=timeout_seconds,
            return_when=asyncio.FIRST_COMPLETED,
        )

        if task in done:
            return await task

        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

        if cancel_wait_task in done and token.is_cancelled:
            raise asyncio.CancelledError(f"operation cancelled: {token.reason}")
        raise TimeoutError(f"operation timed out after {timeout_seconds} seconds")
    finally:
        if not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        cancel_wait_task.cancel()
        with suppress(asyncio.CancelledError):
            await cancel_wait_task


def install_signal_cancellation(
    token: CancellationToken,
    signals: Iterable[signal.Signals] = _DEFAULT_CANCEL_SIGNALS,
) -> Callable[[], None]:
    """Route process signals to ``token.cancel`` on the running loop.

    Returns a callable that removes the handlers again. Platforms without
    ``loop.add_signal_handler`` keep their default signal behavior.
    """
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for signum in signals:
        try:
            loop.add_signal_handler(signum, token.cancel, signum.name)
        except (NotImplementedError, RuntimeError):
            continue
        installed.append(signum)

    def remove() -> None:
        for signum in installed:
            loop.remove_signal_handler(signum)

    return remove


async def _await_value(awaitable: Awaitable[T]) -> T:
    return await awaitable


def _close_unscheduled_coroutine(awaitable: Awaitable[object]) -> None:
    # Close raw coroutine objects that never got scheduled so CPython does not
    # emit "coroutine was never awaited" at GC time.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = [
    "CancellationToken",
    "WorkerPool",
    "install_signal_cancellation",
    "run_with_timeout",
]
