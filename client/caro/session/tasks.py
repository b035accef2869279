"""Track the timers and background tasks owned by one session store."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

logger = structlog.get_logger()


class TaskTracker:
    """Manage timer and task lifecycle for a session store.

    Timers (call_later) are cancelled on teardown. Spawned tasks such as an
    in-flight fetch are never cancelled here: their owners discard stale
    results instead.
    """

    def __init__(self) -> None:
        self._timers: set[asyncio.Task[None]] = set()
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending_timers(self) -> int:
        return len(self._timers)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.Task[None]:
        """Run callback once after delay seconds unless cancelled first."""
        task = asyncio.create_task(self._run_timer(delay, callback))
        self._timers.add(task)
        task.add_done_callback(self._on_timer_done)
        return task

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def cancel(self, task: asyncio.Task[Any] | None) -> None:
        if task is not None and not task.done():
            task.cancel()

    def cancel_timers(self) -> None:
        """Cancel every pending timer without touching spawned tasks."""
        for timer in list(self._timers):
            timer.cancel()
        self._timers.clear()

    async def wait_idle(self) -> None:
        """Wait until no spawned task is outstanding, including ones started meanwhile."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _run_timer(self, delay: float, callback: Callable[[], None]) -> None:
        await asyncio.sleep(delay)
        current = asyncio.current_task()
        if current is not None:
            self._timers.discard(current)  # type: ignore[arg-type]
        callback()

    def _on_timer_done(self, task: asyncio.Task[None]) -> None:
        self._timers.discard(task)
        self._log_failure(task)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        self._log_failure(task)

    @staticmethod
    def _log_failure(task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background task failed", task=task.get_name(), error=str(exc), exc_info=exc)
