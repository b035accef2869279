"""Debounced re-fetch of the authoritative session."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from caro.api.exceptions import ApiError, SessionNotFoundError

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Awaitable, Callable

    from caro.session.models import Session
    from caro.session.tasks import TaskTracker

logger = structlog.get_logger()


class ReconciliationScheduler:
    """Coalesce bursts of roster-affecting events into one session fetch.

    schedule() (re)arms a single timer. When it fires, one fetch is started
    unless one is already in flight, in which case the timer is re-armed once
    that fetch completes. invalidate() bumps the liveness epoch: results of a
    fetch started before it are dropped, and it no longer blocks new fetches.
    In-flight fetches are never cancelled.
    """

    def __init__(
        self,
        tasks: TaskTracker,
        *,
        fetch: Callable[[str], Awaitable[Session]],
        current_room: Callable[[], str | None],
        on_reconciled: Callable[[Session], None],
        on_missing: Callable[[str], None],
        delay: float = 0.15,
    ) -> None:
        self._tasks = tasks
        self._fetch = fetch
        self._current_room = current_room
        self._on_reconciled = on_reconciled
        self._on_missing = on_missing
        self._delay = delay
        self._timer: asyncio.Task[None] | None = None
        self._in_flight: asyncio.Task[None] | None = None
        self._pending = False
        self._rerun = False
        self._epoch = 0

    @property
    def pending(self) -> bool:
        return self._pending

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    @property
    def epoch(self) -> int:
        return self._epoch

    def schedule(self) -> None:
        self._pending = True
        self._tasks.cancel(self._timer)
        self._timer = self._tasks.call_later(self._delay, self._fire)

    def invalidate(self) -> None:
        """Forget pending work and make any in-flight result stale."""
        self._epoch += 1
        self._tasks.cancel(self._timer)
        self._timer = None
        self._in_flight = None
        self._pending = False
        self._rerun = False

    def _fire(self) -> None:
        self._timer = None
        if not self._pending:
            return
        if self._in_flight is not None:
            self._rerun = True
            return
        self._pending = False
        room_id = self._current_room()
        if room_id is None:
            return
        self._in_flight = self._tasks.spawn(self._run(room_id, self._epoch), name=f"reconcile-{room_id}")

    async def _run(self, room_id: str, epoch: int) -> None:
        try:
            await self._reconcile(room_id, epoch)
        finally:
            # A stale run must not clear or re-arm work owned by a newer epoch.
            if epoch == self._epoch:
                self._in_flight = None
                if self._rerun:
                    self._rerun = False
                    self.schedule()

    async def _reconcile(self, room_id: str, epoch: int) -> None:
        try:
            session = await self._fetch(room_id)
        except SessionNotFoundError:
            if self._is_live(room_id, epoch):
                logger.warning("session no longer exists", room_id=room_id)
                self._on_missing(room_id)
            return
        except ApiError as e:
            logger.warning("failed to reconcile session", room_id=room_id, error=str(e))
            return

        if not self._is_live(room_id, epoch):
            logger.debug("discarding stale reconciliation", room_id=room_id)
            return
        self._on_reconciled(session)

    def _is_live(self, room_id: str, epoch: int) -> bool:
        return epoch == self._epoch and self._current_room() == room_id
