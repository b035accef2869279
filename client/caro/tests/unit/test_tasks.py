import asyncio

import pytest

from caro.session.tasks import TaskTracker


async def _fail() -> None:
    raise RuntimeError("boom")


class TestTaskTrackerTimers:
    @pytest.mark.asyncio
    async def test_call_later_fires_once(self):
        tracker = TaskTracker()
        calls = []

        tracker.call_later(0.01, lambda: calls.append("fired"))
        assert tracker.pending_timers == 1
        await asyncio.sleep(0.05)

        assert calls == ["fired"]
        assert tracker.pending_timers == 0

    @pytest.mark.asyncio
    async def test_cancel_timers_prevents_callback(self):
        tracker = TaskTracker()
        calls = []

        tracker.call_later(0.01, lambda: calls.append("fired"))
        tracker.cancel_timers()
        await asyncio.sleep(0.05)

        assert calls == []
        assert tracker.pending_timers == 0

    @pytest.mark.asyncio
    async def test_cancel_timers_leaves_spawned_tasks(self):
        tracker = TaskTracker()
        gate = asyncio.Event()
        task = tracker.spawn(gate.wait())

        tracker.cancel_timers()
        gate.set()
        await tracker.wait_idle()

        assert task.done()
        assert not task.cancelled()


class TestTaskTrackerTasks:
    @pytest.mark.asyncio
    async def test_wait_idle_includes_tasks_spawned_meanwhile(self):
        tracker = TaskTracker()
        results = []

        async def second():
            results.append("second")

        async def first():
            await asyncio.sleep(0)
            tracker.spawn(second())
            results.append("first")

        tracker.spawn(first())
        await tracker.wait_idle()

        assert results == ["first", "second"]
        assert tracker.pending_tasks == 0

    @pytest.mark.asyncio
    async def test_failed_task_is_logged(self, caplog):
        tracker = TaskTracker()

        tracker.spawn(_fail(), name="failing")
        await tracker.wait_idle()

        assert "background task failed" in caplog.text
