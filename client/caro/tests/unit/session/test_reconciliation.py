"""Tests for debounced session reconciliation."""

import asyncio
import logging

import pytest

from caro.api.exceptions import ApiError
from caro.session.reconciliation import ReconciliationScheduler
from caro.session.state import EMPTY_STATE
from caro.session.tasks import TaskTracker
from caro.tests.helpers import (
    GUEST_TOKEN,
    OTHER_ROOM_ID,
    ROOM_ID,
    build_store,
    slot_payload,
    two_player_session,
)
from caro.tests.mocks import MockGameApi

DELAY = 0.01


async def _settle(tasks: TaskTracker) -> None:
    """Let pending debounce timers fire and spawned fetches finish."""
    await asyncio.sleep(DELAY * 5)
    await tasks.wait_idle()


def _scheduler(api: MockGameApi, room: list[str | None], reconciled: list, missing: list) -> ReconciliationScheduler:
    return ReconciliationScheduler(
        TaskTracker(),
        fetch=api.fetch_session,
        current_room=lambda: room[0],
        on_reconciled=reconciled.append,
        on_missing=missing.append,
        delay=DELAY,
    )


class TestReconciliationScheduler:
    @pytest.mark.asyncio
    async def test_burst_coalesces_into_one_fetch(self):
        api = MockGameApi({ROOM_ID: two_player_session()})
        reconciled, missing = [], []
        scheduler = _scheduler(api, [ROOM_ID], reconciled, missing)

        for _ in range(5):
            scheduler.schedule()
        await _settle(scheduler._tasks)

        assert api.fetch_calls == [ROOM_ID]
        assert len(reconciled) == 1
        assert not scheduler.pending

    @pytest.mark.asyncio
    async def test_schedule_during_fetch_reruns_once_after_it(self):
        api = MockGameApi({ROOM_ID: two_player_session()})
        api.fetch_gate = asyncio.Event()
        reconciled, missing = [], []
        scheduler = _scheduler(api, [ROOM_ID], reconciled, missing)

        scheduler.schedule()
        await asyncio.sleep(DELAY * 5)
        assert scheduler.in_flight

        scheduler.schedule()
        scheduler.schedule()
        await asyncio.sleep(DELAY * 5)
        assert api.fetch_calls == [ROOM_ID]

        api.fetch_gate.set()
        await _settle(scheduler._tasks)
        await _settle(scheduler._tasks)

        assert api.fetch_calls == [ROOM_ID, ROOM_ID]
        assert len(reconciled) == 2

    @pytest.mark.asyncio
    async def test_invalidate_discards_in_flight_result(self, caplog):
        api = MockGameApi({ROOM_ID: two_player_session()})
        api.fetch_gate = asyncio.Event()
        reconciled, missing = [], []
        scheduler = _scheduler(api, [ROOM_ID], reconciled, missing)

        scheduler.schedule()
        await asyncio.sleep(DELAY * 5)
        scheduler.invalidate()
        api.fetch_gate.set()

        with caplog.at_level(logging.DEBUG):
            await _settle(scheduler._tasks)

        assert reconciled == []
        assert scheduler.epoch == 1
        assert "discarding stale reconciliation" in caplog.text

    @pytest.mark.asyncio
    async def test_stale_fetch_does_not_block_next_epoch(self):
        api = MockGameApi({ROOM_ID: two_player_session(), OTHER_ROOM_ID: two_player_session(roomId=OTHER_ROOM_ID)})
        api.fetch_gate = asyncio.Event()
        room: list[str | None] = [ROOM_ID]
        reconciled, missing = [], []
        scheduler = _scheduler(api, room, reconciled, missing)

        scheduler.schedule()
        await asyncio.sleep(DELAY * 5)
        scheduler.invalidate()
        room[0] = OTHER_ROOM_ID
        scheduler.schedule()
        await asyncio.sleep(DELAY * 5)

        assert api.fetch_calls == [ROOM_ID, OTHER_ROOM_ID]
        api.fetch_gate.set()
        await _settle(scheduler._tasks)

        assert [session.room_id for session in reconciled] == [OTHER_ROOM_ID]
        assert not scheduler.pending
        assert not scheduler.in_flight

    @pytest.mark.asyncio
    async def test_room_change_discards_result(self):
        api = MockGameApi({ROOM_ID: two_player_session()})
        api.fetch_gate = asyncio.Event()
        room: list[str | None] = [ROOM_ID]
        reconciled, missing = [], []
        scheduler = _scheduler(api, room, reconciled, missing)

        scheduler.schedule()
        await asyncio.sleep(DELAY * 5)
        room[0] = None
        api.fetch_gate.set()
        await _settle(scheduler._tasks)

        assert reconciled == []

    @pytest.mark.asyncio
    async def test_missing_session_reported(self):
        api = MockGameApi()
        reconciled, missing = [], []
        scheduler = _scheduler(api, [ROOM_ID], reconciled, missing)

        scheduler.schedule()
        await _settle(scheduler._tasks)

        assert missing == [ROOM_ID]

    @pytest.mark.asyncio
    async def test_api_error_is_logged_and_dropped(self, caplog):
        api = MockGameApi({ROOM_ID: two_player_session()})
        api.fetch_error = ApiError("timeout")
        reconciled, missing = [], []
        scheduler = _scheduler(api, [ROOM_ID], reconciled, missing)

        with caplog.at_level(logging.WARNING):
            scheduler.schedule()
            await _settle(scheduler._tasks)

        assert reconciled == []
        assert missing == []
        assert "failed to reconcile session" in caplog.text

    @pytest.mark.asyncio
    async def test_no_room_no_fetch(self):
        api = MockGameApi()
        scheduler = _scheduler(api, [None], [], [])

        scheduler.schedule()
        await _settle(scheduler._tasks)

        assert api.fetch_calls == []


class TestStoreReconciliation:
    @pytest.mark.asyncio
    async def test_join_without_session_installs_fetched_copy(self, harness):
        await harness.store.join_session(ROOM_ID)
        await _settle(harness.store.tasks)

        assert harness.api.fetch_calls == [ROOM_ID]
        assert harness.store.room.session is not None
        assert harness.store.room.my_seat == 1
        assert harness.store.play.is_my_turn is True

    @pytest.mark.asyncio
    async def test_roster_burst_triggers_single_fetch(self, harness):
        await harness.store.join_session(ROOM_ID, two_player_session())

        for seat, identity in [(2, "a"), (2, "b"), (2, "c")]:
            harness.transport.deliver("seat-filled", {"slot": slot_payload(identity, seat, is_guest=True)})
        await _settle(harness.store.tasks)

        assert harness.api.fetch_calls == [ROOM_ID]
        assert harness.store.room.slot_for_seat(2).identity != "c"

    @pytest.mark.asyncio
    async def test_not_found_tears_down(self, tmp_path):
        harness = build_store(tmp_path)

        await harness.store.join_session(ROOM_ID)
        await _settle(harness.store.tasks)

        assert harness.store.state is EMPTY_STATE

    @pytest.mark.asyncio
    async def test_result_arriving_after_teardown_is_dropped(self, harness):
        harness.api.fetch_gate = asyncio.Event()
        await harness.store.join_session(ROOM_ID)
        await asyncio.sleep(DELAY * 5)
        assert harness.store.scheduler.in_flight

        harness.transport.deliver("room-deleted", {"roomId": ROOM_ID})
        harness.api.fetch_gate.set()
        await _settle(harness.store.tasks)

        assert harness.store.state is EMPTY_STATE

    @pytest.mark.asyncio
    async def test_fetched_roster_seats_local_guest(self, harness):
        await harness.store.join_session(ROOM_ID)
        await _settle(harness.store.tasks)

        assert harness.store.room.slot_for_seat(1).identity == GUEST_TOKEN

    @pytest.mark.asyncio
    async def test_switching_rooms_mid_fetch_installs_new_room(self, harness):
        harness.api.sessions[OTHER_ROOM_ID] = two_player_session(roomId=OTHER_ROOM_ID)
        harness.api.fetch_gate = asyncio.Event()
        await harness.store.join_session(ROOM_ID)
        await asyncio.sleep(DELAY * 5)
        assert harness.store.scheduler.in_flight

        await harness.store.join_session(OTHER_ROOM_ID)
        await asyncio.sleep(DELAY * 5)
        harness.api.fetch_gate.set()
        await _settle(harness.store.tasks)

        assert harness.api.fetch_calls == [ROOM_ID, OTHER_ROOM_ID]
        assert harness.store.room_id == OTHER_ROOM_ID
        assert harness.store.room.session.room_id == OTHER_ROOM_ID
        assert not harness.store.scheduler.pending
