"""Tests for the Socket.IO transport wrapper."""

import logging
from unittest.mock import AsyncMock, patch

import pytest

from caro.messaging.socketio_transport import SocketIOTransport
from caro.messaging.types import SubmitMoveMessage
from caro.tests.helpers import ROOM_ID, make_settings


@pytest.fixture
def transport():
    return SocketIOTransport(make_settings(), auth_token=lambda: "jwt-1")


class TestSocketIOTransport:
    def test_starts_disconnected(self, transport):
        assert transport.is_connected is False

    @pytest.mark.asyncio
    async def test_inbound_events_reach_subscribers(self, transport):
        received = []
        transport.subscribe(lambda name, payload: received.append((name, payload)))

        await transport._on_any("move-applied", {"turn": 2})
        await transport._on_any("undo-rejected")

        assert received == [("move-applied", {"turn": 2}), ("undo-rejected", None)]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, transport):
        received = []
        unsubscribe = transport.subscribe(lambda name, payload: received.append(name))
        unsubscribe()

        await transport._on_any("move-applied", {})

        assert received == []

    @pytest.mark.asyncio
    async def test_emit_while_disconnected_is_dropped(self, transport, caplog):
        with (
            patch.object(transport._sio, "emit", new_callable=AsyncMock) as mock_emit,
            caplog.at_level(logging.WARNING),
        ):
            await transport.send(SubmitMoveMessage(room_id=ROOM_ID, row=1, col=2))

        mock_emit.assert_not_called()
        assert "dropping emit while disconnected" in caplog.text

    @pytest.mark.asyncio
    async def test_emit_when_connected(self, transport):
        transport._sio.connected = True
        with patch.object(transport._sio, "emit", new_callable=AsyncMock) as mock_emit:
            await transport.send(SubmitMoveMessage(room_id=ROOM_ID, row=1, col=2))

        mock_emit.assert_awaited_once_with("submit-move", {"roomId": ROOM_ID, "row": 1, "col": 2})

    @pytest.mark.asyncio
    async def test_connect_passes_token_and_timeout(self, transport):
        with patch.object(transport._sio, "connect", new_callable=AsyncMock) as mock_connect:
            await transport.connect()

        mock_connect.assert_awaited_once_with(
            "http://testserver",
            auth={"token": "jwt-1"},
            transports=["websocket", "polling"],
            wait_timeout=20.0,
        )

    @pytest.mark.asyncio
    async def test_connectivity_fan_out_survives_failing_handler(self, transport, caplog):
        seen = []

        async def broken(_connected):
            raise RuntimeError("boom")

        async def recorder(connected):
            seen.append(connected)

        transport.on_connectivity(broken)
        transport.on_connectivity(recorder)

        with caplog.at_level(logging.ERROR):
            await transport._on_connect()
            await transport._on_disconnect("transport close")

        assert seen == [True, False]
        assert "connectivity handler failed" in caplog.text
