"""Re-announce room presence after the push channel comes back."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from caro.messaging.types import JoinRoomMessage

if TYPE_CHECKING:
    from collections.abc import Callable

    from caro.messaging.protocol import TransportProtocol
    from caro.session.store import SessionStore

logger = structlog.get_logger()


class ReconnectCoordinator:
    """Emit one join-room per disconnected -> connected transition while a room is held.

    It does not fetch state: the server answers the join with a fresh roster
    that flows through the store like any other event.
    """

    def __init__(self, transport: TransportProtocol, store: SessionStore) -> None:
        self._transport = transport
        self._store = store
        self._connected = transport.is_connected
        self._unsubscribe: Callable[[], None] | None = None

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._transport.on_connectivity(self.on_connectivity)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def on_connectivity(self, connected: bool) -> None:  # noqa: FBT001
        was_connected = self._connected
        self._connected = connected
        if not connected or was_connected:
            return

        room_id = self._store.room_id
        identity = self._store.announced_identity
        if room_id is None or identity is None:
            return
        logger.info("reconnected, rejoining room", room_id=room_id)
        await self._transport.send(JoinRoomMessage(room_id=room_id, identity=identity.value, is_guest=identity.is_guest))
