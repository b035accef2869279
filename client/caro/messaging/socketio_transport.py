"""Socket.IO implementation of the push-channel transport."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import socketio
import structlog

from caro.messaging.protocol import ConnectivityHandler, EventHandler, TransportProtocol

if TYPE_CHECKING:
    from collections.abc import Callable

    from caro.client.settings import ClientSettings

logger = structlog.get_logger()


class SocketIOTransport(TransportProtocol):
    """Wraps a python-socketio AsyncClient with built-in reconnection.

    Every inbound event is forwarded through a catch-all handler, so the
    transport stays ignorant of the event vocabulary. Connect and disconnect
    notifications fan out to the connectivity handlers.
    """

    def __init__(self, settings: ClientSettings, auth_token: Callable[[], str | None] | None = None) -> None:
        self._settings = settings
        self._auth_token = auth_token
        self._handlers: list[EventHandler] = []
        self._connectivity_handlers: list[ConnectivityHandler] = []
        self._sio = socketio.AsyncClient(
            reconnection=True,
            reconnection_attempts=settings.reconnection_attempts,
            reconnection_delay=settings.reconnection_delay_seconds,
            reconnection_delay_max=settings.reconnection_delay_max_seconds,
            randomization_factor=settings.randomization_factor,
            logger=False,
            engineio_logger=False,
        )
        self._sio.on("connect", self._on_connect)
        self._sio.on("disconnect", self._on_disconnect)
        self._sio.on("*", self._on_any)

    @property
    def is_connected(self) -> bool:
        return bool(self._sio.connected)

    async def connect(self) -> None:
        if self._sio.connected:
            return
        token = self._auth_token() if self._auth_token is not None else None
        await self._sio.connect(
            self._settings.socket_url,
            auth={"token": token} if token else None,
            transports=["websocket", "polling"],
            wait_timeout=self._settings.connect_timeout_seconds,
        )

    async def disconnect(self) -> None:
        await self._sio.disconnect()

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        if not self._sio.connected:
            logger.warning("dropping emit while disconnected", event_name=event)
            return
        await self._sio.emit(event, payload)

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def on_connectivity(self, handler: ConnectivityHandler) -> Callable[[], None]:
        self._connectivity_handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._connectivity_handlers:
                self._connectivity_handlers.remove(handler)

        return unsubscribe

    async def _on_connect(self) -> None:
        logger.info("socket connected")
        await self._notify_connectivity(connected=True)

    async def _on_disconnect(self, *_args: Any) -> None:
        logger.info("socket disconnected")
        await self._notify_connectivity(connected=False)

    async def _on_any(self, event: str, *args: Any) -> None:
        payload = args[0] if args else None
        for handler in list(self._handlers):
            handler(event, payload)

    async def _notify_connectivity(self, *, connected: bool) -> None:
        handlers = list(self._connectivity_handlers)
        results = await asyncio.gather(*(handler(connected) for handler in handlers), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error("connectivity handler failed", error=str(result))
