"""Abstract push-channel transport."""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from caro.messaging.types import ClientMessage

# (event name, raw payload) -> None
EventHandler = Callable[[str, Any], None]
# connected -> Awaitable[None]
ConnectivityHandler = Callable[[bool], Awaitable[None]]


class TransportProtocol(ABC):
    """
    Interface to the bidirectional push channel.

    This abstraction allows the session store and reconnect coordinator to be
    tested without a real Socket.IO connection. Inbound events are delivered
    in arrival order to every subscribed handler.
    """

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the channel is currently up."""
        ...

    @abstractmethod
    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        """
        Send one named event to the server.
        """
        ...

    @abstractmethod
    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """
        Register an inbound event handler. Returns a callable that unsubscribes it.
        """
        ...

    @abstractmethod
    def on_connectivity(self, handler: ConnectivityHandler) -> Callable[[], None]:
        """
        Register a connectivity-change handler. Returns a callable that unsubscribes it.
        """
        ...

    @abstractmethod
    async def connect(self) -> None: ...

    @abstractmethod
    async def disconnect(self) -> None: ...

    async def send(self, message: ClientMessage) -> None:
        """
        Send a typed client message.
        """
        await self.emit(message.event, message.to_payload())
