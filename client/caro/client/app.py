from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from caro.api.client import GameApiClient
from caro.client.settings import ClientSettings
from caro.identity.provider import IdentityProvider
from caro.messaging.socketio_transport import SocketIOTransport
from caro.session.archive import ResultArchiver
from caro.session.reconnect import ReconnectCoordinator
from caro.session.store import SessionStore
from shared.logging import setup_logging
from shared.storage import LocalStateStorage

if TYPE_CHECKING:
    from caro.identity.models import AccountSession
    from caro.messaging.protocol import TransportProtocol
    from shared.storage import ClientStateStorage

logger = structlog.get_logger()


class CaroClient:
    """A wired client: store, transport, identity and reconnect handling."""

    def __init__(
        self,
        settings: ClientSettings,
        transport: TransportProtocol,
        identity: IdentityProvider,
        store: SessionStore,
        reconnect: ReconnectCoordinator,
    ) -> None:
        self.settings = settings
        self.transport = transport
        self.identity = identity
        self.store = store
        self.reconnect = reconnect

    async def start(self) -> None:
        await self.transport.connect()
        logger.info("client started")

    async def stop(self) -> None:
        self.reconnect.detach()
        await self.store.close()
        await self.transport.disconnect()
        logger.info("client stopped")


def create_client(
    settings: ClientSettings | None = None,
    *,
    transport: TransportProtocol | None = None,
    api: GameApiClient | None = None,
    storage: ClientStateStorage | None = None,
    account: AccountSession | None = None,
) -> CaroClient:
    if settings is None:
        settings = ClientSettings()
        setup_logging(log_dir=settings.log_dir, level=settings.log_level, log_format=settings.log_format)

    if storage is None:
        storage = LocalStateStorage(settings.state_dir)
    identity = IdentityProvider(storage, account=account)

    if api is None:
        api = GameApiClient(
            settings.api_base_url,
            timeout=settings.request_timeout_seconds,
            auth_token=identity.auth_token,
        )
    if transport is None:
        transport = SocketIOTransport(settings, auth_token=identity.auth_token)

    archiver = ResultArchiver(storage, api, history_limit=settings.guest_history_limit)
    store = SessionStore(transport, api, identity, archiver, settings)
    store.attach()
    reconnect = ReconnectCoordinator(transport, store)
    reconnect.attach()

    logger.info("client ready")
    return CaroClient(settings, transport, identity, store, reconnect)
