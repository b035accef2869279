from uuid import uuid4

import structlog

from caro.identity.models import AccountSession, LocalIdentity
from shared.storage import ClientStateStorage

logger = structlog.get_logger()


class IdentityProvider:
    """Owns the device guest token, the guest display name and the logged-in account.

    The guest token is created on first need and persisted; it is never
    regenerated while storage still holds it.
    """

    def __init__(self, storage: ClientStateStorage, account: AccountSession | None = None) -> None:
        self._storage = storage
        self._account = account
        self._guest_token: str | None = None
        self._guest_name: str | None = None
        self._guest_name_loaded = False

    @property
    def account(self) -> AccountSession | None:
        return self._account

    @property
    def is_authenticated(self) -> bool:
        return self._account is not None

    def set_account(self, account: AccountSession | None) -> None:
        """Record a login (or logout with None)."""
        self._account = account
        logger.info("account changed", authenticated=account is not None)

    def guest_token(self) -> str:
        if self._guest_token is None:
            token = self._storage.load_guest_token()
            if token is None:
                token = str(uuid4())
                self._storage.save_guest_token(token)
                logger.info("generated guest token")
            self._guest_token = token
        return self._guest_token

    def guest_name(self) -> str | None:
        if not self._guest_name_loaded:
            self._guest_name = self._storage.load_guest_name()
            self._guest_name_loaded = True
        return self._guest_name

    def set_guest_name(self, name: str) -> None:
        self._storage.save_guest_name(name)
        self._guest_name = name
        self._guest_name_loaded = True

    def current(self) -> LocalIdentity:
        if self._account is not None:
            return LocalIdentity.account(self._account.user_id)
        return LocalIdentity.guest(self.guest_token(), self.guest_name())

    def auth_token(self) -> str | None:
        return self._account.token if self._account is not None else None
