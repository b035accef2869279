from enum import StrEnum
from typing import Self

from pydantic import BaseModel, Field


class IdentityKind(StrEnum):
    GUEST = "guest"
    ACCOUNT = "account"


class AccountSession(BaseModel, frozen=True):
    """A logged-in account as known to the client."""

    user_id: str = Field(min_length=1)
    username: str = ""
    token: str | None = None  # bearer token for HTTP calls and the socket handshake


class LocalIdentity(BaseModel, frozen=True):
    """The identity this device plays under.

    Either an authenticated account id or the persisted guest token. Only a
    guest identity carries an editable display name.
    """

    kind: IdentityKind
    value: str = Field(min_length=1)
    display_name: str | None = None

    @property
    def is_guest(self) -> bool:
        return self.kind == IdentityKind.GUEST

    @classmethod
    def guest(cls, token: str, display_name: str | None = None) -> Self:
        return cls(kind=IdentityKind.GUEST, value=token, display_name=display_name)

    @classmethod
    def account(cls, user_id: str) -> Self:
        return cls(kind=IdentityKind.ACCOUNT, value=user_id)
