"""Builders shared by the client tests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from caro.client.settings import ClientSettings
from caro.identity.provider import IdentityProvider
from caro.session.archive import ResultArchiver
from caro.session.models import Session
from caro.session.store import SessionStore
from caro.tests.mocks import MockGameApi, MockTransport
from shared.storage import LocalStateStorage

if TYPE_CHECKING:
    from pathlib import Path

    from caro.identity.models import AccountSession

ROOM_ID = "room-1"
OTHER_ROOM_ID = "room-2"
GUEST_TOKEN = "guest-token-1"
OPPONENT_GUEST_TOKEN = "guest-token-2"
ACCOUNT_ID = "user-1"
OPPONENT_ACCOUNT_ID = "user-2"
BOARD_SIZE = 15


def make_board(size: int = BOARD_SIZE, cells: dict[tuple[int, int], int] | None = None) -> list[list[int]]:
    board = [[0] * size for _ in range(size)]
    for (row, col), value in (cells or {}).items():
        board[row][col] = value
    return board


def session_payload(**overrides: Any) -> dict[str, Any]:  # noqa: ANN401
    """Wire (camelCase) session document with a local guest in seat 1."""
    payload: dict[str, Any] = {
        "_id": "session-1",
        "roomId": ROOM_ID,
        "roomCode": "ABC123",
        "boardSize": BOARD_SIZE,
        "board": make_board(),
        "currentPlayer": 1,
        "gameStatus": "waiting",
        "winner": None,
        "rules": {"blockTwoEnds": False, "allowUndo": True, "maxUndoPerGame": 3, "timeLimit": None},
        "score": {"player1": 0, "player2": 0},
        "player1": None,
        "player1GuestId": GUEST_TOKEN,
        "player1GuestName": "Guest",
        "player2": None,
        "player2GuestId": None,
        "createdAt": "2026-01-01T00:00:00Z",
        "finishedAt": None,
    }
    payload.update(overrides)
    return payload


def make_session(**overrides: Any) -> Session:  # noqa: ANN401
    return Session.model_validate(session_payload(**overrides))


def two_player_session(**overrides: Any) -> Session:  # noqa: ANN401
    """Local guest in seat 1, opponent account in seat 2, game in progress."""
    values: dict[str, Any] = {
        "gameStatus": "playing",
        "player2": {"_id": OPPONENT_ACCOUNT_ID, "username": "bob"},
    }
    values.update(overrides)
    return make_session(**values)


def slot_payload(identity: str, seat: int, *, is_guest: bool, username: str = "") -> dict[str, Any]:
    return {"id": identity, "username": username or identity, "isGuest": is_guest, "playerNumber": seat}


def make_settings(**overrides: Any) -> ClientSettings:  # noqa: ANN401
    values: dict[str, Any] = {
        "api_base_url": "http://testserver/api",
        "socket_url": "http://testserver",
        "reconciliation_delay_seconds": 0.01,
        "finish_grace_seconds": 0.01,
    }
    values.update(overrides)
    return ClientSettings(**values)


@dataclass
class StoreHarness:
    store: SessionStore
    transport: MockTransport
    api: MockGameApi
    identity: IdentityProvider
    storage: LocalStateStorage


def build_store(
    state_dir: Path,
    *,
    account: AccountSession | None = None,
    settings: ClientSettings | None = None,
    sessions: dict[str, Session] | None = None,
    guest_token: str = GUEST_TOKEN,
    clock: Any = None,  # noqa: ANN401
) -> StoreHarness:
    """Wire a SessionStore to in-memory collaborators, attached to the transport."""
    settings = settings or make_settings()
    storage = LocalStateStorage(state_dir)
    storage.save_guest_token(guest_token)
    identity = IdentityProvider(storage, account=account)
    transport = MockTransport()
    api = MockGameApi(sessions)
    archiver = ResultArchiver(storage, api, history_limit=settings.guest_history_limit)  # type: ignore[arg-type]
    kwargs = {"clock": clock} if clock is not None else {}
    store = SessionStore(transport, api, identity, archiver, settings, **kwargs)  # type: ignore[arg-type]
    store.attach()
    return StoreHarness(store=store, transport=transport, api=api, identity=identity, storage=storage)
