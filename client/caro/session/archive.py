"""Archive finished sessions: local history for guests, stats submission for accounts."""

from __future__ import annotations

import secrets
import time
from typing import TYPE_CHECKING

import structlog
from pydantic import Field

from caro.api.exceptions import ApiError
from caro.identity.models import IdentityKind
from caro.session.models import Board, Coordinate, GameResult, Score, Winner, WireModel

if TYPE_CHECKING:
    from caro.api.client import GameApiClient
    from caro.session.state import FinishedSnapshot
    from shared.storage import ClientStateStorage

logger = structlog.get_logger()


class GuestHistoryEntry(WireModel):
    """One finished game kept in the device's guest history."""

    id: str = Field(alias="_id")
    room_id: str
    room_code: str
    board_size: int
    board: Board
    winner: Winner
    winning_line: tuple[Coordinate, ...] | None
    result: GameResult
    opponent_username: str
    finished_at: str | None
    created_at: str | None
    score: Score

    @classmethod
    def from_snapshot(cls, snapshot: FinishedSnapshot) -> GuestHistoryEntry:
        return cls(
            id=f"guest_{int(time.time() * 1000)}_{secrets.token_hex(4)}",
            room_id=snapshot.room_id,
            room_code=snapshot.room_code,
            board_size=snapshot.board_size,
            board=snapshot.board,
            winner=snapshot.winner,
            winning_line=snapshot.winning_line,
            result=snapshot.result,
            opponent_username=snapshot.opponent_name,
            finished_at=snapshot.finished_at,
            created_at=snapshot.created_at,
            score=snapshot.score,
        )


class ResultArchiver:
    def __init__(self, storage: ClientStateStorage, api: GameApiClient, *, history_limit: int = 50) -> None:
        self._storage = storage
        self._api = api
        self._history_limit = history_limit

    async def archive(self, snapshot: FinishedSnapshot) -> None:
        """Persist one finished result. Failures are logged, never raised."""
        if snapshot.identity_kind == IdentityKind.GUEST:
            entry = GuestHistoryEntry.from_snapshot(snapshot)
            try:
                self._storage.append_guest_history(
                    entry.model_dump(by_alias=True, mode="json"),
                    limit=self._history_limit,
                )
            except OSError:
                logger.exception("failed to save guest history", room_id=snapshot.room_id)
                return
            logger.info("saved guest history", room_id=snapshot.room_id, result=snapshot.result)
            return

        try:
            await self._api.submit_result(
                snapshot.result,
                game_data={
                    "roomId": snapshot.room_id,
                    "roomCode": snapshot.room_code,
                    "boardSize": snapshot.board_size,
                },
            )
        except ApiError as e:
            logger.error("failed to submit game result", room_id=snapshot.room_id, error=str(e))
