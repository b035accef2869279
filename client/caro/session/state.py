"""Immutable local projection of the shared session, split by mutation frequency.

- RoomState changes on join/leave/reseat/reconciliation.
- PlayState changes on every move and undo event.

Both live in one SyncState so a transition can update them together, while
listeners subscribe to each slice separately.
"""

from enum import StrEnum

from pydantic import BaseModel, Field

from caro.identity.models import IdentityKind
from caro.session.models import (
    Board,
    Coordinate,
    GameResult,
    PlayerSlot,
    Score,
    Session,
    Winner,
    result_for_seat,
)
from caro.session.undo import UndoState


class RoomState(BaseModel, frozen=True):
    room_id: str | None = None
    session: Session | None = None
    roster: tuple[PlayerSlot, ...] = ()
    my_seat: int | None = None
    # Set once the finish of the current game has been snapshotted for archival.
    finish_captured: bool = False

    def slot_for_seat(self, seat: int | None) -> PlayerSlot | None:
        return next((slot for slot in self.roster if slot.seat == seat), None)

    @property
    def opponent(self) -> PlayerSlot | None:
        return next((slot for slot in self.roster if slot.seat != self.my_seat), None)


class PlayState(BaseModel, frozen=True):
    current_player: int = 1
    is_my_turn: bool = False
    last_move: Coordinate | None = None
    undo: UndoState = Field(default_factory=UndoState)


class SyncState(BaseModel, frozen=True):
    room: RoomState = Field(default_factory=RoomState)
    play: PlayState = Field(default_factory=PlayState)


EMPTY_STATE = SyncState()


class FinishedSnapshot(BaseModel, frozen=True):
    """Final result captured when the finish event is folded, archived later."""

    room_id: str
    room_code: str
    board_size: int
    board: Board
    winner: Winner
    winning_line: tuple[Coordinate, ...] | None
    score: Score
    created_at: str | None
    finished_at: str | None
    my_seat: int
    opponent_name: str
    identity_kind: IdentityKind

    @property
    def result(self) -> GameResult:
        return result_for_seat(self.winner, self.my_seat)


class Reaction(BaseModel, frozen=True):
    id: str
    emoji: str
    from_name: str
    from_seat: int
    is_self: bool
    received_at: float  # time.monotonic()


class NoticeKind(StrEnum):
    MOVE_REJECTED = "move_rejected"
    SESSION_ERROR = "session_error"
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"


class Notice(BaseModel, frozen=True):
    """A user-facing message produced by a rejected action or server error."""

    kind: NoticeKind
    message: str
    details: tuple[str, ...] = ()
