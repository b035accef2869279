"""Wire-compatible models for the shared game session.

Field names are snake_case in Python and camelCase on the wire; every model
accepts either spelling on input. All models are frozen: state changes are
expressed as new instances via model_copy().
"""

from enum import StrEnum
from typing import Annotated, Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr, model_validator
from pydantic.alias_generators import to_camel

from caro.identity.models import IdentityKind

EMPTY_CELL = 0
SEATS: tuple[int, int] = (1, 2)
DEFAULT_BOARD_SIZE = 15
MIN_BOARD_SIZE = 3
MAX_BOARD_SIZE = 50

Seat = Annotated[StrictInt, Field(ge=1, le=2)]
CellValue = Annotated[StrictInt, Field(ge=0, le=2)]
Board = tuple[tuple[CellValue, ...], ...]
Winner = Seat | Literal["draw"] | None


class SessionStatus(StrEnum):
    WAITING = "waiting"
    PLAYING = "playing"
    FINISHED = "finished"
    ABANDONED = "abandoned"


TERMINAL_STATUSES = frozenset({SessionStatus.FINISHED, SessionStatus.ABANDONED})


class GameResult(StrEnum):
    WIN = "win"
    LOSS = "loss"
    DRAW = "draw"


class WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class Coordinate(WireModel):
    row: StrictInt = Field(ge=0)
    col: StrictInt = Field(ge=0)


class GameRules(WireModel):
    block_two_ends: StrictBool = False
    allow_undo: StrictBool = True
    max_undo_per_game: StrictInt = Field(default=3, ge=0)
    time_limit: StrictInt | None = Field(default=None, ge=1)


class Score(WireModel):
    player1: StrictInt = Field(default=0, ge=0)
    player2: StrictInt = Field(default=0, ge=0)

    def for_seat(self, seat: int) -> int:
        return self.player1 if seat == 1 else self.player2


class PlayerSlot(WireModel):
    """One of the two roster entries of a session."""

    identity: StrictStr = Field(alias="id", min_length=1)
    username: StrictStr = ""
    is_guest: StrictBool = False
    seat: Seat = Field(alias="playerNumber")

    @property
    def kind(self) -> IdentityKind:
        return IdentityKind.GUEST if self.is_guest else IdentityKind.ACCOUNT


def empty_board(size: int = DEFAULT_BOARD_SIZE) -> Board:
    return tuple(tuple(EMPTY_CELL for _ in range(size)) for _ in range(size))


def is_square(board: Board) -> bool:
    return len(board) > 0 and all(len(row) == len(board) for row in board)


class Session(WireModel):
    """Authoritative game instance as served by the session endpoint."""

    id: str = Field(default="", alias="_id")
    room_id: StrictStr = Field(min_length=1)
    room_code: str = ""
    board_size: StrictInt = Field(default=DEFAULT_BOARD_SIZE, ge=MIN_BOARD_SIZE, le=MAX_BOARD_SIZE)
    board: Board
    current_player: Seat = 1
    status: SessionStatus = Field(default=SessionStatus.WAITING, alias="gameStatus")
    winner: Winner = None
    winning_line: tuple[Coordinate, ...] | None = None
    rules: GameRules = Field(default_factory=GameRules)
    score: Score = Field(default_factory=Score)

    # Raw seat occupants: an account id and a guest token are never both set for one seat.
    player1: str | None = None
    player2: str | None = None
    player1_guest_id: str | None = None
    player2_guest_id: str | None = None
    player1_username: str | None = None
    player2_username: str | None = None
    player1_guest_name: str | None = None
    player2_guest_name: str | None = None

    player1_marker: str | None = None
    player2_marker: str | None = None
    last_move: Coordinate | None = None
    created_at: str | None = None
    finished_at: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_populated_players(cls, data: Any) -> Any:  # noqa: ANN401
        """Accept populated account documents ({"_id", "username"}) in player1/player2."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for seat in SEATS:
            key = f"player{seat}"
            value = data.get(key)
            if isinstance(value, dict):
                data[key] = value.get("_id") or value.get("id")
                username_key = f"player{seat}Username"
                if username_key not in data and f"player{seat}_username" not in data:
                    data[username_key] = value.get("username")
        return data

    @model_validator(mode="after")
    def _validate_board(self) -> Self:
        if len(self.board) != self.board_size or not is_square(self.board):
            raise ValueError(f"board must be {self.board_size}x{self.board_size}")
        return self

    def account_in_seat(self, seat: int) -> str | None:
        return self.player1 if seat == 1 else self.player2

    def guest_in_seat(self, seat: int) -> str | None:
        return self.player1_guest_id if seat == 1 else self.player2_guest_id

    def marker_for(self, seat: int) -> str | None:
        return self.player1_marker if seat == 1 else self.player2_marker

    def with_occupant(self, slot: PlayerSlot) -> Self:
        """Record a slot in its seat's raw fields, keeping the identity kinds apart."""
        prefix = f"player{slot.seat}"
        if slot.is_guest:
            update = {prefix: None, f"{prefix}_guest_id": slot.identity, f"{prefix}_guest_name": slot.username or None}
        else:
            update = {prefix: slot.identity, f"{prefix}_guest_id": None, f"{prefix}_username": slot.username or None}
        return self.model_copy(update=update)


def roster_from_session(session: Session) -> tuple[PlayerSlot, ...]:
    """Project the session's raw seat fields into roster slots."""
    slots: list[PlayerSlot] = []
    for seat in SEATS:
        account_id = session.account_in_seat(seat)
        guest_id = session.guest_in_seat(seat)
        if account_id:
            username = getattr(session, f"player{seat}_username") or f"Player {seat}"
            slots.append(PlayerSlot(identity=account_id, username=username, is_guest=False, seat=seat))
        elif guest_id:
            username = getattr(session, f"player{seat}_guest_name") or "Guest"
            slots.append(PlayerSlot(identity=guest_id, username=username, is_guest=True, seat=seat))
    return tuple(slots)


def result_for_seat(winner: Winner, seat: int) -> GameResult:
    if winner is None or winner == "draw":
        return GameResult.DRAW
    return GameResult.WIN if winner == seat else GameResult.LOSS
