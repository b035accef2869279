"""Inbound server events.

Every event name maps to one pydantic model. Payloads come from an
uncontrolled sender, so parse_server_event() never raises: an unknown name or
a payload that fails validation decodes to None and the caller drops it.
"""

from enum import StrEnum
from typing import Annotated, Any, Literal, Self

import structlog
from pydantic import (
    AfterValidator,
    AliasChoices,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
    model_validator,
)

from caro.session.models import (
    Board,
    Coordinate,
    PlayerSlot,
    Score,
    Seat,
    SessionStatus,
    Winner,
    WireModel,
    is_square,
)

logger = structlog.get_logger()


class ServerEventType(StrEnum):
    ROSTER_JOINED = "roster-joined"
    SEAT_FILLED = "seat-filled"
    SEAT_VACATED = "seat-vacated"
    ROOM_DELETED = "room-deleted"
    MOVE_APPLIED = "move-applied"
    MOVE_REJECTED = "move-rejected"
    SCORE_UPDATED = "score-updated"
    UNDO_REQUESTED = "undo-requested"
    UNDO_APPROVED = "undo-approved"
    UNDO_REJECTED = "undo-rejected"
    SESSION_STARTED = "session-started"
    SESSION_RESET = "session-reset"
    SESSION_FINISHED = "session-finished"
    SESSION_ABANDONED = "session-abandoned"
    SESSION_ERROR = "session-error"
    MARKER_UPDATED = "marker-updated"
    GUEST_RENAMED = "guest-renamed"
    REACTION_RECEIVED = "reaction-received"
    ACHIEVEMENT_UNLOCKED = "achievement-unlocked"


def _require_square(board: Board) -> Board:
    if not is_square(board):
        raise ValueError("board must be a non-empty square matrix")
    return board


SquareBoard = Annotated[Board, AfterValidator(_require_square)]


def _strip_non_empty(value: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValueError("must not be blank")
    return stripped


def _account_ref(value: Any) -> Any:  # noqa: ANN401
    """Populated account documents carry the id under _id."""
    if isinstance(value, dict):
        return value.get("_id") or value.get("id")
    return value


class RosterJoinedEvent(WireModel):
    type: Literal[ServerEventType.ROSTER_JOINED] = ServerEventType.ROSTER_JOINED
    room_id: StrictStr = Field(min_length=1)
    roster: tuple[PlayerSlot, ...] = Field(validation_alias=AliasChoices("roster", "players"))
    status: SessionStatus | None = Field(default=None, validation_alias=AliasChoices("status", "gameStatus"))
    turn: Seat | None = Field(default=None, validation_alias=AliasChoices("turn", "currentPlayer"))

    @model_validator(mode="after")
    def _unique_seats(self) -> Self:
        seats = [slot.seat for slot in self.roster]
        if len(seats) != len(set(seats)):
            raise ValueError("roster seats must be unique")
        return self


class SeatFilledEvent(WireModel):
    type: Literal[ServerEventType.SEAT_FILLED] = ServerEventType.SEAT_FILLED
    slot: PlayerSlot = Field(validation_alias=AliasChoices("slot", "player"))


class SeatPatch(WireModel):
    """Seat occupants and status sent along with a host reseat."""

    player1: StrictStr | None = None
    player1_guest_id: StrictStr | None = None
    player2: StrictStr | None = None
    player2_guest_id: StrictStr | None = None
    status: SessionStatus = Field(validation_alias=AliasChoices("status", "gameStatus"))
    current_player: Seat = Field(validation_alias=AliasChoices("currentPlayer", "turn"))

    @field_validator("player1", "player2", mode="before")
    @classmethod
    def _flatten_account(cls, value: Any) -> Any:  # noqa: ANN401
        return _account_ref(value)


class SeatVacatedEvent(WireModel):
    type: Literal[ServerEventType.SEAT_VACATED] = ServerEventType.SEAT_VACATED
    identity: StrictStr | None = Field(default=None, validation_alias=AliasChoices("identity", "playerId"))
    seat: Seat | None = Field(default=None, validation_alias=AliasChoices("seat", "playerNumber"))
    room_id: StrictStr | None = None
    host_transferred: StrictBool = False
    session_reset: StrictBool = Field(default=False, validation_alias=AliasChoices("sessionReset", "gameReset"))
    session: SeatPatch | None = Field(default=None, validation_alias=AliasChoices("session", "game"))


class RoomDeletedEvent(WireModel):
    type: Literal[ServerEventType.ROOM_DELETED] = ServerEventType.ROOM_DELETED
    room_id: StrictStr = Field(min_length=1)


class MoveRecord(WireModel):
    row: StrictInt = Field(ge=0)
    col: StrictInt = Field(ge=0)
    player: Seat | None = None
    move_number: StrictInt | None = Field(default=None, ge=0)

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(row=self.row, col=self.col)


class MoveAppliedEvent(WireModel):
    type: Literal[ServerEventType.MOVE_APPLIED] = ServerEventType.MOVE_APPLIED
    move: MoveRecord | None = None
    board: SquareBoard
    turn: Seat = Field(validation_alias=AliasChoices("turn", "currentPlayer"))


class MoveRejectedEvent(WireModel):
    type: Literal[ServerEventType.MOVE_REJECTED] = ServerEventType.MOVE_REJECTED
    valid: StrictBool
    message: StrictStr = ""


class ScoreUpdatedEvent(WireModel):
    type: Literal[ServerEventType.SCORE_UPDATED] = ServerEventType.SCORE_UPDATED
    score: Score


class UndoRequestedEvent(WireModel):
    type: Literal[ServerEventType.UNDO_REQUESTED] = ServerEventType.UNDO_REQUESTED
    move_number: StrictInt = Field(ge=0)
    requested_by: Seat


class UndoApprovedEvent(WireModel):
    type: Literal[ServerEventType.UNDO_APPROVED] = ServerEventType.UNDO_APPROVED
    move_number: StrictInt = Field(ge=0)
    board: SquareBoard
    turn: Seat | None = Field(default=None, validation_alias=AliasChoices("turn", "currentPlayer"))


class UndoRejectedEvent(WireModel):
    type: Literal[ServerEventType.UNDO_REJECTED] = ServerEventType.UNDO_REJECTED
    move_number: StrictInt | None = None


class SessionStartedEvent(WireModel):
    type: Literal[ServerEventType.SESSION_STARTED] = ServerEventType.SESSION_STARTED
    turn: Seat = Field(validation_alias=AliasChoices("turn", "currentPlayer"))


class SessionResetEvent(WireModel):
    type: Literal[ServerEventType.SESSION_RESET] = ServerEventType.SESSION_RESET
    board: SquareBoard
    turn: Seat = Field(validation_alias=AliasChoices("turn", "currentPlayer"))
    status: SessionStatus = Field(validation_alias=AliasChoices("status", "gameStatus"))
    winner: None = None


class SessionFinishedEvent(WireModel):
    type: Literal[ServerEventType.SESSION_FINISHED] = ServerEventType.SESSION_FINISHED
    winner: Winner
    reason: StrictStr = ""
    winning_line: tuple[Coordinate, ...] | None = None
    score: Score | None = None


class SessionAbandonedEvent(WireModel):
    type: Literal[ServerEventType.SESSION_ABANDONED] = ServerEventType.SESSION_ABANDONED
    room_id: StrictStr | None = None
    reason: StrictStr = ""


class SessionErrorEvent(WireModel):
    type: Literal[ServerEventType.SESSION_ERROR] = ServerEventType.SESSION_ERROR
    message: StrictStr


class MarkerUpdatedEvent(WireModel):
    type: Literal[ServerEventType.MARKER_UPDATED] = ServerEventType.MARKER_UPDATED
    seat: Seat = Field(validation_alias=AliasChoices("seat", "playerNumber"))
    marker: Annotated[StrictStr, AfterValidator(_strip_non_empty)]


class GuestRenamedEvent(WireModel):
    type: Literal[ServerEventType.GUEST_RENAMED] = ServerEventType.GUEST_RENAMED
    seat: Seat = Field(validation_alias=AliasChoices("seat", "playerNumber"))
    name: Annotated[StrictStr, AfterValidator(_strip_non_empty)] = Field(
        validation_alias=AliasChoices("name", "guestName"),
    )
    identity: StrictStr = Field(min_length=1, validation_alias=AliasChoices("identity", "guestId"))


class ReactionReceivedEvent(WireModel):
    type: Literal[ServerEventType.REACTION_RECEIVED] = ServerEventType.REACTION_RECEIVED
    from_seat: Seat = Field(validation_alias=AliasChoices("fromSeat", "fromPlayerNumber"))
    emoji: StrictStr = Field(min_length=1)
    from_name: StrictStr = Field(min_length=1)


class AchievementUnlockedEvent(WireModel):
    type: Literal[ServerEventType.ACHIEVEMENT_UNLOCKED] = ServerEventType.ACHIEVEMENT_UNLOCKED
    player_id: StrictStr = Field(min_length=1)
    achievement_ids: tuple[StrictStr, ...] = ()


ServerEvent = (
    RosterJoinedEvent
    | SeatFilledEvent
    | SeatVacatedEvent
    | RoomDeletedEvent
    | MoveAppliedEvent
    | MoveRejectedEvent
    | ScoreUpdatedEvent
    | UndoRequestedEvent
    | UndoApprovedEvent
    | UndoRejectedEvent
    | SessionStartedEvent
    | SessionResetEvent
    | SessionFinishedEvent
    | SessionAbandonedEvent
    | SessionErrorEvent
    | MarkerUpdatedEvent
    | GuestRenamedEvent
    | ReactionReceivedEvent
    | AchievementUnlockedEvent
)

_EVENT_MODELS: dict[ServerEventType, type[WireModel]] = {
    ServerEventType.ROSTER_JOINED: RosterJoinedEvent,
    ServerEventType.SEAT_FILLED: SeatFilledEvent,
    ServerEventType.SEAT_VACATED: SeatVacatedEvent,
    ServerEventType.ROOM_DELETED: RoomDeletedEvent,
    ServerEventType.MOVE_APPLIED: MoveAppliedEvent,
    ServerEventType.MOVE_REJECTED: MoveRejectedEvent,
    ServerEventType.SCORE_UPDATED: ScoreUpdatedEvent,
    ServerEventType.UNDO_REQUESTED: UndoRequestedEvent,
    ServerEventType.UNDO_APPROVED: UndoApprovedEvent,
    ServerEventType.UNDO_REJECTED: UndoRejectedEvent,
    ServerEventType.SESSION_STARTED: SessionStartedEvent,
    ServerEventType.SESSION_RESET: SessionResetEvent,
    ServerEventType.SESSION_FINISHED: SessionFinishedEvent,
    ServerEventType.SESSION_ABANDONED: SessionAbandonedEvent,
    ServerEventType.SESSION_ERROR: SessionErrorEvent,
    ServerEventType.MARKER_UPDATED: MarkerUpdatedEvent,
    ServerEventType.GUEST_RENAMED: GuestRenamedEvent,
    ServerEventType.REACTION_RECEIVED: ReactionReceivedEvent,
    ServerEventType.ACHIEVEMENT_UNLOCKED: AchievementUnlockedEvent,
}

if set(_EVENT_MODELS) != set(ServerEventType):
    raise RuntimeError(  # pragma: no cover
        f"_EVENT_MODELS keys {set(_EVENT_MODELS)} != ServerEventType members {set(ServerEventType)}",
    )


def parse_server_event(name: str, payload: Any) -> ServerEvent | None:  # noqa: ANN401
    """Decode a raw (name, payload) pair into a typed event, or None if it must be ignored."""
    try:
        event_type = ServerEventType(name)
    except ValueError:
        logger.debug("ignoring unknown server event", event_name=name)
        return None

    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        logger.warning("discarding malformed server event", event_name=name, error="payload is not an object")
        return None

    data = {**payload, "type": event_type}
    try:
        return _EVENT_MODELS[event_type].model_validate(data)  # type: ignore[return-value]
    except ValidationError as e:
        logger.warning("discarding malformed server event", event_name=name, error=str(e))
        return None
