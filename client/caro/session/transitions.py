"""Pure folds of server events and local optimistic patches into SyncState.

Each fold returns a Transition: the next state plus the side effects the store
must run (reconciliation, notices, archival, teardown). Folds never perform
I/O. An event that cannot be applied returns the same state object so that
listeners are not notified.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from caro.identity.resolver import resolve_seat, slot_matches
from caro.messaging.events import (
    AchievementUnlockedEvent,
    GuestRenamedEvent,
    MarkerUpdatedEvent,
    MoveAppliedEvent,
    MoveRejectedEvent,
    ReactionReceivedEvent,
    RoomDeletedEvent,
    RosterJoinedEvent,
    ScoreUpdatedEvent,
    SeatFilledEvent,
    SeatVacatedEvent,
    SessionAbandonedEvent,
    SessionErrorEvent,
    SessionFinishedEvent,
    SessionResetEvent,
    SessionStartedEvent,
    UndoApprovedEvent,
    UndoRejectedEvent,
    UndoRequestedEvent,
)
from caro.session import undo as undo_rules
from caro.session.models import TERMINAL_STATUSES, SessionStatus, roster_from_session
from caro.session.state import FinishedSnapshot, Notice, NoticeKind, PlayState, RoomState

if TYPE_CHECKING:
    from caro.identity.models import LocalIdentity
    from caro.messaging.events import ServerEvent
    from caro.session.models import Board, PlayerSlot, Session
    from caro.session.state import SyncState

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScheduleReconciliation:
    """Re-fetch the authoritative session after the debounce window."""


@dataclass(frozen=True)
class Teardown:
    reason: str


@dataclass(frozen=True)
class ShowNotice:
    notice: Notice


@dataclass(frozen=True)
class ArchiveResult:
    snapshot: FinishedSnapshot


@dataclass(frozen=True)
class ReactionArrived:
    emoji: str
    from_name: str
    from_seat: int


Effect = ScheduleReconciliation | Teardown | ShowNotice | ArchiveResult | ReactionArrived


@dataclass(frozen=True)
class Transition:
    state: SyncState
    effects: tuple[Effect, ...] = ()


@dataclass(frozen=True)
class FoldContext:
    """Local facts a fold needs besides the event itself."""

    identity: LocalIdentity | None = None
    guest_name: str | None = None
    account_id: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _unchanged(state: SyncState) -> Transition:
    return Transition(state)


def _sorted_roster(slots: list[PlayerSlot] | tuple[PlayerSlot, ...]) -> tuple[PlayerSlot, ...]:
    return tuple(sorted(slots, key=lambda slot: slot.seat))


def _same_player(a: PlayerSlot, b: PlayerSlot) -> bool:
    return a.identity == b.identity and a.kind == b.kind


def _with_local_guest_name(roster: tuple[PlayerSlot, ...], ctx: FoldContext) -> tuple[PlayerSlot, ...]:
    """The locally chosen guest name wins over the server's copy for our own slot."""
    identity = ctx.identity
    if identity is None or not identity.is_guest or not ctx.guest_name:
        return roster
    return tuple(
        slot.model_copy(update={"username": ctx.guest_name})
        if slot_matches(slot, identity) and slot.username != ctx.guest_name
        else slot
        for slot in roster
    )


def _room(state: SyncState, **update: object) -> RoomState:
    return state.room.model_copy(update=update)


def _play(state: SyncState, **update: object) -> PlayState:
    return state.play.model_copy(update=update)


def finalize(state: SyncState) -> SyncState:
    """Keep the play slice consistent with the room slice.

    current_player mirrors the session and is_my_turn is derived from the
    resolved seat. The play slice object is reused when nothing changed.
    """
    session = state.room.session
    current_player = session.current_player if session is not None else state.play.current_player
    my_seat = state.room.my_seat
    is_my_turn = my_seat is not None and current_player == my_seat
    if state.play.current_player == current_player and state.play.is_my_turn == is_my_turn:
        return state
    play = state.play.model_copy(update={"current_player": current_player, "is_my_turn": is_my_turn})
    return state.model_copy(update={"play": play})


def _replace(state: SyncState, *, room: RoomState | None = None, play: PlayState | None = None) -> SyncState:
    update: dict[str, object] = {}
    if room is not None and room != state.room:
        update["room"] = room
    if play is not None and play != state.play:
        update["play"] = play
    if not update:
        return state
    return finalize(state.model_copy(update=update))


def _board_fits(session: Session, board: Board) -> bool:
    if len(board) != session.board_size:
        logger.warning("discarding board of wrong size", expected=session.board_size, received=len(board))
        return False
    return True


def _resolve_room(room: RoomState, ctx: FoldContext) -> RoomState:
    my_seat = resolve_seat(room.session, room.roster, ctx.identity)
    if my_seat == room.my_seat:
        return room
    return room.model_copy(update={"my_seat": my_seat})


# ---------------------------------------------------------------------------
# Local operations
# ---------------------------------------------------------------------------


def install_session(state: SyncState, session: Session, ctx: FoldContext) -> SyncState:
    """Replace session, roster and seat wholesale with an authoritative copy."""
    roster = _with_local_guest_name(roster_from_session(session), ctx)
    finish_captured = (
        state.room.finish_captured
        and state.room.room_id == session.room_id
        and session.status == SessionStatus.FINISHED
    )
    room = RoomState(room_id=session.room_id, session=session, roster=roster, finish_captured=finish_captured)
    room = _resolve_room(room, ctx)
    last_move = session.last_move if session.last_move is not None else state.play.last_move
    return _replace(state, room=room, play=_play(state, last_move=last_move))


def begin_optimistically(state: SyncState) -> SyncState:
    """Flip a waiting session to playing ahead of the server's confirmation."""
    session = state.room.session
    if session is None or session.status != SessionStatus.WAITING:
        return state
    return _replace(state, room=_room(state, session=session.model_copy(update={"status": SessionStatus.PLAYING})))


def rename_local_guest(state: SyncState, name: str) -> SyncState:
    """Show our new guest name in our own slot right away."""
    my_seat = state.room.my_seat
    if my_seat is None:
        return state
    roster = tuple(
        slot.model_copy(update={"username": name}) if slot.seat == my_seat and slot.is_guest else slot
        for slot in state.room.roster
    )
    session = state.room.session
    if session is not None and session.guest_in_seat(my_seat):
        session = session.model_copy(update={f"player{my_seat}_guest_name": name})
    return _replace(state, room=_room(state, roster=roster, session=session))


def update_undo(state: SyncState, undo: undo_rules.UndoState) -> SyncState:
    if undo == state.play.undo:
        return state
    return _replace(state, play=_play(state, undo=undo))


# ---------------------------------------------------------------------------
# Server events
# ---------------------------------------------------------------------------


def _roster_joined(state: SyncState, event: RosterJoinedEvent, ctx: FoldContext) -> Transition:
    if event.room_id != state.room.room_id:
        logger.debug("ignoring roster for another room", event_room_id=event.room_id)
        return _unchanged(state)

    roster = _with_local_guest_name(_sorted_roster(event.roster), ctx)
    session = state.room.session
    if session is not None:
        update: dict[str, object] = {}
        if event.status is not None:
            update["status"] = event.status
        if event.turn is not None:
            update["current_player"] = event.turn
        if update:
            session = session.model_copy(update=update)
        for slot in roster:
            session = session.with_occupant(slot)

    room = _resolve_room(_room(state, roster=roster, session=session), ctx)
    return Transition(_replace(state, room=room))


def _seat_filled(state: SyncState, event: SeatFilledEvent, ctx: FoldContext) -> Transition:
    slot = event.slot
    roster = state.room.roster
    if any(existing.seat == slot.seat and _same_player(existing, slot) for existing in roster):
        return _unchanged(state)

    remaining = [
        existing
        for existing in roster
        if existing.seat != slot.seat and not _same_player(existing, slot)
    ]
    roster = _with_local_guest_name(
        _sorted_roster([*remaining, slot]),
        ctx,
    )
    session = state.room.session
    if session is not None:
        session = session.with_occupant(slot)

    room = _resolve_room(_room(state, roster=roster, session=session), ctx)
    return Transition(_replace(state, room=room), (ScheduleReconciliation(),))


def _seat_vacated(state: SyncState, event: SeatVacatedEvent, ctx: FoldContext) -> Transition:
    if event.room_id is not None and event.room_id != state.room.room_id:
        logger.debug("ignoring seat vacated in another room", event_room_id=event.room_id)
        return _unchanged(state)

    roster = state.room.roster
    if event.seat is not None:
        roster = tuple(slot for slot in roster if slot.seat != event.seat)

    session = state.room.session
    if event.host_transferred and event.session is not None:
        roster = tuple(slot.model_copy(update={"seat": 1}) if slot.seat == 2 else slot for slot in roster)
        if session is not None:
            patch = event.session
            session = session.model_copy(
                update={
                    "player1": patch.player1,
                    "player1_guest_id": patch.player1_guest_id,
                    "player2": patch.player2,
                    "player2_guest_id": patch.player2_guest_id,
                    "status": patch.status,
                    "current_player": patch.current_player,
                },
            )

    room = _room(state, roster=roster, session=session)
    if event.host_transferred and event.session is not None and state.room.my_seat == 2:
        room = room.model_copy(update={"my_seat": 1})
    else:
        room = _resolve_room(room, ctx)
    return Transition(_replace(state, room=room), (ScheduleReconciliation(),))


def _room_deleted(state: SyncState, event: RoomDeletedEvent) -> Transition:
    if event.room_id != state.room.room_id:
        return _unchanged(state)
    return Transition(state, (Teardown(reason="room deleted"),))


def _move_applied(state: SyncState, event: MoveAppliedEvent) -> Transition:
    session = state.room.session
    room = None
    if session is not None:
        if not _board_fits(session, event.board):
            return _unchanged(state)
        update: dict[str, object] = {"board": event.board, "current_player": event.turn}
        if session.status == SessionStatus.WAITING:
            update["status"] = SessionStatus.PLAYING
        room = _room(state, session=session.model_copy(update=update))

    play_update: dict[str, object] = {"undo": undo_rules.clear_request_sent(state.play.undo)}
    if event.move is not None:
        play_update["last_move"] = event.move.coordinate
    return Transition(_replace(state, room=room, play=_play(state, **play_update)))


def _move_rejected(state: SyncState, event: MoveRejectedEvent) -> Transition:
    if event.valid:
        return _unchanged(state)
    notice = Notice(kind=NoticeKind.MOVE_REJECTED, message=event.message or "Invalid move")
    return Transition(state, (ShowNotice(notice),))


def _score_updated(state: SyncState, event: ScoreUpdatedEvent) -> Transition:
    session = state.room.session
    if session is None or session.score == event.score:
        return _unchanged(state)
    return Transition(_replace(state, room=_room(state, session=session.model_copy(update={"score": event.score}))))


def _undo_requested(state: SyncState, event: UndoRequestedEvent) -> Transition:
    undo = undo_rules.on_requested(
        state.play.undo,
        move_number=event.move_number,
        requested_by=event.requested_by,
        my_seat=state.room.my_seat,
    )
    return Transition(update_undo(state, undo))


def _undo_approved(state: SyncState, event: UndoApprovedEvent) -> Transition:
    session = state.room.session
    room = None
    if session is not None:
        if not _board_fits(session, event.board):
            return _unchanged(state)
        update: dict[str, object] = {"board": event.board, "last_move": None}
        if event.turn is not None:
            update["current_player"] = event.turn
        room = _room(state, session=session.model_copy(update=update))
    play = _play(state, last_move=None, undo=undo_rules.on_approved(state.play.undo))
    return Transition(_replace(state, room=room, play=play))


def _undo_rejected(state: SyncState) -> Transition:
    return Transition(update_undo(state, undo_rules.on_rejected(state.play.undo)))


def _session_started(state: SyncState, event: SessionStartedEvent) -> Transition:
    session = state.room.session
    room = None
    if session is not None:
        if session.status in TERMINAL_STATUSES:
            logger.debug("ignoring session start for a closed session", status=session.status)
            return _unchanged(state)
        room = _room(
            state,
            session=session.model_copy(update={"status": SessionStatus.PLAYING, "current_player": event.turn}),
        )
    return Transition(_replace(state, room=room, play=_play(state, last_move=None)))


def _session_reset(state: SyncState, event: SessionResetEvent) -> Transition:
    session = state.room.session
    room = None
    if session is not None:
        session = session.model_copy(
            update={
                "board": event.board,
                "board_size": len(event.board),
                "current_player": event.turn,
                "status": event.status,
                "winner": None,
                "winning_line": None,
                "last_move": None,
            },
        )
        room = _room(state, session=session, finish_captured=False)
    play = _play(state, last_move=None, undo=undo_rules.IDLE)
    return Transition(_replace(state, room=room, play=play))


def _session_finished(state: SyncState, event: SessionFinishedEvent, ctx: FoldContext) -> Transition:
    session = state.room.session
    if session is None:
        return _unchanged(state)
    if state.room.finish_captured:
        logger.debug("ignoring repeated session finish")
        return _unchanged(state)

    winning_line = event.winning_line if event.winning_line is not None else session.winning_line
    score = event.score if event.score is not None else session.score
    finished = session.model_copy(
        update={
            "status": SessionStatus.FINISHED,
            "winner": event.winner,
            "winning_line": winning_line,
            "score": score,
        },
    )
    next_state = _replace(state, room=_room(state, session=finished, finish_captured=True))

    effects: tuple[Effect, ...] = ()
    my_seat = state.room.my_seat
    if my_seat is not None and ctx.identity is not None:
        opponent = state.room.opponent
        snapshot = FinishedSnapshot(
            room_id=finished.room_id,
            room_code=finished.room_code,
            board_size=finished.board_size,
            board=finished.board,
            winner=event.winner,
            winning_line=winning_line,
            score=score,
            created_at=finished.created_at,
            finished_at=finished.finished_at,
            my_seat=my_seat,
            opponent_name=opponent.username if opponent is not None and opponent.username else "Unknown",
            identity_kind=ctx.identity.kind,
        )
        effects = (ArchiveResult(snapshot),)
    return Transition(next_state, effects)


def _session_abandoned(state: SyncState, event: SessionAbandonedEvent) -> Transition:
    if event.room_id is not None and event.room_id != state.room.room_id:
        return _unchanged(state)
    session = state.room.session
    if session is None or session.status != SessionStatus.PLAYING:
        return _unchanged(state)
    logger.info("session abandoned", reason=event.reason)
    abandoned = session.model_copy(update={"status": SessionStatus.ABANDONED})
    return Transition(_replace(state, room=_room(state, session=abandoned)))


def _session_error(state: SyncState, event: SessionErrorEvent) -> Transition:
    return Transition(state, (ShowNotice(Notice(kind=NoticeKind.SESSION_ERROR, message=event.message)),))


def _marker_updated(state: SyncState, event: MarkerUpdatedEvent) -> Transition:
    session = state.room.session
    if session is None or session.marker_for(event.seat) == event.marker:
        return _unchanged(state)
    session = session.model_copy(update={f"player{event.seat}_marker": event.marker})
    return Transition(_replace(state, room=_room(state, session=session)))


def _guest_renamed(state: SyncState, event: GuestRenamedEvent) -> Transition:
    roster = tuple(
        slot.model_copy(update={"username": event.name})
        if slot.seat == event.seat and slot.is_guest and slot.identity == event.identity
        else slot
        for slot in state.room.roster
    )
    session = state.room.session
    if session is not None and session.guest_in_seat(event.seat) == event.identity:
        session = session.model_copy(update={f"player{event.seat}_guest_name": event.name})
    return Transition(_replace(state, room=_room(state, roster=roster, session=session)))


def _reaction_received(state: SyncState, event: ReactionReceivedEvent) -> Transition:
    return Transition(state, (ReactionArrived(emoji=event.emoji, from_name=event.from_name, from_seat=event.from_seat),))


def _achievement_unlocked(state: SyncState, event: AchievementUnlockedEvent, ctx: FoldContext) -> Transition:
    if ctx.account_id is None or event.player_id != ctx.account_id or not event.achievement_ids:
        return _unchanged(state)
    notice = Notice(
        kind=NoticeKind.ACHIEVEMENT_UNLOCKED,
        message="Achievement unlocked",
        details=event.achievement_ids,
    )
    return Transition(state, (ShowNotice(notice),))


def apply_event(state: SyncState, event: ServerEvent, ctx: FoldContext) -> Transition:  # noqa: PLR0911, C901
    """Fold one validated server event into the state."""
    if state.room.room_id is None:
        logger.debug("ignoring event without an active room", event_type=event.type)
        return _unchanged(state)

    match event:
        case RosterJoinedEvent():
            return _roster_joined(state, event, ctx)
        case SeatFilledEvent():
            return _seat_filled(state, event, ctx)
        case SeatVacatedEvent():
            return _seat_vacated(state, event, ctx)
        case RoomDeletedEvent():
            return _room_deleted(state, event)
        case MoveAppliedEvent():
            return _move_applied(state, event)
        case MoveRejectedEvent():
            return _move_rejected(state, event)
        case ScoreUpdatedEvent():
            return _score_updated(state, event)
        case UndoRequestedEvent():
            return _undo_requested(state, event)
        case UndoApprovedEvent():
            return _undo_approved(state, event)
        case UndoRejectedEvent():
            return _undo_rejected(state)
        case SessionStartedEvent():
            return _session_started(state, event)
        case SessionResetEvent():
            return _session_reset(state, event)
        case SessionFinishedEvent():
            return _session_finished(state, event, ctx)
        case SessionAbandonedEvent():
            return _session_abandoned(state, event)
        case SessionErrorEvent():
            return _session_error(state, event)
        case MarkerUpdatedEvent():
            return _marker_updated(state, event)
        case GuestRenamedEvent():
            return _guest_renamed(state, event)
        case ReactionReceivedEvent():
            return _reaction_received(state, event)
        case AchievementUnlockedEvent():
            return _achievement_unlocked(state, event, ctx)
    return _unchanged(state)  # pragma: no cover
