"""Session state store: the single owner of the local session mirror.

Inbound events are decoded, folded by caro.session.transitions and committed
here; the effects a fold asks for (reconciliation, notices, archival,
teardown, reactions) are run by the store. Actions emit over the transport
and apply only the optimistic patches the game allows.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog

from caro.api.exceptions import ApiError
from caro.client.settings import ClientSettings
from caro.identity.models import LocalIdentity
from caro.identity.resolver import choose_join_identity
from caro.messaging.events import parse_server_event
from caro.messaging.types import (
    ApproveUndoMessage,
    BeginSessionMessage,
    ConcedeMessage,
    JoinRoomMessage,
    LeaveRoomMessage,
    RejectUndoMessage,
    RenameGuestMessage,
    RequestUndoMessage,
    RestartSessionMessage,
    SendReactionMessage,
    SubmitMoveMessage,
)
from caro.session import undo as undo_rules
from caro.session.reconciliation import ReconciliationScheduler
from caro.session.state import EMPTY_STATE, Notice, PlayState, Reaction, RoomState, SyncState
from caro.session.tasks import TaskTracker
from caro.session.transitions import (
    ArchiveResult,
    FoldContext,
    ReactionArrived,
    ScheduleReconciliation,
    ShowNotice,
    Teardown,
    apply_event,
    begin_optimistically,
    install_session,
    rename_local_guest,
    update_undo,
)
from shared.logging import bind_room_context

if TYPE_CHECKING:
    from caro.api.client import GameApiClient
    from caro.identity.provider import IdentityProvider
    from caro.messaging.protocol import TransportProtocol
    from caro.session.archive import ResultArchiver
    from caro.session.models import Session
    from caro.session.state import FinishedSnapshot
    from caro.session.transitions import Effect

logger = structlog.get_logger()

RoomListener = Callable[[RoomState], None]
PlayListener = Callable[[PlayState], None]
ReactionListener = Callable[[tuple[Reaction, ...]], None]
NoticeListener = Callable[[Notice], None]


def _add_listener(listeners: list[Any], listener: Any) -> Callable[[], None]:  # noqa: ANN401
    listeners.append(listener)

    def unsubscribe() -> None:
        if listener in listeners:
            listeners.remove(listener)

    return unsubscribe


def _notify(listeners: Iterable[Callable[[Any], None]], value: object, surface: str) -> None:
    for listener in list(listeners):
        try:
            listener(value)
        except Exception:
            logger.exception("listener failed", surface=surface)


class SessionStore:
    """Own the room, play and reaction surfaces of one client.

    State lives in a single cell (`state`) that async continuations always
    re-read after suspending. Listeners of a surface are notified only when
    that surface's object changes.
    """

    def __init__(
        self,
        transport: TransportProtocol,
        api: GameApiClient,
        identity: IdentityProvider,
        archiver: ResultArchiver,
        settings: ClientSettings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport
        self._api = api
        self._identity = identity
        self._archiver = archiver
        self._settings = settings or ClientSettings()
        self._clock = clock
        self._tasks = TaskTracker()
        self._scheduler = ReconciliationScheduler(
            self._tasks,
            fetch=api.fetch_session,
            current_room=lambda: self._state.room.room_id,
            on_reconciled=self._on_reconciled,
            on_missing=self._on_missing,
            delay=self._settings.reconciliation_delay_seconds,
        )
        self._state: SyncState = EMPTY_STATE
        self._reactions: tuple[Reaction, ...] = ()
        self._announced: LocalIdentity | None = None
        self._closed = False
        self._room_listeners: list[RoomListener] = []
        self._play_listeners: list[PlayListener] = []
        self._reaction_listeners: list[ReactionListener] = []
        self._notice_listeners: list[NoticeListener] = []
        self._unsubscribe_transport: Callable[[], None] | None = None

    # ------------------------------------------------------------------
    # Read surfaces
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def room(self) -> RoomState:
        return self._state.room

    @property
    def play(self) -> PlayState:
        return self._state.play

    @property
    def room_id(self) -> str | None:
        return self._state.room.room_id

    @property
    def announced_identity(self) -> LocalIdentity | None:
        """Identity sent with the last join-room for the current room."""
        return self._announced

    @property
    def reactions(self) -> tuple[Reaction, ...]:
        return self._live_reactions()

    @property
    def tasks(self) -> TaskTracker:
        return self._tasks

    @property
    def scheduler(self) -> ReconciliationScheduler:
        return self._scheduler

    def subscribe_room(self, listener: RoomListener) -> Callable[[], None]:
        return _add_listener(self._room_listeners, listener)

    def subscribe_play(self, listener: PlayListener) -> Callable[[], None]:
        return _add_listener(self._play_listeners, listener)

    def subscribe_reactions(self, listener: ReactionListener) -> Callable[[], None]:
        return _add_listener(self._reaction_listeners, listener)

    def subscribe_notices(self, listener: NoticeListener) -> Callable[[], None]:
        return _add_listener(self._notice_listeners, listener)

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    def attach(self) -> None:
        """Start consuming events from the transport."""
        if self._unsubscribe_transport is None:
            self._unsubscribe_transport = self._transport.subscribe(self.handle_event)

    def handle_event(self, name: str, payload: Any) -> None:  # noqa: ANN401
        """Decode and fold one inbound event. Never awaits and never raises on bad input."""
        if self._closed:
            return
        event = parse_server_event(name, payload)
        if event is None:
            return
        transition = apply_event(self._state, event, self._fold_context())
        self._commit(transition.state)
        self._run_effects(transition.effects)

    def _fold_context(self) -> FoldContext:
        account = self._identity.account
        return FoldContext(
            identity=self._announced,
            guest_name=self._identity.guest_name(),
            account_id=account.user_id if account is not None else None,
        )

    def _commit(self, new_state: SyncState) -> None:
        old_state = self._state
        if new_state is old_state:
            return
        self._state = new_state
        if new_state.room.room_id != old_state.room.room_id:
            bind_room_context(new_state.room.room_id)
        if new_state.room is not old_state.room:
            _notify(self._room_listeners, new_state.room, "room")
        if new_state.play is not old_state.play:
            _notify(self._play_listeners, new_state.play, "play")

    def _run_effects(self, effects: Iterable[Effect]) -> None:
        for effect in effects:
            match effect:
                case ScheduleReconciliation():
                    self._scheduler.schedule()
                case Teardown(reason=reason):
                    self._teardown(reason)
                case ShowNotice(notice=notice):
                    logger.info("notice", kind=notice.kind, message=notice.message)
                    _notify(self._notice_listeners, notice, "notice")
                case ArchiveResult(snapshot=snapshot):
                    self._schedule_archive(snapshot)
                case ReactionArrived():
                    self._add_reaction(
                        Reaction(
                            id=f"reaction-{uuid4().hex[:12]}",
                            emoji=effect.emoji,
                            from_name=effect.from_name,
                            from_seat=effect.from_seat,
                            is_self=False,
                            received_at=self._clock(),
                        ),
                    )

    def _schedule_archive(self, snapshot: FinishedSnapshot) -> None:
        def archive() -> None:
            self._tasks.spawn(self._archiver.archive(snapshot), name=f"archive-{snapshot.room_id}")

        self._tasks.call_later(self._settings.finish_grace_seconds, archive)

    def _on_reconciled(self, session: Session) -> None:
        if self._closed:
            return
        self._commit(install_session(self._state, session, self._fold_context()))

    def _on_missing(self, _room_id: str) -> None:
        if self._closed:
            return
        self._teardown("session not found")

    def _teardown(self, reason: str) -> None:
        """Drop the room: stop timers, forget the announced identity and clear every surface."""
        had_room = self._state.room.room_id is not None
        self._scheduler.invalidate()
        self._tasks.cancel_timers()
        self._announced = None
        if self._reactions:
            self._reactions = ()
            _notify(self._reaction_listeners, self._reactions, "reactions")
        self._commit(EMPTY_STATE)
        if had_room:
            logger.info("session torn down", reason=reason)

    # ------------------------------------------------------------------
    # Reactions
    # ------------------------------------------------------------------

    def _live_reactions(self) -> tuple[Reaction, ...]:
        cutoff = self._clock() - self._settings.reaction_ttl_seconds
        return tuple(reaction for reaction in self._reactions if reaction.received_at > cutoff)

    def _add_reaction(self, reaction: Reaction) -> None:
        self._reactions = (*self._live_reactions(), reaction)
        _notify(self._reaction_listeners, self._reactions, "reactions")
        self._tasks.call_later(self._settings.reaction_ttl_seconds, self._prune_reactions)

    def _prune_reactions(self) -> None:
        live = self._live_reactions()
        if len(live) != len(self._reactions):
            self._reactions = live
            _notify(self._reaction_listeners, self._reactions, "reactions")

    def clear_reaction(self, reaction_id: str) -> None:
        remaining = tuple(reaction for reaction in self._reactions if reaction.id != reaction_id)
        if len(remaining) != len(self._reactions):
            self._reactions = remaining
            _notify(self._reaction_listeners, self._reactions, "reactions")

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _active_room(self, action: str) -> str | None:
        if self._closed:
            logger.warning("action on closed store", action=action)
            return None
        room_id = self._state.room.room_id
        if room_id is None:
            logger.debug("action without an active room", action=action)
        return room_id

    def _join_identity(self, session: Session | None) -> LocalIdentity:
        account = self._identity.account
        chosen = choose_join_identity(
            session,
            self._identity.guest_token(),
            account.user_id if account is not None else None,
        )
        if chosen.is_guest:
            return LocalIdentity.guest(chosen.value, self._identity.guest_name())
        return chosen

    async def join_session(self, room_id: str, session: Session | None = None) -> None:
        """Join a room, optionally seeding it with an already-fetched session."""
        if self._closed:
            logger.warning("action on closed store", action="join_session")
            return
        if room_id == self._state.room.room_id:
            return
        if self._state.room.room_id is not None:
            self._teardown("room change")

        if session is not None and session.room_id != room_id:
            logger.warning("ignoring session for another room", session_room_id=session.room_id)
            session = None

        identity = self._join_identity(session)
        self._announced = identity
        state = SyncState(room=RoomState(room_id=room_id))
        if session is not None:
            state = install_session(state, session, self._fold_context())
        self._commit(state)
        logger.info("joining room", identity_kind=identity.kind)

        await self._transport.send(
            JoinRoomMessage(room_id=room_id, identity=identity.value, is_guest=identity.is_guest),
        )
        if session is None:
            self._scheduler.schedule()

    async def submit_move(self, row: int, col: int) -> None:
        """Send a move. The board changes only when the server applies it."""
        room_id = self._active_room("submit_move")
        if room_id is None:
            return
        await self._transport.send(SubmitMoveMessage(room_id=room_id, row=row, col=col))

    async def request_undo(self, move_number: int) -> None:
        room_id = self._active_room("request_undo")
        if room_id is None:
            return
        if not undo_rules.can_request(self._state.play.undo):
            logger.info("undo request already outstanding")
            return
        session = self._state.room.session
        if session is not None and not session.rules.allow_undo:
            logger.info("undo is disabled for this session")
            return
        self._commit(update_undo(self._state, undo_rules.mark_request_sent(self._state.play.undo)))
        await self._transport.send(RequestUndoMessage(room_id=room_id, move_number=move_number))

    async def approve_undo(self, move_number: int) -> None:
        room_id = self._active_room("approve_undo")
        if room_id is None:
            return
        if not undo_rules.can_answer(self._state.play.undo, self._state.room.my_seat):
            logger.info("no undo request to approve")
            return
        await self._transport.send(ApproveUndoMessage(room_id=room_id, move_number=move_number))

    async def reject_undo(self) -> None:
        room_id = self._active_room("reject_undo")
        if room_id is None:
            return
        if not undo_rules.can_answer(self._state.play.undo, self._state.room.my_seat):
            logger.info("no undo request to reject")
            return
        await self._transport.send(RejectUndoMessage(room_id=room_id))
        self._commit(update_undo(self._state, undo_rules.clear_pending(self._state.play.undo)))

    def clear_pending_undo(self) -> None:
        self._commit(update_undo(self._state, undo_rules.clear_pending(self._state.play.undo)))

    async def concede(self) -> None:
        room_id = self._active_room("concede")
        if room_id is None:
            return
        await self._transport.send(ConcedeMessage(room_id=room_id))

    async def begin_session(self) -> None:
        room_id = self._active_room("begin_session")
        if room_id is None:
            return
        self._commit(begin_optimistically(self._state))
        await self._transport.send(BeginSessionMessage(room_id=room_id))

    async def restart_session(self) -> None:
        room_id = self._active_room("restart_session")
        if room_id is None:
            return
        await self._transport.send(RestartSessionMessage(room_id=room_id))

    async def leave_session(self) -> None:
        """Leave the current room. Local state is torn down even when the server call fails."""
        room_id = self._active_room("leave_session")
        if room_id is None:
            return
        try:
            await self._api.leave_session(room_id, self._identity.guest_token())
        except ApiError as e:
            logger.error("failed to leave session", error=str(e))
            self._teardown("leave failed")
            raise
        await self._transport.send(LeaveRoomMessage(room_id=room_id))
        self._teardown("left room")

    async def rename_guest(self, name: str) -> None:
        """Rename the local guest. The name is saved for later rooms even when no room is active."""
        if self._closed:
            logger.warning("action on closed store", action="rename_guest")
            return
        trimmed = name.strip()
        if not trimmed or len(trimmed) > self._settings.guest_name_max_length:
            logger.warning("invalid guest name", length=len(trimmed))
            return
        if not self._identity.is_authenticated:
            self._identity.set_guest_name(trimmed)
        room_id = self._active_room("rename_guest")
        if room_id is None:
            return
        self._commit(rename_local_guest(self._state, trimmed))
        await self._transport.send(RenameGuestMessage(room_id=room_id, name=trimmed))

    async def send_reaction(self, emoji: str) -> None:
        if not emoji or len(emoji) > self._settings.max_reaction_length:
            logger.warning("invalid reaction", length=len(emoji))
            return
        room_id = self._active_room("send_reaction")
        if room_id is None:
            return
        my_seat = self._state.room.my_seat
        if my_seat is not None:
            my_slot = self._state.room.slot_for_seat(my_seat)
            self._add_reaction(
                Reaction(
                    id=f"reaction-self-{uuid4().hex[:12]}",
                    emoji=emoji,
                    from_name=my_slot.username if my_slot is not None and my_slot.username else "You",
                    from_seat=my_seat,
                    is_self=True,
                    received_at=self._clock(),
                ),
            )
        await self._transport.send(SendReactionMessage(room_id=room_id, emoji=emoji))

    async def close(self) -> None:
        """Detach from the transport and stop all timers. Outstanding tasks are awaited."""
        if self._closed:
            return
        if self._unsubscribe_transport is not None:
            self._unsubscribe_transport()
            self._unsubscribe_transport = None
        self._teardown("closed")
        self._closed = True
        await self._tasks.wait_idle()
