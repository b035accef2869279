"""Match the local identity against a session's seats.

A guest token and an account id are never interchangeable, even when their
raw strings are equal: every comparison checks both the value and the kind.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from caro.identity.models import IdentityKind, LocalIdentity
from caro.session.models import SEATS

if TYPE_CHECKING:
    from collections.abc import Iterable

    from caro.session.models import PlayerSlot, Session


def slot_matches(slot: PlayerSlot, identity: LocalIdentity) -> bool:
    return slot.identity == identity.value and slot.kind == identity.kind


def _seat_from_roster(roster: Iterable[PlayerSlot], identity: LocalIdentity) -> int | None:
    matches = sorted(slot.seat for slot in roster if slot_matches(slot, identity))
    return matches[0] if matches else None


def _seat_from_session(session: Session, identity: LocalIdentity) -> int | None:
    for seat in SEATS:
        occupant = session.guest_in_seat(seat) if identity.is_guest else session.account_in_seat(seat)
        if occupant and occupant == identity.value:
            return seat
    return None


def resolve_seat(
    session: Session | None,
    roster: Iterable[PlayerSlot],
    identity: LocalIdentity | None,
) -> int | None:
    """Return the seat the local identity occupies, or None for a spectator.

    The roster is consulted first. When it holds no match (for example a join
    event for seat 2 arrived before the roster was filled in) the session's raw
    seat-occupant fields are checked. Within each source the lower seat wins.
    """
    if identity is None:
        return None
    seat = _seat_from_roster(roster, identity)
    if seat is not None:
        return seat
    if session is not None:
        return _seat_from_session(session, identity)
    return None


def choose_join_identity(
    session: Session | None,
    guest_token: str,
    account_id: str | None,
) -> LocalIdentity:
    """Pick the identity to announce when joining a room.

    If the session already seats this device's guest token, rejoin as that
    guest even when logged in since; likewise for the account id. Otherwise
    announce the current identity: the account when logged in, the guest token
    when not.
    """
    if session is not None:
        for seat in SEATS:
            if session.guest_in_seat(seat) == guest_token:
                return LocalIdentity(kind=IdentityKind.GUEST, value=guest_token)
        if account_id:
            for seat in SEATS:
                if session.account_in_seat(seat) == account_id:
                    return LocalIdentity(kind=IdentityKind.ACCOUNT, value=account_id)
    if account_id:
        return LocalIdentity(kind=IdentityKind.ACCOUNT, value=account_id)
    return LocalIdentity(kind=IdentityKind.GUEST, value=guest_token)
