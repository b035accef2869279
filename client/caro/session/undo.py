"""Undo negotiation layered on top of play state.

idle -> requested (by seat A) -> approved | rejected -> idle

Two independent flags describe the local view of the handshake:
- pending_move: the opponent asked to roll back to this move and awaits our answer.
- request_sent: we asked and have not heard back. Only this flag blocks a new
  local request; opponent requests are accepted whatever its value.
"""

from pydantic import BaseModel, Field


class UndoState(BaseModel, frozen=True):
    pending_move: int | None = Field(default=None, ge=0)
    requested_by: int | None = None
    request_sent: bool = False

    @property
    def is_idle(self) -> bool:
        return self.pending_move is None and not self.request_sent


IDLE = UndoState()


def can_request(undo: UndoState) -> bool:
    return not undo.request_sent


def mark_request_sent(undo: UndoState) -> UndoState:
    if undo.request_sent:
        return undo
    return undo.model_copy(update={"request_sent": True})


def on_requested(undo: UndoState, *, move_number: int, requested_by: int, my_seat: int | None) -> UndoState:
    """Surface an opponent's request; our own request echoed back changes nothing."""
    if requested_by == my_seat:
        return undo
    return undo.model_copy(update={"pending_move": move_number, "requested_by": requested_by})


def can_answer(undo: UndoState, my_seat: int | None) -> bool:
    """Only the seat that did not ask may approve or reject."""
    return undo.pending_move is not None and my_seat is not None and undo.requested_by != my_seat


def on_approved(_undo: UndoState) -> UndoState:
    return IDLE


def on_rejected(undo: UndoState) -> UndoState:
    if not undo.request_sent:
        return undo
    return undo.model_copy(update={"request_sent": False})


def clear_pending(undo: UndoState) -> UndoState:
    if undo.pending_move is None:
        return undo
    return undo.model_copy(update={"pending_move": None, "requested_by": None})


def clear_request_sent(undo: UndoState) -> UndoState:
    return on_rejected(undo)
