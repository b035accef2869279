"""Outbound client messages.

Each message serialises to the camelCase payload the server expects via
to_payload(); the event name travels separately as the Socket.IO event.
"""

from enum import StrEnum
from typing import Any, ClassVar

from pydantic import Field, StrictBool, StrictInt, StrictStr

from caro.session.models import WireModel


class ClientEventType(StrEnum):
    JOIN_ROOM = "join-room"
    SUBMIT_MOVE = "submit-move"
    REQUEST_UNDO = "request-undo"
    APPROVE_UNDO = "approve-undo"
    REJECT_UNDO = "reject-undo"
    CONCEDE = "concede"
    BEGIN_SESSION = "begin-session"
    RESTART_SESSION = "restart-session"
    LEAVE_ROOM = "leave-room"
    RENAME_GUEST = "rename-guest"
    SEND_REACTION = "send-reaction"


class ClientMessage(WireModel):
    event: ClassVar[ClientEventType]

    room_id: StrictStr = Field(min_length=1)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class JoinRoomMessage(ClientMessage):
    event = ClientEventType.JOIN_ROOM
    identity: StrictStr = Field(min_length=1)
    is_guest: StrictBool


class SubmitMoveMessage(ClientMessage):
    event = ClientEventType.SUBMIT_MOVE
    row: StrictInt = Field(ge=0)
    col: StrictInt = Field(ge=0)


class RequestUndoMessage(ClientMessage):
    event = ClientEventType.REQUEST_UNDO
    move_number: StrictInt = Field(ge=0)


class ApproveUndoMessage(ClientMessage):
    event = ClientEventType.APPROVE_UNDO
    move_number: StrictInt = Field(ge=0)


class RejectUndoMessage(ClientMessage):
    event = ClientEventType.REJECT_UNDO


class ConcedeMessage(ClientMessage):
    event = ClientEventType.CONCEDE


class BeginSessionMessage(ClientMessage):
    event = ClientEventType.BEGIN_SESSION


class RestartSessionMessage(ClientMessage):
    event = ClientEventType.RESTART_SESSION


class LeaveRoomMessage(ClientMessage):
    event = ClientEventType.LEAVE_ROOM


class RenameGuestMessage(ClientMessage):
    event = ClientEventType.RENAME_GUEST
    name: StrictStr = Field(min_length=1)


class SendReactionMessage(ClientMessage):
    event = ClientEventType.SEND_REACTION
    emoji: StrictStr = Field(min_length=1)
