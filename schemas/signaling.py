from pydantic import BaseModel
from typing import Any, Optional


class InboundMessage(BaseModel):
    event: str
    data: Optional[Any] = None


class JoinRoomRequest(BaseModel):
    # Both checked by the router: a non-string id is InvalidRoom, a non-dict profile is ignored
    roomId: Optional[Any] = None
    profile: Optional[Any] = None

class OutgoingCallRequest(BaseModel):
    to: Optional[str] = None
    offer: Optional[Any] = None

class CallAcceptedRequest(BaseModel):
    to: Optional[str] = None
    answer: Optional[Any] = None

class IceCandidateRequest(BaseModel):
    candidate: Optional[Any] = None
    to: Optional[str] = None

class CallEndedRequest(BaseModel):
    to: Optional[str] = None


class RoomUser(BaseModel):
    socketId: str
    profile: Optional[dict] = None

class RoomInfo(BaseModel):
    roomId: str
    users: list[RoomUser]
    userCount: int


class ErrorPayload(BaseModel):
    message: str
    code: str
