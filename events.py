from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict


class InboundEvent(str, Enum):
    """Client -> server event names."""

    ROOM_JOIN = "room:join"
    OUTGOING_CALL = "outgoing:call"
    CALL_ACCEPTED = "call:accepted"
    ICE_CANDIDATE = "ice:candidate"
    CALL_ENDED = "call:ended"
    ACTIVITY_PING = "activity-ping"


# Server -> client event names
CONNECTION_READY = "connection:ready"
ROOM_JOINED = "room:joined"
USER_JOINED = "user:joined"
USER_LEFT = "user:left"
USER_DISCONNECTED = "user:disconnected"
INCOMING_CALL = "incoming:call"
CALL_ACCEPTED = "call:accepted"
ICE_CANDIDATE = "ice:candidate"
CALL_ENDED = "call:ended"
ERROR = "error"
SERVER_SHUTDOWN = "server:shutdown"

# Departure reasons carried by user:disconnected
REASON_DISCONNECTED = "disconnected"
REASON_INACTIVE = "inactive"


@dataclass
class Outbound:
    """A server -> client event addressed to one connection."""

    to: str
    event: str
    data: Dict[str, Any] = field(default_factory=dict)

    def frame(self) -> Dict[str, Any]:
        return {"event": self.event, "data": self.data}


def now_iso() -> str:
    return datetime.now().isoformat()
