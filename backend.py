## In-memory signaling state
#
# **Connection registry**
# - `connection_id` -> Connection (created_at, last_activity, room_id, profile)
# - Timestamps come from an injectable monotonic clock.
#
# **Room table**
# - `room_id` -> ordered member ids (at most `capacity`)
# - `connection_id` -> `room_id` reverse index
# - Room ids are canonical: trimmed and lowercased.
# - A room exists only while it has members.
#
# Neither structure references the other; callers coordinate both.
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from constants import ROOM_CAPACITY
from errors import InvalidRoom, RoomFull
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Connection:
    connection_id: str
    created_at: float
    last_activity: float
    room_id: Optional[str] = None
    profile: Optional[dict] = None


class ConnectionRegistry:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._connections: Dict[str, Connection] = {}

    def now(self) -> float:
        return self._clock()

    def register(self, connection_id: str) -> Connection:
        existing = self._connections.get(connection_id)
        if existing is not None:
            return existing
        now = self._clock()
        connection = Connection(connection_id=connection_id, created_at=now, last_activity=now)
        self._connections[connection_id] = connection
        logger.debug(f"Registered connection {connection_id} ({len(self._connections)} live)")
        return connection

    def touch(self, connection_id: str):
        # Pings racing a disconnect are expected; unknown ids are ignored
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.last_activity = self._clock()

    def unregister(self, connection_id: str):
        if self._connections.pop(connection_id, None) is not None:
            logger.debug(f"Unregistered connection {connection_id} ({len(self._connections)} live)")

    def is_stale(self, connection_id: str, now: float, threshold: float) -> bool:
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        return now - connection.last_activity > threshold

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def assign_room(self, connection_id: str, room_id: Optional[str]):
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.room_id = room_id

    def set_profile(self, connection_id: str, profile: Optional[dict]):
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.profile = profile

    def ids(self) -> List[str]:
        return list(self._connections)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)


@dataclass
class Vacated:
    """A room a connection just left, and who is still in it."""

    room_id: str
    remaining: List[str] = field(default_factory=list)


@dataclass
class JoinResult:
    room_id: str
    members: List[str]
    added: bool
    vacated: Optional[Vacated] = None


def normalize_room_id(raw_room_id) -> str:
    if not isinstance(raw_room_id, str) or not raw_room_id.strip():
        raise InvalidRoom()
    return raw_room_id.strip().lower()


class RoomTable:
    def __init__(self, capacity: int = ROOM_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        # Lists keep join order for room snapshots
        self._rooms: Dict[str, List[str]] = {}
        self._membership: Dict[str, str] = {}

    def join(self, connection_id: str, raw_room_id) -> JoinResult:
        room_id = normalize_room_id(raw_room_id)

        vacated = None
        current = self._membership.get(connection_id)
        if current is not None and current != room_id:
            vacated = self.leave(connection_id)

        members = self._rooms.get(room_id)
        if members is not None and connection_id in members:
            logger.debug(f"Connection {connection_id} rejoined room {room_id}")
            return JoinResult(room_id=room_id, members=list(members), added=False, vacated=vacated)

        if members is not None and len(members) >= self.capacity:
            logger.debug(f"Join rejected: room {room_id} is full ({len(members)}/{self.capacity})")
            raise RoomFull(vacated=vacated)

        if members is None:
            members = self._rooms[room_id] = []
            logger.debug(f"Created room {room_id}")
        members.append(connection_id)
        self._membership[connection_id] = room_id
        logger.info(f"Connection {connection_id} joined room {room_id} ({len(members)}/{self.capacity})")
        return JoinResult(room_id=room_id, members=list(members), added=True, vacated=vacated)

    def leave(self, connection_id: str) -> Optional[Vacated]:
        room_id = self._membership.pop(connection_id, None)
        if room_id is None:
            return None

        members = self._rooms.get(room_id, [])
        if connection_id in members:
            members.remove(connection_id)
        if not members:
            self._rooms.pop(room_id, None)
            logger.info(f"Connection {connection_id} left room {room_id}; room deleted")
        else:
            logger.info(f"Connection {connection_id} left room {room_id} ({len(members)} remaining)")
        return Vacated(room_id=room_id, remaining=list(members))

    def peers_of(self, connection_id: str) -> List[str]:
        room_id = self._membership.get(connection_id)
        if room_id is None:
            return []
        return [m for m in self._rooms.get(room_id, []) if m != connection_id]

    def same_room(self, id_a: str, id_b: str) -> bool:
        room_a = self._membership.get(id_a)
        return room_a is not None and room_a == self._membership.get(id_b)

    def room_of(self, connection_id: str) -> Optional[str]:
        return self._membership.get(connection_id)

    def members(self, room_id: str) -> List[str]:
        return list(self._rooms.get(room_id, []))

    def room_ids(self) -> List[str]:
        return list(self._rooms)

    def prune_empty(self) -> List[str]:
        empty = [room_id for room_id, members in self._rooms.items() if not members]
        for room_id in empty:
            del self._rooms[room_id]
            logger.debug(f"Pruned empty room {room_id}")
        return empty

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)
