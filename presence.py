from typing import List, Optional

from backend import ConnectionRegistry, JoinResult, RoomTable, Vacated
from events import (
    REASON_DISCONNECTED,
    ROOM_JOINED,
    USER_DISCONNECTED,
    USER_JOINED,
    USER_LEFT,
    Outbound,
    now_iso,
)
from logging_config import get_logger
from schemas.signaling import RoomInfo, RoomUser

logger = get_logger(__name__)


class PresenceNotifier:
    """Builds membership notifications for the peers a room change affects.

    Nothing here performs I/O: every method returns the events to deliver,
    and delivery is best-effort.
    """

    def __init__(self, registry: ConnectionRegistry, rooms: RoomTable):
        self.registry = registry
        self.rooms = rooms

    def room_info(self, room_id: str) -> RoomInfo:
        users = []
        for member_id in self.rooms.members(room_id):
            connection = self.registry.get(member_id)
            users.append(RoomUser(socketId=member_id, profile=connection.profile if connection else None))
        return RoomInfo(roomId=room_id, users=users, userCount=len(users))

    def joined(self, connection_id: str, result: JoinResult) -> List[Outbound]:
        info = self.room_info(result.room_id).model_dump()
        outbound = [Outbound(connection_id, ROOM_JOINED, {"roomInfo": info})]

        # A rejoin changes nothing for the peers
        if not result.added:
            return outbound

        for existing in result.members:
            if existing == connection_id:
                continue
            outbound.append(Outbound(connection_id, USER_JOINED, {
                "socketId": existing,
                "roomId": result.room_id,
                "roomInfo": info,
            }))
            outbound.append(Outbound(existing, USER_JOINED, {
                "socketId": connection_id,
                "roomId": result.room_id,
                "roomInfo": info,
            }))
            logger.debug(f"Paired {connection_id} with {existing} in room {result.room_id}")
        return outbound

    def left(self, connection_id: str, vacated: Optional[Vacated]) -> List[Outbound]:
        if vacated is None:
            return []
        return [
            Outbound(member_id, USER_LEFT, {
                "socketId": connection_id,
                "roomId": vacated.room_id,
                "userCount": len(vacated.remaining),
            })
            for member_id in vacated.remaining
        ]

    def disconnected(self, connection_id: str, vacated: Optional[Vacated], reason: str = REASON_DISCONNECTED) -> List[Outbound]:
        if vacated is None:
            return []
        timestamp = now_iso()
        return [
            Outbound(member_id, USER_DISCONNECTED, {
                "socketId": connection_id,
                "roomId": vacated.room_id,
                "userCount": len(vacated.remaining),
                "reason": reason,
                "timestamp": timestamp,
            })
            for member_id in vacated.remaining
        ]
