from typing import Any, Callable, Dict, List

from pydantic import BaseModel, ValidationError

from backend import ConnectionRegistry, RoomTable
from errors import InvalidCallParams, InvalidMessage, InvalidRoom, PeersNotColocated, RoomFull, SignalingError
from events import (
    CALL_ACCEPTED,
    CALL_ENDED,
    ERROR,
    ICE_CANDIDATE,
    INCOMING_CALL,
    REASON_DISCONNECTED,
    InboundEvent,
    Outbound,
    now_iso,
)
from logging_config import get_logger
from presence import PresenceNotifier
from schemas.signaling import (
    CallAcceptedRequest,
    CallEndedRequest,
    ErrorPayload,
    IceCandidateRequest,
    JoinRoomRequest,
    OutgoingCallRequest,
)

logger = get_logger(__name__)

Handler = Callable[[str, Any], List[Outbound]]


class SignalingRouter:
    """Single entry point for everything a client sends.

    Each inbound event kind maps to one handler that mutates the registry and
    room table and returns the events to deliver. The router never touches a
    socket, so it can be driven without a transport.
    """

    def __init__(self, registry: ConnectionRegistry, rooms: RoomTable, presence: PresenceNotifier):
        self.registry = registry
        self.rooms = rooms
        self.presence = presence
        self._handlers: Dict[InboundEvent, Handler] = {
            InboundEvent.ROOM_JOIN: self._join,
            InboundEvent.OUTGOING_CALL: self._outgoing_call,
            InboundEvent.CALL_ACCEPTED: self._call_accepted,
            InboundEvent.ICE_CANDIDATE: self._ice_candidate,
            InboundEvent.CALL_ENDED: self._call_ended,
            InboundEvent.ACTIVITY_PING: self._activity_ping,
        }

    def connect(self, connection_id: str):
        self.registry.register(connection_id)
        logger.info(f"User connected: {connection_id}")

    def disconnect(self, connection_id: str, reason: str = REASON_DISCONNECTED) -> List[Outbound]:
        """Purge a connection from every structure. Safe to call more than once."""
        vacated = self.rooms.leave(connection_id)
        self.registry.unregister(connection_id)
        if vacated is not None:
            logger.info(f"User {connection_id} disconnected from room {vacated.room_id} ({reason})")
        return self.presence.disconnected(connection_id, vacated, reason)

    def dispatch(self, connection_id: str, event: str, data: Any = None) -> List[Outbound]:
        if connection_id not in self.registry:
            # Evicted or disconnected; its socket may still be draining
            logger.debug(f"Dropped {event} from unregistered connection {connection_id}")
            return []
        self.registry.touch(connection_id)
        try:
            try:
                kind = InboundEvent(event)
            except ValueError:
                raise InvalidMessage(f"Unknown event: {event}")
            return self._handlers[kind](connection_id, data)
        except SignalingError as e:
            logger.warning(f"Rejected {event} from {connection_id}: {e.code}: {e.message}")
            return self._reject(connection_id, e)
        except Exception as e:
            logger.error(f"Error handling {event} from {connection_id}: {e}", exc_info=True)
            return [self.error(connection_id, "Internal server error", "InternalError")]

    def error(self, connection_id: str, message: str, code: str) -> Outbound:
        return Outbound(connection_id, ERROR, ErrorPayload(message=message, code=code).model_dump())

    def _reject(self, connection_id: str, error: SignalingError) -> List[Outbound]:
        outbound = [self.error(connection_id, error.message, error.code)]
        if isinstance(error, RoomFull) and error.vacated is not None:
            self.registry.assign_room(connection_id, None)
            outbound.extend(self.presence.left(connection_id, error.vacated))
        return outbound

    def _join(self, connection_id: str, data: Any) -> List[Outbound]:
        request = _parse(JoinRoomRequest, data)
        if request is None:
            raise InvalidRoom("Invalid join request")

        result = self.rooms.join(connection_id, request.roomId)
        self.registry.assign_room(connection_id, result.room_id)
        if isinstance(request.profile, dict):
            self.registry.set_profile(connection_id, request.profile)
        elif request.profile is not None:
            logger.debug(f"Ignored non-object profile from {connection_id}")

        outbound = self.presence.left(connection_id, result.vacated)
        outbound.extend(self.presence.joined(connection_id, result))
        return outbound

    def _outgoing_call(self, connection_id: str, data: Any) -> List[Outbound]:
        request = _parse(OutgoingCallRequest, data)
        if request is None or not request.to or request.offer is None:
            raise InvalidCallParams()
        self._check_colocated(connection_id, request.to)

        logger.debug(f"Call from {connection_id} to {request.to}")
        return [Outbound(request.to, INCOMING_CALL, {
            "from": connection_id,
            "offer": request.offer,
            "timestamp": now_iso(),
        })]

    def _call_accepted(self, connection_id: str, data: Any) -> List[Outbound]:
        request = _parse(CallAcceptedRequest, data)
        if request is None or not request.to or request.answer is None:
            raise InvalidCallParams()
        self._check_colocated(connection_id, request.to)

        logger.debug(f"Call accepted by {connection_id} to {request.to}")
        return [Outbound(request.to, CALL_ACCEPTED, {
            "from": connection_id,
            "answer": request.answer,
            "timestamp": now_iso(),
        })]

    def _ice_candidate(self, connection_id: str, data: Any) -> List[Outbound]:
        request = _parse(IceCandidateRequest, data)
        if request is None or request.candidate is None or not request.to:
            logger.debug(f"Dropped empty ICE candidate from {connection_id}")
            return []
        if request.to == connection_id or request.to not in self.registry:
            logger.debug(f"Dropped ICE candidate from {connection_id}: {request.to} not tracked")
            return []
        return [Outbound(request.to, ICE_CANDIDATE, {
            "candidate": request.candidate,
            "from": connection_id,
        })]

    def _call_ended(self, connection_id: str, data: Any) -> List[Outbound]:
        request = _parse(CallEndedRequest, data)
        logger.debug(f"Call ended by {connection_id}")
        if request is None or not request.to:
            return []
        if request.to == connection_id or request.to not in self.registry:
            logger.debug(f"Dropped call end from {connection_id}: {request.to} not tracked")
            return []
        return [Outbound(request.to, CALL_ENDED, {
            "from": connection_id,
            "timestamp": now_iso(),
        })]

    def _activity_ping(self, connection_id: str, data: Any) -> List[Outbound]:
        # dispatch() already refreshed the activity timestamp
        return []

    def _check_colocated(self, connection_id: str, target_id: str):
        if target_id == connection_id:
            raise InvalidCallParams("Cannot call yourself")
        if not self.rooms.same_room(connection_id, target_id):
            raise PeersNotColocated()


def _parse(model: type[BaseModel], data: Any):
    """Validate a payload, or None when it does not fit the model."""
    try:
        return model.model_validate(data if data is not None else {})
    except ValidationError:
        return None
