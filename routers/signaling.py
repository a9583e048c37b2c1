import json
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from fastapi.websockets import WebSocketState

from backend import ConnectionRegistry, RoomTable
from constants import CLOSE_IDLE_TIMEOUT, IDLE_TIMEOUT_SECONDS, REAP_INTERVAL_SECONDS, ROOM_CAPACITY
from errors import InvalidMessage
from events import CONNECTION_READY, Outbound, now_iso
from hub import ConnectionHub
from logging_config import get_logger
from presence import PresenceNotifier
from reaper import IdleReaper, ReapResult
from schemas.signaling import InboundMessage
from signaling import SignalingRouter

logger = get_logger(__name__)

signaling_router = APIRouter(tags=["signaling"])

# Process-wide signaling state. Everything below is only mutated from
# synchronous code on the event loop, so no locking is needed.
registry = ConnectionRegistry()
rooms = RoomTable(capacity=ROOM_CAPACITY)
presence = PresenceNotifier(registry, rooms)
relay = SignalingRouter(registry, rooms, presence)
reaper = IdleReaper(registry, rooms, presence, interval=REAP_INTERVAL_SECONDS, threshold=IDLE_TIMEOUT_SECONDS)
hub = ConnectionHub()


async def apply_sweep(result: ReapResult):
    """Deliver departure notices for evicted connections, then drop their sockets."""
    await hub.deliver(result.outbound)
    for connection_id in result.evicted:
        await hub.close(connection_id, code=CLOSE_IDLE_TIMEOUT, reason="Inactive")


def handle_frame(connection_id: str, raw: str) -> list[Outbound]:
    try:
        message = InboundMessage.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError):
        registry.touch(connection_id)
        error = InvalidMessage("Messages must be JSON objects with an 'event' field")
        logger.warning(f"Rejected malformed frame from {connection_id}")
        return [relay.error(connection_id, error.message, error.code)]
    return relay.dispatch(connection_id, message.event, message.data)


@signaling_router.websocket("/ws")
async def signaling_endpoint(websocket: WebSocket):
    """Signaling channel for one client.

    Frames in both directions are JSON objects: {"event": ..., "data": {...}}.
    The first frame sent is connection:ready, carrying the server-assigned id.
    """
    connection_id = str(uuid.uuid4())
    await websocket.accept()
    hub.add(connection_id, websocket)
    relay.connect(connection_id)

    try:
        await hub.send(Outbound(connection_id, CONNECTION_READY, {
            "socketId": connection_id,
            "timestamp": now_iso(),
        }))

        message_count = 0
        while True:
            try:
                raw = await websocket.receive_text()
            except WebSocketDisconnect:
                logger.info(f"WebSocket disconnected normally for connection {connection_id}")
                break
            except Exception as e:
                if connection_id not in hub:
                    # Closed by the idle reaper
                    logger.debug(f"Receive loop ended for evicted connection {connection_id}")
                else:
                    logger.error(f"Error receiving message from connection {connection_id}: {e}", exc_info=True)
                break

            message_count += 1
            logger.debug(f"Received message #{message_count} from connection {connection_id}")
            await hub.deliver(handle_frame(connection_id, raw))

    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
    finally:
        hub.remove(connection_id)
        await hub.deliver(relay.disconnect(connection_id))
        logger.info(f"User disconnected: {connection_id}")
        if websocket.client_state == WebSocketState.CONNECTED and websocket.application_state == WebSocketState.CONNECTED:
            try:
                await websocket.close()
            except Exception as e:
                logger.debug(f"Error closing WebSocket: {e}")
