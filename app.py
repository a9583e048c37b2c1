from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import asyncio
import os
import signal

from constants import CLOSE_GOING_AWAY, CORS_ORIGINS, LOG_FILE, LOG_LEVEL
from events import SERVER_SHUTDOWN, now_iso
from logging_config import get_logger, setup_logging
from routers.signaling import apply_sweep, hub, reaper, signaling_router

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def _on_reaper_done(task: asyncio.Task):
    if task.cancelled():
        return
    exc = task.exception()
    if exc is None:
        return
    # Faults outside a message handler are fatal
    logger.critical(f"Idle reaper crashed, shutting down: {exc}", exc_info=exc)
    os.kill(os.getpid(), signal.SIGTERM)


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = reaper.start(apply_sweep)
    task.add_done_callback(_on_reaper_done)
    logger.info("Signaling server ready for connections")
    try:
        yield
    finally:
        logger.info(f"Shutting down, closing {len(hub)} connections")
        await reaper.stop()
        await hub.broadcast(SERVER_SHUTDOWN, {
            "message": "Server is shutting down",
            "timestamp": now_iso(),
        })
        await hub.close_all(code=CLOSE_GOING_AWAY, reason="Server shutting down")


app = FastAPI(title="WebRTC Signaling Relay", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(signaling_router)

logger.info("FastAPI application initialized")
