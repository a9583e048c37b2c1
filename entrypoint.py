import sys

import uvicorn
from constants import HOST, PORT, RELOAD, LOG_LEVEL, LOG_FILE
from logging_config import setup_logging

# Setup logging before importing app
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)

from logging_config import get_logger

logger = get_logger(__name__)


def main():
    logger.info(f"Starting signaling server on {HOST}:{PORT}")
    try:
        uvicorn.run("app:app", host=HOST, port=PORT, reload=RELOAD, log_config=None)
    except Exception as e:
        # No durable state: exit and let the supervisor restart us
        logger.critical(f"Signaling server crashed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
