import uvicorn
from constants import HOST, LOG_FILE, LOG_LEVEL, PORT, RELOAD, WS_MAX_SIZE
from logging_config import setup_logging

# Setup logging before importing app
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)

from app import app
from logging_config import get_logger

logger = get_logger(__name__)


def main():
    logger.info(f"Starting meshrelay signaling server on {HOST}:{PORT}")
    if RELOAD:
        uvicorn.run("app:app", host=HOST, port=PORT, reload=True, ws_max_size=WS_MAX_SIZE)
    else:
        uvicorn.run(app, host=HOST, port=PORT, ws_max_size=WS_MAX_SIZE)


if __name__ == "__main__":
    main()
