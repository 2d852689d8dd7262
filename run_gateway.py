import uvicorn
import logging
import os
from dotenv import dotenv_values

# Configure uvicorn loggers to suppress WARNING messages
uvicorn_loggers = [
    logging.getLogger("uvicorn"),
    logging.getLogger("uvicorn.error"),
    logging.getLogger("uvicorn.access"),
    logging.getLogger("uvicorn.asgi"),
]

for uvicorn_logger in uvicorn_loggers:
    # Only show ERROR and CRITICAL
    uvicorn_logger.setLevel(logging.ERROR)
    # Remove handlers to prevent duplicate output
    uvicorn_logger.handlers = []

config = dotenv_values(".env")

# Environment variables take priority over .env
BABEL_HOST = os.getenv("BABEL_HOST", config.get("BABEL_HOST", "0.0.0.0"))
BABEL_PORT = int(os.getenv("BABEL_PORT", config.get("BABEL_PORT", "9000")))

if __name__ == "__main__":
    uvicorn.run(
        "iobabel.node.main:app",
        host=BABEL_HOST,
        port=BABEL_PORT,
        reload=False,
        access_log=False,
        log_config=None
    )
