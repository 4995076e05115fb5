#!/usr/bin/env python
"""Run the webhook receiver and admin API under uvicorn."""
import logging
import os

import uvicorn

from stockrelay.core.logging_config import configure_logging

logger = logging.getLogger("stockrelay.start")


def main():
    configure_logging()
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", 8000))
    logger.info(f"Starting stockrelay on {host}:{port}")

    # Single worker: queue and limiter state live in process memory
    uvicorn.run("stockrelay.main:app", host=host, port=port, workers=1, log_level=os.environ.get("LOG_LEVEL", "info").lower())


if __name__ == "__main__":
    main()
