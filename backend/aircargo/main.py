"""
Main entry point for the air cargo booking API.
"""

import logging
import os

import uvicorn

from aircargo.api import create_app
from aircargo.utils.config import get_config
from aircargo.utils.logging_config import configure_logging

logger = logging.getLogger(__name__)


def main() -> int:
    """Load configuration and serve the API with uvicorn."""
    try:
        config = get_config()
    except ValueError as e:
        logging.basicConfig()
        logger.error(f"Failed to start: {e}")
        return 1

    configure_logging(config.log_level)
    logger.info("Configuration loaded successfully")

    app = create_app(config)
    uvicorn.run(
        app,
        host=os.getenv("CARGO_HOST", "0.0.0.0"),
        port=int(os.getenv("CARGO_PORT", "8000")),
        log_level=config.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
