"""
Logging setup for the air-cargo service.
"""

import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO", logger_name: str = "aircargo") -> logging.Logger:
    """
    Install a single timestamped stream handler on the package logger.

    Calling this more than once replaces the level but never stacks handlers.
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler: Optional[logging.Handler] = next(
        (h for h in logger.handlers if getattr(h, "_aircargo_handler", False)), None
    )
    if handler is None:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._aircargo_handler = True
        logger.addHandler(handler)

    return logger
