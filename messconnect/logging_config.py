"""
Application-wide logging configuration.
"""

import logging

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """
    Configure root logging once at startup. Uvicorn picks up the stream handler.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    logging.getLogger(__name__).info("Logging initialized with level %s", level)
