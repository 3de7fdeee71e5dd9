"""Process-wide logging setup."""

import logging
import os

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def setup_logging(level: str = None):
    """Configure root logging once, honoring LOG_LEVEL."""
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )
    # httpx logs every request at INFO; poll loops make that noisy
    logging.getLogger("httpx").setLevel(logging.WARNING)
