"""Process-wide logging setup."""

import logging

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Attach one stream handler to the package logger."""

    logger = logging.getLogger("pricememory")
    logger.setLevel(level.upper())

    # Avoid duplicate handlers when the app or a script is re-initialized.
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(handler)
