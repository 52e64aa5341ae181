"""Logger setup for the sales pipeline."""

import logging
import time

LOGGER_NAME = "sales_ingestion"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
DEFAULT_LEVEL = "INFO"
_CONFIGURED_FLAG = "_sales_ingestion_configured"


def _utc_formatter() -> logging.Formatter:
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%SZ")
    # datefmt ends in Z, so records must be stamped in UTC.
    formatter.converter = time.gmtime
    return formatter


def get_logger(name: str = LOGGER_NAME, level: str | None = None) -> logging.Logger:
    """Return the pipeline logger, attaching one stderr handler on first use.

    The level defaults to INFO when the handler is attached. Later calls only
    change it when `level` is given, so library modules keep the CLI level.
    """
    logger = logging.getLogger(name)
    if not getattr(logger, _CONFIGURED_FLAG, False):
        handler = logging.StreamHandler()
        handler.setFormatter(_utc_formatter())
        logger.addHandler(handler)
        logger.propagate = False
        setattr(logger, _CONFIGURED_FLAG, True)
        logger.setLevel(DEFAULT_LEVEL)

    if level is not None:
        logger.setLevel(level.upper())
    return logger
