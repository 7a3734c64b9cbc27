import logging
import sys

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Console-only logging for the package logger tree"""
    logger = logging.getLogger("mun_registration")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    # Remove any pre-existing handlers to avoid duplicates
    if logger.hasHandlers():
        logger.handlers.clear()

    logger.addHandler(console_handler)
    return logger
