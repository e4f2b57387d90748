import logging
import sys


def setup_logging(level: str | int = "INFO") -> logging.Logger:
    """Configure the ``inferhub`` logger hierarchy to log to stdout."""
    _logger = logging.getLogger("inferhub")

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    _logger.setLevel(level)

    if _logger.handlers:
        return _logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_handler.setFormatter(formatter)
    _logger.addHandler(console_handler)
    _logger.propagate = False

    return _logger
