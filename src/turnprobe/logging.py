"""Logging configuration for turnprobe."""

import logging
from pathlib import Path

from turnprobe.config import Config

# Module-level logger cache
_logger: logging.Logger | None = None

# WebRTC libraries whose records share the turnprobe handlers
LIBRARY_LOGGERS = ("aioice", "aiortc")


def setup_logging(config: Config) -> logging.Logger:
    """Set up logging based on configuration.

    The aioice and aiortc loggers get the same handlers. They only pass
    through their STUN/TURN transaction chatter at DEBUG; otherwise they
    are held to warnings.

    Args:
        config: Configuration object with log settings.

    Returns:
        Configured logger instance.
    """
    global _logger

    if _logger is not None:
        return _logger

    level = getattr(logging, config.log_level.upper(), logging.INFO)
    logger = logging.getLogger("turnprobe")
    logger.setLevel(level)

    logger.handlers.clear()

    # Log format: 2025-01-27 10:30:45 [INFO] message
    # Library records add the logger name: ... [DEBUG] aioice.ice: message
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    formatter.datefmt = "%Y-%m-%d %H:%M:%S"
    library_formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    library_formatter.datefmt = formatter.datefmt

    handlers: list[logging.Handler] = []
    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    # Console goes to stderr so stdout stays a clean report
    handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.propagate = False

    library_level = logging.DEBUG if level <= logging.DEBUG else max(level, logging.WARNING)
    for name in LIBRARY_LOGGERS:
        library_logger = logging.getLogger(name)
        library_logger.handlers.clear()
        library_logger.setLevel(library_level)
        for handler in handlers:
            library_handler = _clone_handler(handler)
            library_handler.setFormatter(library_formatter)
            library_logger.addHandler(library_handler)
        library_logger.propagate = False

    _logger = logger
    return logger


def _clone_handler(handler: logging.Handler) -> logging.Handler:
    if isinstance(handler, logging.FileHandler):
        return logging.FileHandler(handler.baseFilename)
    return logging.StreamHandler()


def reset_logging() -> None:
    """Reset logging state. Used for testing."""
    global _logger
    if _logger is not None:
        _logger.handlers.clear()
        _logger.propagate = True
        for name in LIBRARY_LOGGERS:
            library_logger = logging.getLogger(name)
            for handler in library_logger.handlers:
                handler.close()
            library_logger.handlers.clear()
            library_logger.setLevel(logging.NOTSET)
            library_logger.propagate = True
        _logger = None
