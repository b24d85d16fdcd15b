"""
Logging setup shared by the CLI and long-running scheduler.

Library modules only create named loggers; handlers are attached here.
"""

import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logger(
    name: str = "ai_incident_guard",
    level: str = "INFO",
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Attach console (and optionally file) handlers to the package logger.

    Calling it again does not add duplicate handlers.

    Args:
        name: Logger name, normally the package root
        level: Level name such as "INFO" or "DEBUG"
        log_file: Optional path of a log file

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(numeric_level)

    if not logger.handlers:
        formatter = logging.Formatter(LOG_FORMAT)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(numeric_level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger
