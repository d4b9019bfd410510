"""
Logging configuration for the application.

Supports per-module log levels via environment variables:
- LOG_LEVEL: Global log level (default: INFO)
- LOG_FORMAT: Log format - simple or structured (default: structured)
- LOG_LEVEL_<MODULE>: Per-module override (e.g., LOG_LEVEL_EXECUTOR=DEBUG)
"""

import logging
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from learnflow.config import Settings


# Module name mapping: settings field suffix -> logger name
MODULE_LOGGERS = {
    "ai_clients": "learnflow.services.ai_clients",
    "executor": "learnflow.services.ai_executor",
    "catalog": "learnflow.services.model_catalog",
    "pipeline": "learnflow.services.pipeline",
    "scheduler": "learnflow.services.recovery",
    "jobs": "learnflow.services.scheduler",
    "quota": "learnflow.services.request_log",
    "api": "learnflow.api",
}

QUIET_LOGGERS = ("httpx", "httpcore", "anthropic", "uvicorn.access")


class StructuredFormatter(logging.Formatter):
    """
    Structured log formatter for easy parsing.

    Format: timestamp | level | logger | message
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record in structured format."""
        # Shorten logger name for readability
        logger_name = record.name
        if logger_name.startswith("learnflow.services."):
            logger_name = logger_name.replace("learnflow.services.", "")
        elif logger_name.startswith("learnflow.api."):
            logger_name = logger_name.replace("learnflow.api.", "api.")
        elif logger_name.startswith("learnflow."):
            logger_name = logger_name.replace("learnflow.", "")

        timestamp = self.formatTime(record, "%Y-%m-%d %H:%M:%S")

        message = (
            f"{timestamp} | "
            f"{record.levelname:8} | "
            f"{logger_name:15} | "
            f"{record.getMessage()}"
        )

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


def parse_level(name: str | None, default: int) -> int:
    """Numeric level for a level name such as "debug"; default if unknown."""
    if not name:
        return default
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else default


def module_levels(settings: "Settings") -> dict[str, int]:
    """
    Per-module level overrides set in settings.

    Returns:
        Logger name -> level, only for modules with an override
    """
    default = parse_level(settings.log_level, logging.INFO)
    levels = {}
    for module_key, logger_name in MODULE_LOGGERS.items():
        value = getattr(settings, f"log_level_{module_key}")
        if value:
            levels[logger_name] = parse_level(value, default)
    return levels


def setup_logging(settings: "Settings") -> None:
    """
    Configure logging based on settings.

    The root logger gets LOG_LEVEL; modules with a LOG_LEVEL_<MODULE>
    override log at their own level, above or below the root level.

    Args:
        settings: Application settings with log configuration
    """
    root_level = parse_level(settings.log_level, logging.INFO)

    if settings.log_format == "structured":
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    for logger_name in MODULE_LOGGERS.values():
        logging.getLogger(logger_name).setLevel(logging.NOTSET)
    for logger_name, level in module_levels(settings).items():
        logging.getLogger(logger_name).setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
