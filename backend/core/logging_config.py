"""
Loguru logging configuration with Sentry integration.

Features:
- Structured JSON logging outside development
- Console logging for development
- Correlation ID and component name in every record
- Optional rotating file sink
"""

import sys
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from core.correlation import get_correlation_id

if TYPE_CHECKING:
    from loguru import Record

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[correlation_id]}</cyan> | "
    "<magenta>{extra[component]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


def correlation_filter(record: "Record") -> bool:
    """
    Add correlation ID and component to log record.

    Services bind a component name (``logger.bind(component="retention")``);
    records without one are tagged "app".

    Args:
        record: Loguru log record.

    Returns:
        Always True (filter never drops messages).
    """
    record["extra"]["correlation_id"] = get_correlation_id() or "-"
    record["extra"].setdefault("component", "app")
    return True


def configure_logging(
    environment: str = "development", log_dir: str | None = "logs"
) -> None:
    """
    Configure Loguru for the application.

    Args:
        environment: "development" for console, anything else for JSON.
        log_dir: Directory for the rotating file sink, or None to disable it.
    """
    logger.remove()

    development = environment == "development"

    if development:
        logger.add(
            sys.stderr,
            format=LOG_FORMAT,
            level="DEBUG",
            filter=correlation_filter,
            colorize=True,
        )
    else:
        logger.add(
            sys.stderr,
            format="{message}",
            level="WARNING" if environment == "test" else "INFO",
            filter=correlation_filter,
            serialize=True,
        )

    if log_dir is None or environment == "test":
        return

    logs_dir = Path(log_dir)
    logs_dir.mkdir(exist_ok=True)

    logger.add(
        str(logs_dir / "app.log"),
        format=LOG_FORMAT if development else "{message}",
        level="INFO",
        filter=correlation_filter,
        rotation="10 MB",
        retention="7 days",
        serialize=not development,
    )
