"""Loguru sink configuration for processes embedding the recall backend."""

import sys
from pathlib import Path

from loguru import logger

DEFAULT_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
)


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_file: str | Path | None = None,
) -> None:
    """Replace loguru's default sink.

    Args:
        level: Minimum level for all sinks
        json_logs: Emit serialized JSON records on stderr (keeps bound fields
            such as the catch-up `event`)
        log_file: Optional file sink, rotated at 10 MB
    """
    logger.remove()
    if json_logs:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=DEFAULT_FORMAT)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(path, level=level, rotation="10 MB", serialize=json_logs)
