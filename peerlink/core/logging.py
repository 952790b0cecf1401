"""Logging utilities for the peerlink relay and call client."""
import logging
import sys

from peerlink.core.request_context import get_request_id


def configure_logging(
    log_level: str = "INFO", *,
    logger_name: str = "peerlink",
) -> logging.Logger:
    """Configure the root logger and return the application logger.

    Args:
        log_level: Level name such as ``"INFO"`` or ``"debug"``.
        logger_name: Name of the logger to retrieve.

    Returns:
        Configured logger instance.
    """

    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format=(
            "%(asctime)s - %(name)s - %(levelname)s - "
            "[%(filename)s:%(lineno)d] - request_id=%(request_id)s - %(message)s"
        ),
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    old_factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs) -> logging.LogRecord:
        record = old_factory(*args, **kwargs)
        record.request_id = get_request_id() or "system"
        return record

    logging.setLogRecordFactory(record_factory)

    logger = logging.getLogger(logger_name)
    logger.setLevel(level)

    # aiortc/aioice are chatty at INFO during ICE checks
    logging.getLogger("aioice").setLevel(logging.WARNING)
    logging.getLogger("aiortc").setLevel(logging.WARNING)

    logger.debug("Logging configured with level %s", logging.getLevelName(level))
    return logger
