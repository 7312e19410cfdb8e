"""
Structured JSON logging.
Outputs JSON lines in production, human-readable in development.
"""
import logging
import sys

import json_log_formatter

_DROPPED_FIELDS = ("process", "processName", "thread", "threadName", "pathname")


class JsonFormatter(json_log_formatter.VerboseJSONFormatter):
    """VerboseJSONFormatter minus process/thread noise; `extra` fields are kept."""

    def json_record(self, message, extra, record):
        payload = super().json_record(message, extra, record)
        for key in _DROPPED_FIELDS:
            payload.pop(key, None)
        return payload


def setup_logging(env: str = "production", level: str = "INFO") -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)

    if env == "production":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Quiet noisy libraries
    for lib in ("aiohttp", "asyncio"):
        logging.getLogger(lib).setLevel(logging.WARNING)
