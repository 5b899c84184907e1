from __future__ import annotations

import json
import logging
import sys
from typing import IO

ROOT_LOGGER = "cellttl"

# Attributes passed through ``extra=`` that the JSON formatter keeps.
_CONTEXT_FIELDS = ("table", "row_key", "column", "shard")


class JSONFormatter(logging.Formatter):
    """One JSON object per line, timestamps in epoch milliseconds."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts_ms": int(record.created * 1000),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for name in _CONTEXT_FIELDS:
            if hasattr(record, name):
                payload[name] = getattr(record, name)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Attach a handler to the ``cellttl`` logger and return it.

    Does nothing beyond returning the logger when a handler is already
    attached, so libraries embedding cellttl can call it freely.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    handler = logging.StreamHandler(stream or sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        ))
    logger.addHandler(handler)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger under the cellttl namespace."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
