from __future__ import annotations

import json
import logging
import os
import sys
import time
from typing import Any, Dict, Optional

LOGGER_NAME = "orats_mcp"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def now_ms() -> int:
    return int(time.time() * 1000)


def configure_logging(level: str = "info") -> logging.Logger:
    """
    Attach a single stderr handler to the service logger.

    stdout is reserved for the stdio transport, so events always go to stderr.
    Calling this more than once only adjusts the level.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(_LEVELS.get(level.strip().lower(), logging.INFO))
    if not any(getattr(h, "_orats_mcp", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(message)s"))
        handler._orats_mcp = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
        logger.propagate = False
    return logger


def build_log_context(**fields: Any) -> Dict[str, Any]:
    ctx: Dict[str, Any] = {"service": os.getenv("SERVICE_NAME", "orats-mcp-server")}
    ctx.update({k: v for k, v in fields.items() if v is not None})
    return ctx


def log_event(
    event: str,
    *,
    ctx: Optional[Dict[str, Any]] = None,
    data: Optional[Dict[str, Any]] = None,
    level: str = "info",
) -> None:
    """
    Emit one structured (JSON) log line.
    """
    logger = logging.getLogger(LOGGER_NAME)
    lvl = _LEVELS.get(level, logging.INFO)
    if not logger.isEnabledFor(lvl):
        return
    record: Dict[str, Any] = {"ts_ms": now_ms(), "event": event}
    record.update(ctx or {})
    record["data"] = data or {}
    logger.log(lvl, json.dumps(record, sort_keys=True, default=str))
