from __future__ import annotations

import logging
import os
from typing import Any, Optional


logger = logging.getLogger("note_suggest")

DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for CLI use. Library callers keep their own setup."""

    name = (level or os.environ.get("NOTE_SUGGEST_LOG_LEVEL") or "WARNING").upper()
    logging.basicConfig(level=getattr(logging, name, logging.WARNING), format=DEFAULT_LOG_FORMAT)


def log_event(level: int, message: str, **data: Any) -> None:
    """Lightweight structured logging helper."""
    if not logger.isEnabledFor(level):
        return
    serialized = " | ".join(f"{k}={v}" for k, v in data.items())
    logger.log(level, f"{message}{' | ' + serialized if serialized else ''}")
