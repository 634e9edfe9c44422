from __future__ import annotations

import json
import logging
import os
import sys
import time
from typing import Optional


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line:
      { "t": 1700000000000, "lvl": "INFO", "name": "scanner.domains", "msg": "text", "extra": {...} }
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "t": int(time.time() * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if hasattr(record, "extra") and isinstance(record.extra, dict):  # type: ignore[attr-defined]
            payload["extra"] = record.extra  # type: ignore[attr-defined]
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines for local runs; structured context appended as key=value."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s", "%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        line = super().format(record)
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict) and extra:
            line += " " + " ".join(f"{k}={v}" for k, v in extra.items())
        return line


def _level_from_name(name: str) -> int:
    lvl = getattr(logging, name.upper(), None)
    return lvl if isinstance(lvl, int) else logging.INFO


def _formatter(name: str) -> logging.Formatter:
    return TextFormatter() if name.lower() == "text" else JsonFormatter()


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """
    Configure the root logger once.
    Level precedence:
      - explicit `level` arg
      - env LOG_LEVEL (DEBUG/INFO/WARNING/ERROR)
      - default INFO
    Format: explicit `fmt` ("json" | "text"), else env LOG_FORMAT, else json.
    """
    root = logging.getLogger()
    lvl = _level_from_name(level or os.environ.get("LOG_LEVEL") or "INFO")
    if getattr(root, "_squigrank_configured", False):
        # already configured (e.g. by an import-time get_logger); only honour explicit args
        if level:
            root.setLevel(lvl)
        if fmt:
            for h in root.handlers:
                if isinstance(h.formatter, (JsonFormatter, TextFormatter)):
                    h.setFormatter(_formatter(fmt))
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_formatter(fmt or os.environ.get("LOG_FORMAT") or "json"))

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(lvl)
    # urllib3 logs every retry/connection at DEBUG; keep it out of scan logs
    logging.getLogger("urllib3").setLevel(max(lvl, logging.WARNING))
    root._squigrank_configured = True  # type: ignore[attr-defined]


def get_logger(name: str) -> logging.Logger:
    """Get a module logger; ensures root is configured."""
    setup_logging()
    return logging.getLogger(name)
