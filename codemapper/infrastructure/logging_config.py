"""Logging setup shared by the headless CLI and the interactive API."""

from __future__ import annotations

import json
import logging
import time

_configured = False


class _JsonFormatter(logging.Formatter):
    """Format log records as JSON with timestamp, level, message, and extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        obj = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S.000Z", time.gmtime(record.created)),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        if hasattr(record, "run_id"):
            obj["run_id"] = record.run_id
        if hasattr(record, "operation_name"):
            obj["operation_name"] = record.operation_name
        if record.exc_info:
            obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(obj, ensure_ascii=False)


def configure_logging(log_format: str = "", level: int = logging.INFO) -> None:
    """Configure root logging once: JSON lines when log_format == "json", plain text otherwise."""
    global _configured
    if _configured:
        return
    if (log_format or "").strip().lower() == "json":
        for h in logging.root.handlers[:]:
            logging.root.removeHandler(h)
        handler = logging.StreamHandler()
        handler.setFormatter(_JsonFormatter())
        logging.root.addHandler(handler)
        logging.root.setLevel(level)
    else:
        logging.basicConfig(level=level, format="%(asctime)s %(levelname)-7s %(name)s: %(message)s")
    # httpx logs every request at INFO; keep batch progress readable.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True
