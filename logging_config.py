# logging_config.py
from __future__ import annotations

import logging
import sys

from request_context import get_request_id

APP_LOGGERS = ("app", "engine", "llm", "places", "rewards", "stores")

class RequestIdFilter(logging.Filter):
    """Stamp every record with the current request id unless 'extra' already set one."""
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = get_request_id()
        return True

def setup_logging(level: int | str = logging.INFO) -> None:
    root = logging.getLogger()
    root.setLevel(level)

    # Ensure there is a stdout handler; reuse existing if present
    handler = None
    for h in root.handlers:
        if isinstance(h, logging.StreamHandler):
            handler = h
            break

    fmt = "%(asctime)s %(levelname)s %(name)s [%(process)d] [rid=%(request_id)s] %(message)s"

    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(fmt))
        handler.addFilter(RequestIdFilter())
        root.addHandler(handler)
    else:
        handler.setFormatter(logging.Formatter(fmt))
        has_filter = any(isinstance(f, RequestIdFilter) for f in getattr(handler, "filters", []))
        if not has_filter:
            handler.addFilter(RequestIdFilter())

    for name in APP_LOGGERS:
        lg = logging.getLogger(name)
        lg.setLevel(level)
        lg.propagate = True

    # Library chatter: keep request lines, drop per-connection debug noise
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.INFO)
