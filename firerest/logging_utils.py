from __future__ import annotations
import logging
import os
import uuid
from contextvars import ContextVar
from typing import Optional

# Per-request correlation ID, set by the request executor around each round trip
correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="-")

_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        # provide %(correlation_id)s to all formatters
        record.correlation_id = correlation_id_ctx.get()
        return True


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        import json, time

        payload = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", "-"),
        }
        return json.dumps(payload, ensure_ascii=True)


_CONFIGURED = False


def _env_truthy(name: str, default: str = "true") -> bool:
    val = os.getenv(name, default)
    return str(val).strip().lower() in {"true", "1", "t", "yes", "y", "on"}


def new_correlation_id() -> str:
    return uuid.uuid4().hex[:12]


def setup_logging(level: Optional[int] = None) -> None:
    """
    Idempotent logging setup that ensures %(correlation_id)s is available in all log lines.
    Library code never calls this; the CLI and applications do.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    filt = CorrelationIdFilter()
    root = logging.getLogger()
    root.addFilter(filt)

    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler.addFilter(filt)
        root.addHandler(handler)
    else:
        for h in list(root.handlers):
            # Ensure formatter includes correlation_id
            fmt = getattr(h.formatter, "_fmt", "") if h.formatter else ""
            if "%(correlation_id)" not in fmt:
                h.setFormatter(logging.Formatter(_FORMAT))
            h.addFilter(filt)
    root.setLevel(level or logging.INFO)

    # Optional: switch to JSON logs
    if _env_truthy("LOG_JSON", "false"):
        for h in root.handlers:
            h.setFormatter(_JsonFormatter())

    # urllib3 logs every connection at DEBUG; keep it quiet unless asked
    if not _env_truthy("LOG_URLLIB3", "false"):
        logging.getLogger("urllib3").setLevel(logging.WARNING)

    _CONFIGURED = True
