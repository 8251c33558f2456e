# src/deckchat/core/logging.py
from __future__ import annotations

import datetime as dt
import logging
import os
import sys
from typing import Tuple

from deckchat.core.ctx import get_ctx

# Context fields we want present on every record
CTX_FIELDS: Tuple[str, ...] = (
    "document_id",
    "turn_id",
)

# Keep a handle to the original factory
_old_factory = logging.getLogRecordFactory()


def _record_factory(*args, **kwargs):
    """
    Global LogRecord factory that attaches turn context to *every* record,
    so formatters like '%(document_id)s' won't explode for third-party logs.
    """
    rec: logging.LogRecord = _old_factory(*args, **kwargs)
    ctx = get_ctx()

    for f in CTX_FIELDS:
        if not hasattr(rec, f):
            rec.__dict__[f] = ctx.get(f)

    return rec


logging.setLogRecordFactory(_record_factory)


class _SafeFormatter(logging.Formatter):
    """ISO8601 UTC timestamps and resilience to missing context fields."""
    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "asctime"):
            record.asctime = dt.datetime.now(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        for f in CTX_FIELDS:
            if not hasattr(record, f):
                record.__dict__[f] = None
        return super().format(record)


def _build_handler() -> logging.Handler:
    h = logging.StreamHandler(sys.stdout)
    fmt = os.getenv(
        "LOG_FORMAT",
        "%(asctime)s %(levelname)s %(name)s "
        "doc=%(document_id)s turn=%(turn_id)s "
        "msg=%(message)s"
    )
    h.setFormatter(_SafeFormatter(fmt))
    return h


def _configure_root() -> None:
    root = logging.getLogger()
    if not root.handlers:
        root.addHandler(_build_handler())
    root.setLevel(os.getenv("LOG_LEVEL", "INFO"))

    # Calm down noisy libs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


# Configure at import time so even early third-party logs are safe
_configure_root()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
