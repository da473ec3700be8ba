# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Structured Logging — One JSON line per record, tagged with tenant and entity.

Services log through `tenant_logger(logger, ctx)`, which stamps the caller's
tenant, business and trace id on every record. Entity keys such as
`logical_id` are passed per call via `extra=`.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, MutableMapping, Tuple

from consent_vault.core.tenant import TenantContext

CONTEXT_KEYS = (
    "trace_id",
    "tenant_id",
    "business_id",
    "logical_id",
    "collection",
    "partition",
)

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s %(message)s"

# Access lines duplicate the TraceMiddleware output.
_QUIET_LOGGERS = ("uvicorn.access",)


class StructuredFormatter(logging.Formatter):
    """JSON formatter: fixed envelope, known context keys, error kind when present."""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return stamp.isoformat(timespec="milliseconds")

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            kind = getattr(record.exc_info[1], "kind", None)
            if kind is not None:
                log_entry["error_kind"] = getattr(kind, "value", str(kind))
            log_entry["exception"] = self.formatException(record.exc_info)

        # Context values may be enums or datetimes.
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class TenantLogAdapter(logging.LoggerAdapter):
    """Adds the bound tenant fields to every record; per-call `extra` wins on overlap."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any],
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def tenant_logger(logger: logging.Logger, ctx: TenantContext) -> TenantLogAdapter:
    extra = ctx.log_extra()
    if ctx.business_id:
        extra["business_id"] = ctx.business_id
    return TenantLogAdapter(logger, extra)


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Route every logger to stdout, as JSON lines or (fmt="text") plain text."""
    handler = logging.StreamHandler(sys.stdout)
    if fmt == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    else:
        handler.setFormatter(StructuredFormatter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))
