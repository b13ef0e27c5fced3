from __future__ import annotations

import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Mapping

from ..middlewares import principal_ctx_var, request_id_ctx_var

# Name of the ledger operation (``add``, ``issue``, ``edit`` ...) being run, so
# log lines from the crud layer can be tied to the operation that caused them.
ledger_operation_ctx_var: ContextVar[str | None] = ContextVar("ledger_operation", default=None)


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line, stamped with service, request and ledger context."""

    def __init__(self, *, service: str | None = None, env: str | None = None) -> None:
        super().__init__()
        self.service = service
        self.env = env

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.service:
            payload["service"] = self.service
        if self.env:
            payload["env"] = self.env
        for key, var in (
            ("request_id", request_id_ctx_var),
            ("principal", principal_ctx_var),
            ("operation", ledger_operation_ctx_var),
        ):
            value = var.get()
            if value:
                payload[key] = value
        extra = getattr(record, "extra_data", None)
        if isinstance(extra, Mapping):
            payload.update(extra)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), default=str)


def setup_logging(level: str = "INFO", *, service: str | None = None, env: str | None = None) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter(service=service, env=env))
    logging.root.handlers = [handler]
    logging.root.setLevel(level.upper())
