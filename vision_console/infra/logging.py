from __future__ import annotations

import logging
import os

from vision_console.infra.request_context import get_client_id, get_operator_id

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [operator=%(operator_id)s client=%(client_id)s] %(message)s"


class RequestContextFilter(logging.Filter):
    """Stamp the acting operator and client on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.operator_id = get_operator_id() or "-"
        record.client_id = get_client_id() or "-"
        return True


def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger("vision_console")
    if any(isinstance(item, RequestContextFilter) for handler in root.handlers for item in handler.filters):
        root.setLevel((level or LOG_LEVEL).upper())
        return
    handler = logging.StreamHandler()
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel((level or LOG_LEVEL).upper())
    root.propagate = False
