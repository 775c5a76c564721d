from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlmodel import Session, create_engine

from vision_console.domain.errors import TransientIOError

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg://console:console@db:5432/vision_console",
)

engine = create_engine(DATABASE_URL, pool_pre_ping=True)

logger = logging.getLogger(__name__)


def get_engine() -> Engine:
    return engine


def open_session() -> Session:
    return Session(get_engine(), expire_on_commit=False)


def is_transient_error(exc: BaseException) -> bool:
    """Unreachable store, dropped connection, lock timeout and similar retryable failures."""
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


@contextmanager
def store_errors(action: str) -> Iterator[None]:
    """Re-raise retryable store failures as ``TransientIOError``; everything else propagates."""
    try:
        yield
    except SQLAlchemyError as exc:
        if not is_transient_error(exc):
            raise
        logger.warning("store unavailable while %s: %s", action, exc)
        raise TransientIOError(f"store unavailable while {action}") from exc


def check_db_ready() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
