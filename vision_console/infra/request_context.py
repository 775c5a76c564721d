from __future__ import annotations

from contextvars import ContextVar

operator_id_ctx: ContextVar[str | None] = ContextVar("operator_id", default=None)
client_id_ctx: ContextVar[str | None] = ContextVar("client_id", default=None)


def set_operator_context(operator_id: str | None) -> None:
    operator_id_ctx.set(operator_id)


def set_client_context(client_id: str | None) -> None:
    client_id_ctx.set(client_id)


def get_operator_id() -> str | None:
    return operator_id_ctx.get()


def get_client_id() -> str | None:
    return client_id_ctx.get()
