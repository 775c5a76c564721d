from __future__ import annotations

from fastapi import FastAPI, HTTPException

from vision_console.api.routers import companies, identity, visions
from vision_console.infra.audit import AuditMiddleware
from vision_console.infra.db import check_db_ready
from vision_console.infra.logging import configure_logging
from vision_console.infra.redis_state import check_redis_ready

configure_logging()

app = FastAPI(
    title="vision-console",
    description="Per-client company visions with access-scoped membership and uniqueness rules.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(identity.router, prefix="/api/identity", tags=["identity"])
app.include_router(companies.router, prefix="/api/clients/{client_id}", tags=["companies"])
app.include_router(visions.router, prefix="/api/clients/{client_id}", tags=["visions"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    redis_ok = check_redis_ready()
    checks = {
        "db": "ok" if db_ok else "fail",
        "redis": "ok" if redis_ok else "fail",
    }
    if not (db_ok and redis_ok):
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
