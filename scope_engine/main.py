from __future__ import annotations

from fastapi import FastAPI, HTTPException

from scope_engine.api.routers import assignments, hierarchy, scope, tenants
from scope_engine.infra.audit import AuditMiddleware
from scope_engine.infra.db import check_db_ready
from scope_engine.infra.logging import configure_logging
from scope_engine.infra.redis_state import check_redis_ready

configure_logging()

app = FastAPI(
    title="scope-engine",
    description="Tenant entity hierarchy and access-scope resolution.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(tenants.router, prefix="/api/tenants", tags=["tenants"])
app.include_router(hierarchy.router, prefix="/api/hierarchy", tags=["hierarchy"])
app.include_router(assignments.router, prefix="/api/assignments", tags=["assignments"])
app.include_router(scope.router, prefix="/api/scope", tags=["scope"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    # redis only backs the scope cache
    redis_ok = check_redis_ready()
    checks = {
        "db": "ok" if db_ok else "fail",
        "redis": "ok" if redis_ok else "degraded",
    }
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
