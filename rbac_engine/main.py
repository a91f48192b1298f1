from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request

from rbac_engine.api.routers import access, catalog, identity, roles, users
from rbac_engine.infra.audit import AuditMiddleware
from rbac_engine.infra.db import RbacStore, check_db_ready
from rbac_engine.infra.redis_state import SessionRegistry, check_redis_ready

logger = logging.getLogger(__name__)


def create_app(
    store: RbacStore | None = None,
    sessions: SessionRegistry | None = None,
) -> FastAPI:
    app = FastAPI(
        title="rbac-engine",
        description="Scoped, multi-tenant role-based access control for BACKOFFICE and PORTAL users.",
        version="0.1.0",
    )
    app.state.store = store or RbacStore()
    app.state.sessions = sessions or SessionRegistry()

    app.add_middleware(AuditMiddleware)

    app.include_router(identity.router, prefix="/api/identity", tags=["identity"])
    app.include_router(catalog.router, prefix="/api/catalog", tags=["catalog"])
    app.include_router(roles.router, prefix="/api/roles", tags=["roles"])
    app.include_router(users.router, prefix="/api/users", tags=["users"])
    app.include_router(access.router, prefix="/api/access", tags=["access"])

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/readyz")
    def readyz(request: Request) -> dict[str, object]:
        db_ok = check_db_ready(request.app.state.store.engine)
        redis_ok = check_redis_ready()
        checks = {
            "db": "ok" if db_ok else "fail",
            "redis": "ok" if redis_ok else "fail",
        }
        if not (db_ok and redis_ok):
            logger.warning("readiness check failed: %s", checks)
            raise HTTPException(
                status_code=503,
                detail={"status": "not_ready", "checks": checks},
            )
        return {"status": "ready", "checks": checks}

    return app


app = create_app()
