from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from rbac_engine.api.deps import CurrentSession
from rbac_engine.domain.access import can_access_route, can_access_scope
from rbac_engine.domain.models import Permission, RouteAccessRead, Scope, UserSession
from rbac_engine.domain.permissions import DEFAULT_CATALOG
from rbac_engine.domain.routes import DEFAULT_ROUTE_TABLE

router = APIRouter()


def _visible_scope(session: UserSession, scope: Scope | None) -> Scope:
    requested = scope or session.scope
    if not can_access_scope(session, requested):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="scope not accessible")
    return requested


@router.get("/permissions", response_model=list[Permission])
def list_permissions(session: CurrentSession, scope: Scope | None = None) -> list[Permission]:
    return DEFAULT_CATALOG.by_scope(_visible_scope(session, scope))


@router.get("/modules", response_model=dict[str, list[Permission]])
def list_modules(session: CurrentSession, scope: Scope | None = None) -> dict[str, list[Permission]]:
    return DEFAULT_CATALOG.modules(_visible_scope(session, scope))


@router.get("/routes", response_model=list[RouteAccessRead])
def list_routes(session: CurrentSession) -> list[RouteAccessRead]:
    rows: list[RouteAccessRead] = []
    for path in DEFAULT_ROUTE_TABLE.paths_for_scope(session.scope):
        entry = DEFAULT_ROUTE_TABLE.by_path(path)
        if entry is None:
            continue
        rows.append(
            RouteAccessRead(
                path=path,
                scope=entry.scope,
                permissions=list(entry.permissions),
                allowed=can_access_route(session, entry.scope, entry.permissions),
            )
        )
    return rows
