from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from rbac_engine.api.deps import CurrentSession
from rbac_engine.domain.access import assert_tenant, can_access_path, has_all, has_any
from rbac_engine.domain.models import AccessCheckRequest, AccessDecisionRead, RouteAccessRead
from rbac_engine.domain.routes import DEFAULT_ROUTE_TABLE

router = APIRouter()


@router.post("/check", response_model=AccessDecisionRead)
def check_permissions(payload: AccessCheckRequest, session: CurrentSession) -> AccessDecisionRead:
    if payload.mode == "all":
        return AccessDecisionRead(allowed=has_all(session, payload.permissions))
    return AccessDecisionRead(allowed=has_any(session, payload.permissions))


@router.get("/route", response_model=RouteAccessRead)
def check_route(path: str, session: CurrentSession) -> RouteAccessRead:
    entry = DEFAULT_ROUTE_TABLE.by_path(path)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="route not found")
    return RouteAccessRead(
        path=path,
        scope=entry.scope,
        permissions=list(entry.permissions),
        allowed=can_access_path(session, path, DEFAULT_ROUTE_TABLE),
    )


@router.get("/tenants/{tenant_id}", response_model=AccessDecisionRead)
def check_tenant(tenant_id: str, session: CurrentSession) -> AccessDecisionRead:
    return AccessDecisionRead(allowed=assert_tenant(session, tenant_id))
