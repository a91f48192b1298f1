from __future__ import annotations

import logging
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from rbac_engine.domain.models import AuditLog, UserSession, now_utc
from rbac_engine.infra.db import RbacStore

logger = logging.getLogger(__name__)

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
UNAUDITED_PATHS = {"/healthz", "/readyz"}


def write_audit_log(
    store: RbacStore,
    *,
    tenant_id: str,
    actor_id: str | None,
    action: str,
    resource: str,
    method: str,
    status_code: int,
    detail: dict[str, Any] | None = None,
) -> AuditLog:
    log = AuditLog(
        tenant_id=tenant_id,
        actor_id=actor_id,
        action=action,
        resource=resource,
        method=method,
        status_code=status_code,
        detail=detail or {},
    )
    with store.session() as session:
        session.add(log)
        session.commit()
        session.refresh(log)
    return log


def _status_outcome(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code in {401, 403, 404}:
        return "denied"
    if status_code >= 400:
        return "rejected"
    return "success"


def should_audit_request(method: str, path: str) -> bool:
    return method in WRITE_METHODS and path not in UNAUDITED_PATHS


class AuditMiddleware(BaseHTTPMiddleware):
    """Records who changed what and when for every write request.

    The audit trail sits beside the stores; a failed audit write is logged and
    never turns a completed request into an error.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        path = request.url.path
        method = request.method
        if not should_audit_request(method, path):
            return response

        store = getattr(request.app.state, "store", None)
        if store is None:
            return response
        session = getattr(request.state, "session", None)
        tenant_id = "system"
        actor_id: str | None = None
        scope: str | None = None
        if isinstance(session, UserSession):
            tenant_id = session.tenant_id or "system"
            actor_id = session.id
            scope = session.scope.value

        route = request.scope.get("route")
        route_path = getattr(route, "path", path)
        detail: dict[str, Any] = {
            "who": {"tenant_id": tenant_id, "actor_id": actor_id, "scope": scope},
            "when": {"request_ts": now_utc().isoformat()},
            "where": {
                "path": path,
                "route": route_path,
                "client_ip": request.client.host if request.client is not None else None,
            },
            "result": {
                "status_code": response.status_code,
                "outcome": _status_outcome(response.status_code),
            },
        }
        try:
            write_audit_log(
                store,
                tenant_id=tenant_id,
                actor_id=actor_id,
                action=f"{method}:{route_path}",
                resource=path,
                method=method,
                status_code=response.status_code,
                detail=detail,
            )
        except Exception:
            logger.exception("audit write failed for %s %s", method, path)
        return response
