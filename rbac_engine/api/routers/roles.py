from __future__ import annotations

from fastapi import APIRouter, HTTPException, Response, status

from rbac_engine.api.deps import ManagerSession, Roles, http_error
from rbac_engine.domain.errors import NotFoundError, RbacError
from rbac_engine.domain.models import Role, RoleCreate, RoleCreateRequest, RoleRead, RoleUpdate, UserSession
from rbac_engine.services.role_service import RoleService

router = APIRouter()


def _scoped_role(service: RoleService, session: UserSession, role_id: str) -> Role:
    try:
        role = service.get_role(role_id)
    except NotFoundError as exc:
        raise http_error(exc) from exc
    if role.scope != session.scope or role.tenant_id != session.tenant_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="role not found")
    return role


@router.get("", response_model=list[RoleRead])
def list_roles(session: ManagerSession, service: Roles) -> list[RoleRead]:
    roles = service.list_roles(session.scope, session.tenant_id)
    return [RoleRead.model_validate(item) for item in roles if item.tenant_id == session.tenant_id]


@router.post("", response_model=RoleRead, status_code=status.HTTP_201_CREATED)
def create_role(payload: RoleCreateRequest, session: ManagerSession, service: Roles) -> RoleRead:
    try:
        role = service.create_role(
            RoleCreate(
                name=payload.name,
                description=payload.description,
                scope=session.scope,
                tenant_id=session.tenant_id,
                permissions=payload.permissions,
            )
        )
    except RbacError as exc:
        raise http_error(exc) from exc
    return RoleRead.model_validate(role)


@router.get("/{role_id}", response_model=RoleRead)
def get_role(role_id: str, session: ManagerSession, service: Roles) -> RoleRead:
    return RoleRead.model_validate(_scoped_role(service, session, role_id))


@router.patch("/{role_id}", response_model=RoleRead)
def update_role(role_id: str, payload: RoleUpdate, session: ManagerSession, service: Roles) -> RoleRead:
    _scoped_role(service, session, role_id)
    try:
        role = service.update_role(role_id, payload)
    except RbacError as exc:
        raise http_error(exc) from exc
    return RoleRead.model_validate(role)


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_role(role_id: str, session: ManagerSession, service: Roles) -> Response:
    _scoped_role(service, session, role_id)
    try:
        service.delete_role(role_id)
    except RbacError as exc:
        raise http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
