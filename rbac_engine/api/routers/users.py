from __future__ import annotations

from fastapi import APIRouter, HTTPException, Response, status

from rbac_engine.api.deps import Identity, ManagerSession, Users, http_error
from rbac_engine.domain.errors import NotFoundError, RbacError
from rbac_engine.domain.models import (
    EffectivePermission,
    Override,
    OverrideBatchRequest,
    OverrideSetRequest,
    RoleAssignRequest,
    User,
    UserCreate,
    UserCreateRequest,
    UserRead,
    UserSession,
    UserStatus,
    UserUpdate,
)
from rbac_engine.services.user_service import UserService

router = APIRouter()


def _scoped_user(service: UserService, session: UserSession, user_id: str) -> User:
    try:
        user = service.get_user(user_id)
    except NotFoundError as exc:
        raise http_error(exc) from exc
    if user.scope != session.scope or user.tenant_id != session.tenant_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")
    return user


@router.get("", response_model=list[UserRead])
def list_users(session: ManagerSession, service: Users) -> list[UserRead]:
    users = service.list_users(session.scope, session.tenant_id)
    return [UserRead.model_validate(item) for item in users if item.tenant_id == session.tenant_id]


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(payload: UserCreateRequest, session: ManagerSession, service: Users) -> UserRead:
    if payload.is_scope_admin and not (session.is_admin_master or session.is_client_admin):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="only scope administrators can create administrators",
        )
    try:
        user = service.create_user(
            UserCreate(
                **payload.model_dump(),
                scope=session.scope,
                tenant_id=session.tenant_id,
            )
        )
    except RbacError as exc:
        raise http_error(exc) from exc
    return UserRead.model_validate(user)


@router.get("/{user_id}", response_model=UserRead)
def get_user(user_id: str, session: ManagerSession, service: Users) -> UserRead:
    return UserRead.model_validate(_scoped_user(service, session, user_id))


@router.patch("/{user_id}", response_model=UserRead)
def update_user(
    user_id: str,
    payload: UserUpdate,
    session: ManagerSession,
    service: Users,
    identity: Identity,
) -> UserRead:
    _scoped_user(service, session, user_id)
    try:
        user = service.update_user(user_id, payload)
    except RbacError as exc:
        raise http_error(exc) from exc
    if user.status == UserStatus.INACTIVE:
        identity.revoke_sessions(user.id)
    return UserRead.model_validate(user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: str,
    session: ManagerSession,
    service: Users,
    identity: Identity,
) -> Response:
    _scoped_user(service, session, user_id)
    if user_id == session.id:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="cannot delete own account")
    try:
        service.delete_user(user_id)
    except RbacError as exc:
        raise http_error(exc) from exc
    identity.revoke_sessions(user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{user_id}/role", response_model=UserRead)
def assign_role(
    user_id: str,
    payload: RoleAssignRequest,
    session: ManagerSession,
    service: Users,
) -> UserRead:
    _scoped_user(service, session, user_id)
    try:
        user = service.assign_role(user_id, payload.role_id)
    except RbacError as exc:
        raise http_error(exc) from exc
    return UserRead.model_validate(user)


@router.get("/{user_id}/overrides", response_model=list[Override])
def list_overrides(user_id: str, session: ManagerSession, service: Users) -> list[Override]:
    _scoped_user(service, session, user_id)
    return service.list_overrides(user_id)


@router.patch("/{user_id}/overrides", response_model=list[Override])
def apply_overrides(
    user_id: str,
    payload: OverrideBatchRequest,
    session: ManagerSession,
    service: Users,
) -> list[Override]:
    _scoped_user(service, session, user_id)
    try:
        return service.apply_overrides(user_id, payload.changes)
    except RbacError as exc:
        raise http_error(exc) from exc


@router.put("/{user_id}/overrides/{permission_key}", response_model=list[Override])
def set_override(
    user_id: str,
    permission_key: str,
    payload: OverrideSetRequest,
    session: ManagerSession,
    service: Users,
) -> list[Override]:
    _scoped_user(service, session, user_id)
    try:
        service.set_override(user_id, permission_key, payload.allowed)
    except RbacError as exc:
        raise http_error(exc) from exc
    return service.list_overrides(user_id)


@router.delete("/{user_id}/overrides/{permission_key}", status_code=status.HTTP_204_NO_CONTENT)
def remove_override(
    user_id: str,
    permission_key: str,
    session: ManagerSession,
    service: Users,
) -> Response:
    _scoped_user(service, session, user_id)
    service.remove_override(user_id, permission_key)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{user_id}/effective-permissions", response_model=list[EffectivePermission])
def effective_permissions(
    user_id: str,
    session: ManagerSession,
    service: Users,
) -> list[EffectivePermission]:
    _scoped_user(service, session, user_id)
    return service.effective_permissions(user_id)
