from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from rbac_engine.domain.access import has_permission
from rbac_engine.domain.errors import (
    ConflictError,
    InvalidCredentialsError,
    InvalidPermissionError,
    InvalidScopeError,
    NotFoundError,
    RbacError,
    ScopeMismatchError,
)
from rbac_engine.domain.models import UserSession
from rbac_engine.domain.permissions import MANAGE_USERS_PERMISSION
from rbac_engine.infra.db import RbacStore
from rbac_engine.infra.redis_state import SessionRegistry
from rbac_engine.services.identity_service import DemoIdentityProvider, IdentityProvider
from rbac_engine.services.role_service import RoleService
from rbac_engine.services.user_service import UserService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/identity/sign-in")


def get_store(request: Request) -> RbacStore:
    return request.app.state.store


def get_session_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def get_role_service(store: Annotated[RbacStore, Depends(get_store)]) -> RoleService:
    return RoleService(store)


def get_user_service(store: Annotated[RbacStore, Depends(get_store)]) -> UserService:
    return UserService(store)


def get_identity_provider(
    users: Annotated[UserService, Depends(get_user_service)],
    registry: Annotated[SessionRegistry, Depends(get_session_registry)],
) -> DemoIdentityProvider:
    return DemoIdentityProvider(users, registry)


def get_current_session(
    request: Request,
    identity: Annotated[IdentityProvider, Depends(get_identity_provider)],
    token: str = Depends(oauth2_scheme),
) -> UserSession:
    session = identity.get_session(token)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
        )
    request.state.session = session
    return session


def require_manage_users(
    session: Annotated[UserSession, Depends(get_current_session)],
) -> UserSession:
    permission = MANAGE_USERS_PERMISSION[session.scope]
    if not has_permission(session, permission):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing permission: {permission}",
        )
    return session


def http_error(exc: RbacError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, InvalidPermissionError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(exc), "keys": list(exc.keys)},
        )
    if isinstance(exc, (InvalidScopeError, ScopeMismatchError)):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if isinstance(exc, InvalidCredentialsError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


CurrentSession = Annotated[UserSession, Depends(get_current_session)]
ManagerSession = Annotated[UserSession, Depends(require_manage_users)]
Roles = Annotated[RoleService, Depends(get_role_service)]
Users = Annotated[UserService, Depends(get_user_service)]
Identity = Annotated[DemoIdentityProvider, Depends(get_identity_provider)]
