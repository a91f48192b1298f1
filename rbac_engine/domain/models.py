from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, func, text
from sqlmodel import Field, SQLModel

from rbac_engine.domain.errors import InvalidScopeError


def now_utc() -> datetime:
    return datetime.now(UTC)


class Scope(StrEnum):
    BACKOFFICE = "BACKOFFICE"
    PORTAL = "PORTAL"


class UserStatus(StrEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class PermissionSource(StrEnum):
    ROLE = "role"
    OVERRIDE_GRANT = "override-grant"
    OVERRIDE_DENY = "override-deny"


def validate_scope_tenant(scope: Scope, tenant_id: str | None) -> str | None:
    """Return the normalized tenant id for ``scope``.

    PORTAL entities belong to exactly one tenant; BACKOFFICE entities never
    carry one. Blank strings count as missing.
    """
    normalized = tenant_id.strip() if isinstance(tenant_id, str) else None
    normalized = normalized or None
    if scope == Scope.PORTAL and normalized is None:
        raise InvalidScopeError("portal entities require a tenant_id")
    if scope == Scope.BACKOFFICE and normalized is not None:
        raise InvalidScopeError("backoffice entities cannot carry a tenant_id")
    return normalized


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Role(SQLModel, table=True):
    __tablename__ = "roles"
    __table_args__ = (Index("ix_roles_scope_tenant", "scope", "tenant_id"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True)
    description: str | None = None
    scope: Scope = Field(index=True)
    tenant_id: str | None = Field(default=None, index=True)
    permissions: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str
    email: str = Field(index=True)
    scope: Scope = Field(index=True)
    tenant_id: str | None = Field(default=None, index=True)
    role_id: str | None = Field(default=None, foreign_key="roles.id", index=True)
    overrides: dict[str, bool] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    status: UserStatus = Field(default=UserStatus.ACTIVE)
    phone: str | None = None
    job_title: str | None = None
    is_scope_admin: bool = Field(default=False)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


# BACKOFFICE users carry a NULL tenant; coalesce keeps them unique too.
Index(
    "ux_users_scope_tenant_email",
    User.__table__.c.scope,  # type: ignore[attr-defined]
    func.coalesce(User.__table__.c.tenant_id, text("''")),  # type: ignore[attr-defined]
    User.__table__.c.email,  # type: ignore[attr-defined]
    unique=True,
)


class Permission(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    scope: Scope
    module: str
    action: str
    description: str


class RouteAccessEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    scope: Scope
    permissions: tuple[str, ...] = ()


class UserSession(BaseModel):
    id: str
    name: str
    email: str
    scope: Scope
    tenant_id: str | None = None
    is_admin_master: bool = False
    is_client_admin: bool = False
    permissions: list[str] = PydanticField(default_factory=list)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class RoleCreate(BaseModel):
    name: str
    description: str | None = None
    scope: Scope
    tenant_id: str | None = None
    permissions: list[str] = PydanticField(default_factory=list)


class RoleCreateRequest(BaseModel):
    name: str
    description: str | None = None
    permissions: list[str] = PydanticField(default_factory=list)


class RoleUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    permissions: list[str] | None = None


class RoleRead(ORMReadModel):
    id: str
    name: str
    description: str | None = None
    scope: Scope
    tenant_id: str | None = None
    permissions: list[str]
    created_at: datetime
    updated_at: datetime


class UserCreate(BaseModel):
    name: str
    email: str
    scope: Scope
    tenant_id: str | None = None
    role_id: str | None = None
    status: UserStatus = UserStatus.ACTIVE
    phone: str | None = None
    job_title: str | None = None
    is_scope_admin: bool = False


class UserCreateRequest(BaseModel):
    name: str
    email: str
    role_id: str | None = None
    status: UserStatus = UserStatus.ACTIVE
    phone: str | None = None
    job_title: str | None = None
    is_scope_admin: bool = False


class UserUpdate(BaseModel):
    name: str | None = None
    role_id: str | None = None
    status: UserStatus | None = None
    phone: str | None = None
    job_title: str | None = None


class UserRead(ORMReadModel):
    id: str
    name: str
    email: str
    scope: Scope
    tenant_id: str | None = None
    role_id: str | None = None
    overrides: dict[str, bool]
    status: UserStatus
    phone: str | None = None
    job_title: str | None = None
    is_scope_admin: bool
    created_at: datetime
    updated_at: datetime


class RoleAssignRequest(BaseModel):
    role_id: str | None = None


class Override(BaseModel):
    user_id: str
    permission_key: str
    allowed: bool


class OverrideChange(BaseModel):
    permission_key: str
    allowed: bool | None


class OverrideBatchRequest(BaseModel):
    changes: list[OverrideChange] = PydanticField(default_factory=list)


class OverrideSetRequest(BaseModel):
    allowed: bool


class EffectivePermission(BaseModel):
    key: str
    module: str
    action: str
    description: str
    allowed: bool
    source: PermissionSource
    inherited: bool
    has_override: bool


class SignInRequest(BaseModel):
    email: str
    password: str
    remember_me: bool = False


class SessionTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    session: UserSession


class AccessCheckRequest(BaseModel):
    permissions: list[str] = PydanticField(default_factory=list)
    mode: Literal["any", "all"] = "any"


class AccessDecisionRead(BaseModel):
    allowed: bool


class RouteAccessRead(BaseModel):
    path: str
    scope: Scope
    permissions: list[str]
    allowed: bool
