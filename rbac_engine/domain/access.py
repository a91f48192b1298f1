"""Access decisions.

Every function here is pure and never raises for a missing session or an
unknown key: both deny. Admin bypass is expressed through the session's
authorization basis instead of ad hoc flag checks, so ``allows`` is the single
place where a key is granted.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from rbac_engine.domain.models import (
    EffectivePermission,
    PermissionSource,
    Role,
    Scope,
    User,
    UserSession,
)
from rbac_engine.domain.permissions import DEFAULT_CATALOG, PermissionCatalog
from rbac_engine.domain.routes import DEFAULT_ROUTE_TABLE, RouteAccessTable


@dataclass(frozen=True)
class StandardGrant:
    permissions: frozenset[str]


@dataclass(frozen=True)
class ScopeSuperAdmin:
    """Holds every catalog key of ``scopes``; explicit grants still apply elsewhere."""

    scopes: frozenset[Scope]
    permissions: frozenset[str]


AuthorizationBasis = StandardGrant | ScopeSuperAdmin


def authorization_basis(session: UserSession) -> AuthorizationBasis:
    bypass: set[Scope] = set()
    if session.is_admin_master:
        bypass.add(Scope.BACKOFFICE)
    if session.is_client_admin:
        bypass.add(Scope.PORTAL)
    permissions = frozenset(session.permissions)
    if bypass:
        return ScopeSuperAdmin(scopes=frozenset(bypass), permissions=permissions)
    return StandardGrant(permissions=permissions)


def allows(
    basis: AuthorizationBasis,
    permission: str,
    catalog: PermissionCatalog = DEFAULT_CATALOG,
) -> bool:
    if isinstance(basis, ScopeSuperAdmin):
        key_scope = catalog.scope_of(permission)
        if key_scope is not None and key_scope in basis.scopes:
            return True
    return permission in basis.permissions


def has_permission(
    session: UserSession | None,
    permission: str,
    catalog: PermissionCatalog = DEFAULT_CATALOG,
) -> bool:
    if session is None:
        return False
    return allows(authorization_basis(session), permission, catalog)


def has_any(
    session: UserSession | None,
    permissions: Sequence[str],
    catalog: PermissionCatalog = DEFAULT_CATALOG,
) -> bool:
    if session is None:
        return False
    basis = authorization_basis(session)
    return any(allows(basis, permission, catalog) for permission in permissions)


def has_all(
    session: UserSession | None,
    permissions: Sequence[str],
    catalog: PermissionCatalog = DEFAULT_CATALOG,
) -> bool:
    if session is None:
        return False
    basis = authorization_basis(session)
    return all(allows(basis, permission, catalog) for permission in permissions)


def can_access_scope(session: UserSession | None, scope: Scope) -> bool:
    if session is None:
        return False
    return session.scope == scope


def assert_tenant(session: UserSession | None, tenant_id: str) -> bool:
    if session is None:
        return False
    if session.scope == Scope.BACKOFFICE:
        # Only the admin master crosses tenants from the backoffice.
        return session.is_admin_master
    return session.tenant_id is not None and session.tenant_id == tenant_id


def can_access_route(
    session: UserSession | None,
    route_scope: Scope,
    route_permissions: Sequence[str],
    catalog: PermissionCatalog = DEFAULT_CATALOG,
) -> bool:
    if not can_access_scope(session, route_scope):
        return False
    if not route_permissions:
        return True
    return has_any(session, route_permissions, catalog)


def can_access_path(
    session: UserSession | None,
    path: str,
    table: RouteAccessTable = DEFAULT_ROUTE_TABLE,
    catalog: PermissionCatalog = DEFAULT_CATALOG,
) -> bool:
    entry = table.by_path(path)
    if entry is None:
        return False
    return can_access_route(session, entry.scope, entry.permissions, catalog)


def effective_permissions(
    user: User,
    role: Role | None,
    catalog: PermissionCatalog = DEFAULT_CATALOG,
) -> list[EffectivePermission]:
    """Resolve every catalog key of the user's scope.

    An override always shadows the role, whichever way it points. Without an
    override the role decides, and a user with no role holds nothing.
    """
    role_keys = set(role.permissions) if role is not None else set()
    rows: list[EffectivePermission] = []
    for permission in catalog.by_scope(user.scope):
        inherited = permission.key in role_keys
        has_override = permission.key in user.overrides
        if has_override:
            allowed = bool(user.overrides[permission.key])
            source = PermissionSource.OVERRIDE_GRANT if allowed else PermissionSource.OVERRIDE_DENY
        else:
            allowed = inherited
            source = PermissionSource.ROLE
        rows.append(
            EffectivePermission(
                key=permission.key,
                module=permission.module,
                action=permission.action,
                description=permission.description,
                allowed=allowed,
                source=source,
                inherited=inherited,
                has_override=has_override,
            )
        )
    return rows


def effective(
    user: User,
    role: Role | None,
    catalog: PermissionCatalog = DEFAULT_CATALOG,
) -> dict[str, bool]:
    return {row.key: row.allowed for row in effective_permissions(user, role, catalog)}


def granted_keys(
    user: User,
    role: Role | None,
    catalog: PermissionCatalog = DEFAULT_CATALOG,
) -> list[str]:
    return sorted(row.key for row in effective_permissions(user, role, catalog) if row.allowed)
