from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from rbac_engine.domain.errors import NotFoundError, RoleInUseError
from rbac_engine.domain.models import Role, RoleCreate, RoleUpdate, Scope, User, now_utc, validate_scope_tenant
from rbac_engine.domain.permissions import DEFAULT_CATALOG, PermissionCatalog
from rbac_engine.infra.db import RbacStore

logger = logging.getLogger(__name__)


class RoleService:
    def __init__(self, store: RbacStore, *, catalog: PermissionCatalog = DEFAULT_CATALOG) -> None:
        self._store = store
        self._catalog = catalog

    def _get_role(self, session: Session, role_id: str, *, for_update: bool = False) -> Role:
        if for_update:
            role = session.exec(select(Role).where(Role.id == role_id).with_for_update()).first()
        else:
            role = session.get(Role, role_id)
        if role is None:
            raise NotFoundError("role not found")
        return role

    def _referencing_user_ids(self, session: Session, role_id: str) -> list[str]:
        return list(session.exec(select(User.id).where(User.role_id == role_id)).all())

    def list_roles(self, scope: Scope, tenant_id: str | None = None) -> list[Role]:
        with self._store.session() as session:
            statement = select(Role).where(Role.scope == scope)
            if tenant_id is not None:
                statement = statement.where(Role.tenant_id == tenant_id)
            roles = list(session.exec(statement.order_by(col(Role.created_at))).all())
            return roles

    def get_role(self, role_id: str) -> Role:
        with self._store.session() as session:
            return self._get_role(session, role_id)

    def count_users(self, role_id: str) -> int:
        with self._store.session() as session:
            self._get_role(session, role_id)
            return len(self._referencing_user_ids(session, role_id))

    def create_role(self, payload: RoleCreate) -> Role:
        tenant_id = validate_scope_tenant(payload.scope, payload.tenant_id)
        permissions = self._catalog.validate_keys(payload.permissions, payload.scope)
        role = Role(
            name=payload.name,
            description=payload.description,
            scope=payload.scope,
            tenant_id=tenant_id,
            permissions=permissions,
        )
        with self._store.write() as session:
            session.add(role)
            session.commit()
            session.refresh(role)
        logger.info("role created id=%s scope=%s tenant=%s", role.id, role.scope, role.tenant_id)
        return role

    def update_role(self, role_id: str, payload: RoleUpdate) -> Role:
        with self._store.write() as session:
            role = self._get_role(session, role_id, for_update=True)
            if "name" in payload.model_fields_set and payload.name is not None:
                role.name = payload.name
            if "description" in payload.model_fields_set:
                role.description = payload.description
            if "permissions" in payload.model_fields_set and payload.permissions is not None:
                role.permissions = self._catalog.validate_keys(payload.permissions, role.scope)
            role.updated_at = now_utc()
            session.add(role)
            session.commit()
            session.refresh(role)
            return role

    def delete_role(self, role_id: str) -> None:
        with self._store.write() as session:
            # Row lock pairs with UserService._resolve_role across processes.
            role = self._get_role(session, role_id, for_update=True)
            user_ids = self._referencing_user_ids(session, role_id)
            if user_ids:
                logger.warning("role delete blocked id=%s users=%d", role_id, len(user_ids))
                raise RoleInUseError(f"role is assigned to {len(user_ids)} user(s)")
            session.delete(role)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                logger.warning("role delete blocked by reference id=%s", role_id)
                raise RoleInUseError("role is assigned to user(s)") from exc
        logger.info("role deleted id=%s", role_id)
