from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from rbac_engine.domain import access, overrides
from rbac_engine.domain.errors import (
    ConflictError,
    InvalidPermissionError,
    NotFoundError,
    ScopeMismatchError,
)
from rbac_engine.domain.models import (
    EffectivePermission,
    Override,
    OverrideChange,
    Role,
    Scope,
    User,
    UserCreate,
    UserUpdate,
    now_utc,
    validate_scope_tenant,
)
from rbac_engine.domain.permissions import DEFAULT_CATALOG, PermissionCatalog
from rbac_engine.infra.db import RbacStore

logger = logging.getLogger(__name__)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _tenant_clause(tenant_id: str | None) -> Any:
    if tenant_id is None:
        return col(User.tenant_id).is_(None)
    return col(User.tenant_id) == tenant_id


class UserService:
    def __init__(self, store: RbacStore, *, catalog: PermissionCatalog = DEFAULT_CATALOG) -> None:
        self._store = store
        self._catalog = catalog

    @property
    def catalog(self) -> PermissionCatalog:
        return self._catalog

    def _get_user(self, session: Session, user_id: str) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("user not found")
        return user

    def _resolve_role(
        self,
        session: Session,
        role_id: str | None,
        scope: Scope,
        tenant_id: str | None,
    ) -> Role | None:
        if role_id is None:
            return None
        role = session.exec(select(Role).where(Role.id == role_id).with_for_update()).first()
        if role is None:
            raise NotFoundError("role not found")
        if role.scope != scope or role.tenant_id != tenant_id:
            raise ScopeMismatchError("role belongs to a different scope or tenant")
        return role

    def _email_taken(
        self,
        session: Session,
        scope: Scope,
        tenant_id: str | None,
        email: str,
    ) -> bool:
        statement = (
            select(User.id)
            .where(User.scope == scope)
            .where(_tenant_clause(tenant_id))
            .where(User.email == email)
        )
        return session.exec(statement).first() is not None

    def _commit_user(self, session: Session, role_id: str | None) -> None:
        """Commit a user insert or role change, mapping constraint hits to domain errors.

        The unique (scope, tenant, email) index and the role foreign key back the
        service checks when another process wins the race between check and write.
        """
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            if role_id is not None and session.exec(select(Role.id).where(Role.id == role_id)).first() is None:
                raise NotFoundError("role not found") from exc
            raise ConflictError("email already exists in scope and tenant") from exc

    def _validate_override_keys(self, user: User, keys: Iterable[str]) -> None:
        self._catalog.validate_keys(keys, user.scope)

    def list_users(self, scope: Scope, tenant_id: str | None = None) -> list[User]:
        with self._store.session() as session:
            statement = select(User).where(User.scope == scope)
            if tenant_id is not None:
                statement = statement.where(User.tenant_id == tenant_id)
            return list(session.exec(statement.order_by(col(User.created_at))).all())

    def get_user(self, user_id: str) -> User:
        with self._store.session() as session:
            return self._get_user(session, user_id)

    def find_by_email(self, email: str) -> list[User]:
        with self._store.session() as session:
            statement = select(User).where(User.email == _normalize_email(email))
            return list(session.exec(statement).all())

    def create_user(self, payload: UserCreate) -> User:
        tenant_id = validate_scope_tenant(payload.scope, payload.tenant_id)
        email = _normalize_email(payload.email)
        with self._store.write() as session:
            self._resolve_role(session, payload.role_id, payload.scope, tenant_id)
            if self._email_taken(session, payload.scope, tenant_id, email):
                raise ConflictError("email already exists in scope and tenant")
            user = User(
                name=payload.name,
                email=email,
                scope=payload.scope,
                tenant_id=tenant_id,
                role_id=payload.role_id,
                overrides={},
                status=payload.status,
                phone=payload.phone,
                job_title=payload.job_title,
                is_scope_admin=payload.is_scope_admin,
            )
            session.add(user)
            self._commit_user(session, payload.role_id)
            session.refresh(user)
        logger.info("user created id=%s scope=%s tenant=%s", user.id, user.scope, user.tenant_id)
        return user

    def update_user(self, user_id: str, payload: UserUpdate) -> User:
        with self._store.write() as session:
            user = self._get_user(session, user_id)
            fields = payload.model_fields_set
            if "role_id" in fields:
                self._resolve_role(session, payload.role_id, user.scope, user.tenant_id)
                user.role_id = payload.role_id
            if "name" in fields and payload.name is not None:
                user.name = payload.name
            if "status" in fields and payload.status is not None:
                user.status = payload.status
            if "phone" in fields:
                user.phone = payload.phone
            if "job_title" in fields:
                user.job_title = payload.job_title
            user.updated_at = now_utc()
            session.add(user)
            self._commit_user(session, user.role_id)
            session.refresh(user)
            return user

    def delete_user(self, user_id: str) -> None:
        with self._store.write() as session:
            user = self._get_user(session, user_id)
            session.delete(user)
            session.commit()
        logger.info("user deleted id=%s", user_id)

    def assign_role(self, user_id: str, role_id: str | None) -> User:
        with self._store.write() as session:
            user = self._get_user(session, user_id)
            self._resolve_role(session, role_id, user.scope, user.tenant_id)
            user.role_id = role_id
            user.updated_at = now_utc()
            session.add(user)
            self._commit_user(session, role_id)
            session.refresh(user)
            return user

    def list_overrides(self, user_id: str) -> list[Override]:
        user = self.get_user(user_id)
        return overrides.to_records(user.id, user.overrides)

    def set_override(self, user_id: str, permission_key: str, allowed: bool) -> User:
        with self._store.write() as session:
            user = self._get_user(session, user_id)
            if not self._catalog.is_in_scope(permission_key, user.scope):
                raise InvalidPermissionError(
                    f"permission {permission_key} is outside scope {user.scope.value}",
                    keys=[permission_key],
                )
            user.overrides = overrides.set_override(user.overrides, permission_key, allowed)
            user.updated_at = now_utc()
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    def remove_override(self, user_id: str, permission_key: str) -> User:
        with self._store.write() as session:
            user = self._get_user(session, user_id)
            if permission_key not in user.overrides:
                return user
            user.overrides = overrides.remove_override(user.overrides, permission_key)
            user.updated_at = now_utc()
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    def apply_overrides(self, user_id: str, changes: list[OverrideChange]) -> list[Override]:
        with self._store.write() as session:
            user = self._get_user(session, user_id)
            # Removals of unknown keys are harmless; only writes pass the gate.
            self._validate_override_keys(
                user,
                [change.permission_key for change in changes if change.allowed is not None],
            )
            user.overrides = overrides.apply_changes(user.overrides, changes)
            user.updated_at = now_utc()
            session.add(user)
            session.commit()
            session.refresh(user)
            return overrides.to_records(user.id, user.overrides)

    def effective_permissions(self, user_id: str) -> list[EffectivePermission]:
        with self._store.session() as session:
            user = self._get_user(session, user_id)
            role = session.get(Role, user.role_id) if user.role_id is not None else None
            return access.effective_permissions(user, role, self._catalog)

    def granted_permissions(self, user_id: str) -> list[str]:
        return sorted(row.key for row in self.effective_permissions(user_id) if row.allowed)
