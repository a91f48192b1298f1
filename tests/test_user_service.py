from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from rbac_engine.domain.errors import (
    ConflictError,
    InvalidPermissionError,
    InvalidScopeError,
    NotFoundError,
    ScopeMismatchError,
)
from rbac_engine.domain.models import (
    OverrideChange,
    PermissionSource,
    RoleCreate,
    Scope,
    User,
    UserCreate,
    UserStatus,
    UserUpdate,
)
from rbac_engine.domain.permissions import (
    DEFAULT_CATALOG,
    PERM_BO_CLIENTES_DELETE,
    PERM_BO_CLIENTES_VIEW,
    PERM_PORTAL_BOLETOS_EMITIR,
    PERM_PORTAL_BOLETOS_VIEW,
    PERM_PORTAL_NFSE_VIEW,
)
from rbac_engine.infra.db import RbacStore
from rbac_engine.services.role_service import RoleService
from rbac_engine.services.user_service import UserService


def _sqlite_store(db_path: Path) -> RbacStore:
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    return RbacStore(test_engine)


@pytest.fixture()
def store(tmp_path: Path) -> RbacStore:
    return _sqlite_store(tmp_path / "users_test.db")


def _portal_user(service: UserService, email: str = "joao@empresa.local", tenant_id: str = "T1") -> User:
    return service.create_user(
        UserCreate(name="Joao", email=email, scope=Scope.PORTAL, tenant_id=tenant_id)
    )


def test_create_user_normalizes_email_and_rejects_duplicates(store: RbacStore) -> None:
    service = UserService(store)
    user = _portal_user(service, email="  Joao@Empresa.LOCAL ")
    assert user.email == "joao@empresa.local"
    assert user.status == UserStatus.ACTIVE
    assert user.overrides == {}

    with pytest.raises(ConflictError):
        _portal_user(service, email="joao@empresa.local")

    # Same address is fine in another tenant or scope.
    _portal_user(service, email="joao@empresa.local", tenant_id="T2")
    service.create_user(UserCreate(name="Joao", email="joao@empresa.local", scope=Scope.BACKOFFICE))
    assert len(service.find_by_email("JOAO@empresa.local")) == 3


def test_create_user_validates_scope_tenant_and_role(store: RbacStore) -> None:
    service = UserService(store)
    roles = RoleService(store)
    with pytest.raises(InvalidScopeError):
        service.create_user(UserCreate(name="x", email="x@x", scope=Scope.PORTAL))

    other_tenant_role = roles.create_role(RoleCreate(name="t2", scope=Scope.PORTAL, tenant_id="T2"))
    with pytest.raises(ScopeMismatchError):
        service.create_user(
            UserCreate(name="x", email="x@x", scope=Scope.PORTAL, tenant_id="T1", role_id=other_tenant_role.id)
        )
    with pytest.raises(NotFoundError):
        service.create_user(
            UserCreate(name="x", email="x@x", scope=Scope.PORTAL, tenant_id="T1", role_id="missing")
        )
    assert service.list_users(Scope.PORTAL) == []


def test_assign_role_rejects_cross_scope_roles(store: RbacStore) -> None:
    service = UserService(store)
    roles = RoleService(store)
    user = _portal_user(service)
    backoffice_role = roles.create_role(RoleCreate(name="bo", scope=Scope.BACKOFFICE))
    portal_role = roles.create_role(
        RoleCreate(name="billing", scope=Scope.PORTAL, tenant_id="T1", permissions=[PERM_PORTAL_BOLETOS_VIEW])
    )

    with pytest.raises(ScopeMismatchError):
        service.assign_role(user.id, backoffice_role.id)
    assert service.get_user(user.id).role_id is None

    assert service.assign_role(user.id, portal_role.id).role_id == portal_role.id
    assert service.granted_permissions(user.id) == [PERM_PORTAL_BOLETOS_VIEW]
    assert service.assign_role(user.id, None).role_id is None
    assert service.granted_permissions(user.id) == []


def test_update_user_applies_only_sent_fields(store: RbacStore) -> None:
    service = UserService(store)
    user = service.create_user(
        UserCreate(name="Joao", email="joao@empresa.local", scope=Scope.PORTAL, tenant_id="T1", phone="555")
    )
    updated = service.update_user(user.id, UserUpdate(status=UserStatus.INACTIVE, job_title="Analyst"))
    assert updated.status == UserStatus.INACTIVE
    assert updated.job_title == "Analyst"
    assert updated.phone == "555"
    assert updated.name == "Joao"

    cleared = service.update_user(user.id, UserUpdate(phone=None))
    assert cleared.phone is None


def test_set_override_validates_scope_and_remove_is_idempotent(store: RbacStore) -> None:
    service = UserService(store)
    user = _portal_user(service)

    with pytest.raises(InvalidPermissionError):
        service.set_override(user.id, PERM_BO_CLIENTES_VIEW, True)
    with pytest.raises(InvalidPermissionError):
        service.set_override(user.id, "PORTAL.NOPE.VIEW", True)

    service.set_override(user.id, PERM_PORTAL_NFSE_VIEW, True)
    service.set_override(user.id, PERM_PORTAL_NFSE_VIEW, False)
    assert service.get_user(user.id).overrides == {PERM_PORTAL_NFSE_VIEW: False}

    once = service.remove_override(user.id, PERM_PORTAL_NFSE_VIEW).overrides
    twice = service.remove_override(user.id, PERM_PORTAL_NFSE_VIEW).overrides
    assert once == twice == {}


def test_apply_overrides_is_all_or_nothing(store: RbacStore) -> None:
    service = UserService(store)
    user = _portal_user(service)
    service.set_override(user.id, PERM_PORTAL_NFSE_VIEW, True)

    with pytest.raises(InvalidPermissionError) as exc_info:
        service.apply_overrides(
            user.id,
            [
                OverrideChange(permission_key=PERM_PORTAL_BOLETOS_VIEW, allowed=True),
                OverrideChange(permission_key=PERM_BO_CLIENTES_DELETE, allowed=True),
            ],
        )
    assert exc_info.value.keys == (PERM_BO_CLIENTES_DELETE,)
    assert service.get_user(user.id).overrides == {PERM_PORTAL_NFSE_VIEW: True}

    records = service.apply_overrides(
        user.id,
        [
            OverrideChange(permission_key=PERM_PORTAL_BOLETOS_VIEW, allowed=True),
            OverrideChange(permission_key=PERM_PORTAL_NFSE_VIEW, allowed=None),
            OverrideChange(permission_key="PORTAL.NEVER.SET", allowed=None),
        ],
    )
    assert [(item.permission_key, item.allowed) for item in records] == [(PERM_PORTAL_BOLETOS_VIEW, True)]
    assert service.list_overrides(user.id) == records


def test_effective_permissions_preview(store: RbacStore) -> None:
    service = UserService(store)
    roles = RoleService(store)
    role = roles.create_role(
        RoleCreate(name="billing", scope=Scope.PORTAL, tenant_id="T1", permissions=[PERM_PORTAL_BOLETOS_VIEW])
    )
    user = service.create_user(
        UserCreate(name="Joao", email="joao@empresa.local", scope=Scope.PORTAL, tenant_id="T1", role_id=role.id)
    )
    service.set_override(user.id, PERM_PORTAL_BOLETOS_VIEW, False)
    service.set_override(user.id, PERM_PORTAL_BOLETOS_EMITIR, True)

    rows = {row.key: row for row in service.effective_permissions(user.id)}
    assert len(rows) == len(DEFAULT_CATALOG.by_scope(Scope.PORTAL))
    assert rows[PERM_PORTAL_BOLETOS_VIEW].source == PermissionSource.OVERRIDE_DENY
    assert rows[PERM_PORTAL_BOLETOS_EMITIR].source == PermissionSource.OVERRIDE_GRANT
    assert service.granted_permissions(user.id) == [PERM_PORTAL_BOLETOS_EMITIR]


def test_concurrent_override_writes_are_not_lost(store: RbacStore) -> None:
    service = UserService(store)
    user = _portal_user(service)
    keys = DEFAULT_CATALOG.keys_for_scope(Scope.PORTAL)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda key: service.set_override(user.id, key, True), keys))

    assert service.get_user(user.id).overrides == {key: True for key in keys}


def test_delete_user_then_not_found(store: RbacStore) -> None:
    service = UserService(store)
    user = _portal_user(service)
    service.delete_user(user.id)
    with pytest.raises(NotFoundError):
        service.get_user(user.id)
    with pytest.raises(NotFoundError):
        service.delete_user(user.id)


def test_duplicate_email_from_two_store_handles_is_rejected(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    # Two handles on one database file stand in for two worker processes.
    db_path = tmp_path / "shared.db"
    first, second = _sqlite_store(db_path), _sqlite_store(db_path)
    barrier = threading.Barrier(2, timeout=5)
    email_taken = UserService._email_taken

    def _checked_then_wait(self: UserService, *args: Any) -> bool:
        taken = email_taken(self, *args)
        barrier.wait()
        return taken

    monkeypatch.setattr(UserService, "_email_taken", _checked_then_wait)

    def _create(handle: RbacStore) -> User | None:
        try:
            return _portal_user(UserService(handle), email="dup@empresa.local")
        except ConflictError:
            return None

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(_create, [first, second]))

    assert sum(item is not None for item in results) == 1
    assert len(UserService(first).find_by_email("dup@empresa.local")) == 1
