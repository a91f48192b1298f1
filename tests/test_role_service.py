from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from rbac_engine.domain.errors import InvalidPermissionError, InvalidScopeError, NotFoundError, RoleInUseError
from rbac_engine.domain.models import RoleCreate, RoleUpdate, Scope, UserCreate
from rbac_engine.domain.permissions import (
    PERM_BO_CLIENTES_VIEW,
    PERM_BO_CONTRATOS_VIEW,
    PERM_PORTAL_BOLETOS_VIEW,
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
    return _sqlite_store(tmp_path / "roles_test.db")


def test_create_role_enforces_scope_tenant_rule(store: RbacStore) -> None:
    service = RoleService(store)
    with pytest.raises(InvalidScopeError):
        service.create_role(RoleCreate(name="no-tenant", scope=Scope.PORTAL))
    with pytest.raises(InvalidScopeError):
        service.create_role(RoleCreate(name="blank", scope=Scope.PORTAL, tenant_id="   "))
    with pytest.raises(InvalidScopeError):
        service.create_role(RoleCreate(name="tenant", scope=Scope.BACKOFFICE, tenant_id="T1"))

    role = service.create_role(RoleCreate(name="ok", scope=Scope.PORTAL, tenant_id=" T1 "))
    assert role.tenant_id == "T1"


def test_create_role_rejects_foreign_and_unknown_keys(store: RbacStore) -> None:
    service = RoleService(store)
    with pytest.raises(InvalidPermissionError) as exc_info:
        service.create_role(
            RoleCreate(
                name="mixed",
                scope=Scope.BACKOFFICE,
                permissions=[PERM_BO_CLIENTES_VIEW, PERM_PORTAL_BOLETOS_VIEW],
            )
        )
    assert exc_info.value.keys == (PERM_PORTAL_BOLETOS_VIEW,)
    assert service.list_roles(Scope.BACKOFFICE) == []


def test_update_role_replaces_permissions_and_keeps_unset_fields(store: RbacStore) -> None:
    service = RoleService(store)
    role = service.create_role(
        RoleCreate(
            name="clients",
            description="client desk",
            scope=Scope.BACKOFFICE,
            permissions=[PERM_BO_CLIENTES_VIEW],
        )
    )

    updated = service.update_role(role.id, RoleUpdate(permissions=[PERM_BO_CONTRATOS_VIEW, PERM_BO_CONTRATOS_VIEW]))
    assert updated.permissions == [PERM_BO_CONTRATOS_VIEW]
    assert updated.description == "client desk"
    assert updated.name == "clients"

    cleared = service.update_role(role.id, RoleUpdate(description=None))
    assert cleared.description is None

    with pytest.raises(InvalidPermissionError):
        service.update_role(role.id, RoleUpdate(permissions=[PERM_PORTAL_BOLETOS_VIEW]))
    assert service.get_role(role.id).permissions == [PERM_BO_CONTRATOS_VIEW]


def test_list_roles_filters_by_scope_and_tenant(store: RbacStore) -> None:
    service = RoleService(store)
    service.create_role(RoleCreate(name="bo", scope=Scope.BACKOFFICE))
    service.create_role(RoleCreate(name="t1", scope=Scope.PORTAL, tenant_id="T1"))
    service.create_role(RoleCreate(name="t2", scope=Scope.PORTAL, tenant_id="T2"))

    assert [item.name for item in service.list_roles(Scope.BACKOFFICE)] == ["bo"]
    assert [item.name for item in service.list_roles(Scope.PORTAL, "T1")] == ["t1"]
    assert {item.name for item in service.list_roles(Scope.PORTAL)} == {"t1", "t2"}


def test_delete_role_is_blocked_while_users_reference_it(store: RbacStore) -> None:
    roles = RoleService(store)
    users = UserService(store)
    role = roles.create_role(RoleCreate(name="clients", scope=Scope.BACKOFFICE, permissions=[PERM_BO_CLIENTES_VIEW]))
    user = users.create_user(
        UserCreate(name="Ana", email="ana@backoffice.local", scope=Scope.BACKOFFICE, role_id=role.id)
    )
    assert roles.count_users(role.id) == 1

    with pytest.raises(RoleInUseError):
        roles.delete_role(role.id)
    assert roles.get_role(role.id).id == role.id

    users.assign_role(user.id, None)
    assert roles.count_users(role.id) == 0
    roles.delete_role(role.id)
    with pytest.raises(NotFoundError):
        roles.get_role(role.id)


def test_unknown_role_ids_raise_not_found(store: RbacStore) -> None:
    service = RoleService(store)
    with pytest.raises(NotFoundError):
        service.get_role("missing")
    with pytest.raises(NotFoundError):
        service.update_role("missing", RoleUpdate(name="x"))
    with pytest.raises(NotFoundError):
        service.delete_role("missing")


@pytest.mark.parametrize("handles", [1, 2])
def test_role_delete_racing_assignments_never_strands_users(tmp_path: Path, handles: int) -> None:
    db_path = tmp_path / "race.db"
    stores = [_sqlite_store(db_path) for _ in range(handles)]
    roles = RoleService(stores[0])
    users = UserService(stores[-1])
    target = users.create_user(UserCreate(name="Ana", email="ana@empresa.local", scope=Scope.PORTAL, tenant_id="T1"))

    for round_no in range(8):
        role = roles.create_role(RoleCreate(name=f"billing-{round_no}", scope=Scope.PORTAL, tenant_id="T1"))
        barrier = threading.Barrier(3, timeout=5)

        def _delete() -> None:
            barrier.wait()
            try:
                roles.delete_role(role.id)
            except RoleInUseError:
                pass

        def _assign() -> None:
            barrier.wait()
            try:
                users.assign_role(target.id, role.id)
            except NotFoundError:
                pass

        def _create() -> None:
            barrier.wait()
            try:
                users.create_user(
                    UserCreate(
                        name="Bia",
                        email=f"bia{round_no}@empresa.local",
                        scope=Scope.PORTAL,
                        tenant_id="T1",
                        role_id=role.id,
                    )
                )
            except NotFoundError:
                pass

        tasks: list[Callable[[], None]] = [_delete, _assign, _create]
        with ThreadPoolExecutor(max_workers=3) as pool:
            for future in [pool.submit(task) for task in tasks]:
                future.result()

        live_roles = {item.id for item in roles.list_roles(Scope.PORTAL, "T1")}
        stranded = [
            user.id
            for user in UserService(stores[0]).list_users(Scope.PORTAL, "T1")
            if user.role_id is not None and user.role_id not in live_roles
        ]
        assert stranded == []
