from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import event, inspect
from sqlmodel import create_engine

from rbac_engine.domain.errors import ConflictError, RoleInUseError
from rbac_engine.domain.models import RoleCreate, Scope, UserCreate
from rbac_engine.infra import db
from rbac_engine.infra.db import RbacStore
from rbac_engine.infra.migrate import run_upgrade
from rbac_engine.services.role_service import RoleService
from rbac_engine.services.user_service import UserService

ALEMBIC_INI = Path(__file__).resolve().parents[1] / "alembic.ini"


def _migrated_store(database_url: str) -> RbacStore:
    test_engine = create_engine(database_url, connect_args={"check_same_thread": False})

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return RbacStore(test_engine)


def test_upgrade_head_creates_the_rbac_schema(tmp_path: Path) -> None:
    database_url = f"sqlite:///{tmp_path / 'migrated.db'}"
    run_upgrade(config_path=str(ALEMBIC_INI), database_url=database_url)

    store = _migrated_store(database_url)
    inspector = inspect(store.engine)
    assert {"roles", "users", "audit_logs"} <= set(inspector.get_table_names())
    assert [item["referred_table"] for item in inspector.get_foreign_keys("users")] == ["roles"]

    role = RoleService(store).create_role(RoleCreate(name="ops", scope=Scope.BACKOFFICE))
    user = UserService(store).create_user(
        UserCreate(name="Ana", email="ana@backoffice.local", scope=Scope.BACKOFFICE, role_id=role.id)
    )
    assert UserService(store).get_user(user.id).role_id == role.id


def test_migrated_schema_enforces_email_and_role_constraints(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    database_url = f"sqlite:///{tmp_path / 'constraints.db'}"
    run_upgrade(config_path=str(ALEMBIC_INI), database_url=database_url)
    store = _migrated_store(database_url)
    users = UserService(store)
    roles = RoleService(store)

    role = roles.create_role(RoleCreate(name="ops", scope=Scope.BACKOFFICE))
    users.create_user(UserCreate(name="Ana", email="ana@backoffice.local", scope=Scope.BACKOFFICE, role_id=role.id))

    # Skip the service-level checks so only the schema stands in the way.
    monkeypatch.setattr(UserService, "_email_taken", lambda *_args: False)
    monkeypatch.setattr(RoleService, "_referencing_user_ids", lambda *_args: [])

    with pytest.raises(ConflictError):
        users.create_user(UserCreate(name="Ana 2", email="ana@backoffice.local", scope=Scope.BACKOFFICE))
    with pytest.raises(RoleInUseError):
        roles.delete_role(role.id)
    assert roles.get_role(role.id).id == role.id


def test_upgrade_defaults_to_the_service_database_url(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    database_url = f"sqlite:///{tmp_path / 'default.db'}"
    monkeypatch.setattr(db, "DATABASE_URL", database_url)
    run_upgrade(config_path=str(ALEMBIC_INI))

    assert "users" in inspect(create_engine(database_url)).get_table_names()
