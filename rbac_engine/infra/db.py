from __future__ import annotations

import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from functools import lru_cache

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg://rbac:rbac@db:5432/rbac_engine",
)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_engine(DATABASE_URL, pool_pre_ping=True)


class RbacStore:
    """Handle shared by the role and user stores.

    ``write()`` serializes every read-modify-write on the Role+User pair behind
    one re-entrant lock, so a role delete cannot interleave with a user being
    assigned to that role.
    """

    def __init__(self, engine: Engine | None = None) -> None:
        self._engine = engine
        self.write_lock = threading.RLock()

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    def session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    @contextmanager
    def write(self) -> Iterator[Session]:
        with self.write_lock, self.session() as session:
            yield session

    def create_schema(self) -> None:
        from rbac_engine.domain import models  # noqa: F401

        SQLModel.metadata.create_all(self.engine)


def check_db_ready(engine: Engine) -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
