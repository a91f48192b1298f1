from __future__ import annotations

import hmac
import logging
import os
from typing import Any, Protocol

from rbac_engine.domain.errors import InvalidCredentialsError
from rbac_engine.domain.models import Scope, User, UserCreate, UserSession, UserStatus
from rbac_engine.infra.redis_state import SessionRegistry
from rbac_engine.services.user_service import UserService

logger = logging.getLogger(__name__)

DEMO_PASSWORD = os.getenv("DEMO_PASSWORD", "demo")
ADMIN_MASTER_EMAIL = os.getenv("ADMIN_MASTER_EMAIL", "admin@backoffice.local")
CLIENT_ADMIN_EMAIL = os.getenv("CLIENT_ADMIN_EMAIL", "admin@empresa.local")
DEMO_TENANT_ID = os.getenv("DEMO_TENANT_ID", "tenant_demo_001")


class IdentityProvider(Protocol):
    def get_session(self, token: str) -> UserSession | None: ...

    def sign_in(self, email: str, password: str, remember_me: bool = False) -> tuple[str, UserSession]: ...

    def sign_out(self, token: str) -> None: ...

    def revoke_sessions(self, user_id: str) -> int: ...


class DemoIdentityProvider:
    """Signs managed users in against a single shared demo password.

    Sessions are materialized once at sign-in (permissions precomputed from role
    and overrides) and then served from the registry until they expire or the
    user signs out. Later edits to the user apply from the next sign-in.
    """

    SEED_ACCOUNTS: tuple[dict[str, Any], ...] = (
        {
            "name": "Admin Master",
            "email": ADMIN_MASTER_EMAIL,
            "scope": Scope.BACKOFFICE,
            "tenant_id": None,
        },
        {
            "name": "Client Admin Demo",
            "email": CLIENT_ADMIN_EMAIL,
            "scope": Scope.PORTAL,
            "tenant_id": DEMO_TENANT_ID,
        },
    )

    def __init__(self, users: UserService, registry: SessionRegistry | None = None) -> None:
        self._users = users
        self._registry = registry or SessionRegistry()

    def build_session(self, user: User) -> UserSession:
        if user.is_scope_admin:
            permissions = sorted(self._users.catalog.keys_for_scope(user.scope))
        else:
            permissions = self._users.granted_permissions(user.id)
        return UserSession(
            id=user.id,
            name=user.name,
            email=user.email,
            scope=user.scope,
            tenant_id=user.tenant_id,
            is_admin_master=user.is_scope_admin and user.scope == Scope.BACKOFFICE,
            is_client_admin=user.is_scope_admin and user.scope == Scope.PORTAL,
            permissions=permissions,
        )

    def ensure_seed_accounts(self) -> list[User]:
        created: list[User] = []
        for account in self.SEED_ACCOUNTS:
            existing = [
                user
                for user in self._users.find_by_email(account["email"])
                if user.scope == account["scope"] and user.tenant_id == account["tenant_id"]
            ]
            if existing:
                continue
            created.append(
                self._users.create_user(
                    UserCreate(
                        name=account["name"],
                        email=account["email"],
                        scope=account["scope"],
                        tenant_id=account["tenant_id"],
                        is_scope_admin=True,
                    )
                )
            )
        return created

    def get_session(self, token: str) -> UserSession | None:
        return self._registry.load(token)

    def sign_in(self, email: str, password: str, remember_me: bool = False) -> tuple[str, UserSession]:
        if not password or not hmac.compare_digest(password.encode(), DEMO_PASSWORD.encode()):
            logger.warning("sign-in refused: bad credentials")
            raise InvalidCredentialsError("invalid credentials")
        matches = self._users.find_by_email(email)
        if len(matches) != 1:
            # Unknown, or the same address in several scopes/tenants.
            logger.warning("sign-in refused: %d accounts match", len(matches))
            raise InvalidCredentialsError("invalid credentials")
        user = matches[0]
        if user.status != UserStatus.ACTIVE:
            logger.warning("sign-in refused: user %s inactive", user.id)
            raise InvalidCredentialsError("invalid credentials")

        session = self.build_session(user)
        token = self._registry.save(session, remember_me=remember_me)
        logger.info("signed in user=%s scope=%s", user.id, user.scope)
        return token, session

    def sign_out(self, token: str) -> None:
        self._registry.discard(token)
        logger.info("signed out")

    def revoke_sessions(self, user_id: str) -> int:
        dropped = self._registry.discard_user(user_id)
        if dropped:
            logger.info("revoked %d session(s) of user=%s", dropped, user_id)
        return dropped
