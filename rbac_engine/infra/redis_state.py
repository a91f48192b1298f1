from __future__ import annotations

import os
import secrets
from functools import lru_cache

from pydantic import ValidationError
from redis import Redis

from rbac_engine.domain.models import UserSession

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", "28800"))
REMEMBER_ME_TTL_SECONDS = int(os.getenv("REMEMBER_ME_TTL_SECONDS", str(30 * 24 * 60 * 60)))


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    return Redis.from_url(REDIS_URL, decode_responses=True)


def check_redis_ready() -> bool:
    try:
        return bool(get_redis().ping())
    except Exception:
        return False


class SessionRegistry:
    """Live sessions keyed by an opaque bearer token; expiry is the key TTL."""

    def __init__(self, redis: Redis | None = None) -> None:
        self._client = redis

    def _redis(self) -> Redis:
        return self._client if self._client is not None else get_redis()

    @staticmethod
    def _key(token: str) -> str:
        return f"session:{token}"

    @staticmethod
    def _user_key(user_id: str) -> str:
        return f"user_sessions:{user_id}"

    def save(self, session: UserSession, *, remember_me: bool = False) -> str:
        token = secrets.token_urlsafe(32)
        ttl = REMEMBER_ME_TTL_SECONDS if remember_me else SESSION_TTL_SECONDS
        client = self._redis()
        client.set(self._key(token), session.model_dump_json(), ex=ttl)
        # Index lives as long as the longest possible session.
        client.sadd(self._user_key(session.id), token)
        client.expire(self._user_key(session.id), REMEMBER_ME_TTL_SECONDS)
        return token

    def load(self, token: str) -> UserSession | None:
        if not token:
            return None
        raw = self._redis().get(self._key(token))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        try:
            return UserSession.model_validate_json(raw)
        except ValidationError:
            return None

    def discard(self, token: str) -> None:
        session = self.load(token)
        client = self._redis()
        client.delete(self._key(token))
        if session is not None:
            client.srem(self._user_key(session.id), token)

    def discard_user(self, user_id: str) -> int:
        """Drop every live session of ``user_id``; returns how many were dropped."""
        client = self._redis()
        members = client.smembers(self._user_key(user_id))
        tokens = [item.decode() if isinstance(item, bytes) else item for item in members]
        dropped = sum(int(client.delete(self._key(token))) for token in tokens)
        client.delete(self._user_key(user_id))
        return dropped
