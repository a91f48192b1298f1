from __future__ import annotations

from collections.abc import Iterable, Mapping

from rbac_engine.domain.models import Override, OverrideChange


def set_override(overrides: Mapping[str, bool], permission_key: str, allowed: bool) -> dict[str, bool]:
    updated = dict(overrides)
    updated[permission_key] = bool(allowed)
    return updated


def remove_override(overrides: Mapping[str, bool], permission_key: str) -> dict[str, bool]:
    updated = dict(overrides)
    updated.pop(permission_key, None)
    return updated


def apply_changes(overrides: Mapping[str, bool], changes: Iterable[OverrideChange]) -> dict[str, bool]:
    """Apply a batch in order; ``allowed=None`` drops the key back to inherit."""
    updated = dict(overrides)
    for change in changes:
        if change.allowed is None:
            updated = remove_override(updated, change.permission_key)
        else:
            updated = set_override(updated, change.permission_key, change.allowed)
    return updated


def to_records(user_id: str, overrides: Mapping[str, bool]) -> list[Override]:
    return [
        Override(user_id=user_id, permission_key=key, allowed=bool(overrides[key]))
        for key in sorted(overrides)
    ]
