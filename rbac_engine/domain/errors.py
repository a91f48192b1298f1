from __future__ import annotations

from collections.abc import Iterable


class RbacError(Exception):
    pass


class NotFoundError(RbacError):
    pass


class ConflictError(RbacError):
    pass


class RoleInUseError(ConflictError):
    pass


class InvalidScopeError(RbacError):
    pass


class InvalidPermissionError(RbacError):
    def __init__(self, message: str, keys: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.keys = tuple(keys)


class ScopeMismatchError(RbacError):
    pass


class InvalidCredentialsError(RbacError):
    pass
