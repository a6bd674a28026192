from __future__ import annotations

"""Role-based permissions for chat routes.

Room membership is checked by the send orchestrator and the history reader;
this module only gates which routes a role may call at all.
"""
from enum import Enum
from typing import Callable, FrozenSet, Iterable
from fastapi import Depends, HTTPException, status

from .auth import User, get_current_user


class Permission(str, Enum):
    CHAT_READ = "chat:read"
    CHAT_WRITE = "chat:write"
    ADMIN = "admin:*"


ROLE_PERMISSIONS: dict[str, FrozenSet[Permission]] = {
    "viewer": frozenset({Permission.CHAT_READ}),
    "member": frozenset({Permission.CHAT_READ, Permission.CHAT_WRITE}),
    "admin": frozenset({Permission.ADMIN}),
}


def permissions_for(roles: Iterable[str]) -> FrozenSet[Permission]:
    granted: FrozenSet[Permission] = frozenset()
    for role in roles:
        granted = granted | ROLE_PERMISSIONS.get(role, frozenset())
    return granted


def has_permission(user: User, required: Permission) -> bool:
    granted = permissions_for(user.roles)
    return Permission.ADMIN in granted or required in granted


def require_permission(required: Permission) -> Callable[[User], User]:
    """FastAPI dependency to enforce a single permission on a route."""

    def dependency(user: User = Depends(get_current_user)) -> User:
        if not has_permission(user, required):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return user

    return dependency
