from __future__ import annotations

from collections.abc import Callable, Iterable
from functools import wraps
from typing import Any

from flask import abort, g, jsonify

from app.djtquest.constants import (
    MANAGER_ROLES,
    ROLE_ADMIN,
    ROLE_ALIASES,
    ROLE_CONTENT_CURATOR,
    ROLE_INVITED,
    ROLE_LIDER_EQUIPE,
    ROLE_NAMES,
)
from app.djtquest.models import User


def normalize_role(raw) -> str:
    r = str(raw or "").strip()
    if not r:
        return ""
    return ROLE_ALIASES.get(r, r)


def sanitize_role_list(raw: Iterable[str] | None) -> list[str]:
    """Normalize aliases, drop unknown keys, keep first occurrence order."""
    out: list[str] = []
    for r in raw or ():
        key = normalize_role(r)
        if key and key in ROLE_NAMES and key not in out:
            out.append(key)
    return out


def role_keys(user: User | None) -> set[str]:
    if not user:
        return set()
    return {normalize_role(r.key) for r in user.roles if r.key}


def has_any_role(user: User | None, *keys: str) -> bool:
    return bool(role_keys(user) & set(keys))


def is_admin(user: User | None) -> bool:
    return ROLE_ADMIN in role_keys(user)


def can_curate(user: User | None) -> bool:
    roles = role_keys(user)
    if ROLE_ADMIN in roles or ROLE_CONTENT_CURATOR in roles:
        return True
    return bool(user and user.studio_access and ROLE_INVITED in roles)


def can_manage_users(user: User | None) -> bool:
    return bool(role_keys(user) & MANAGER_ROLES)


def can_access_studio(user: User | None) -> bool:
    if not user:
        return False
    return (
        bool(user.studio_access)
        or bool(user.is_leader)
        or ROLE_LIDER_EQUIPE in role_keys(user)
        or can_manage_users(user)
        or can_curate(user)
    )


def can_see_answer_key(user: User | None, *, owner_id: int | None, created_by: int | None) -> bool:
    if not user:
        return False
    if is_admin(user) or ROLE_CONTENT_CURATOR in role_keys(user):
        return True
    return user.id in {owner_id, created_by}


def permission_keys(user: User | None) -> set[str]:
    if user is None or not user.is_active:
        return set()
    return {perm.key for role in user.roles for perm in role.permissions}


def user_has_permission(user: User | None, permission_key: str) -> bool:
    return permission_key in permission_keys(user)


def _active_user() -> User | None:
    user = g.get("current_user")
    return user if user is not None and user.is_active else None


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    """401 JSON for anonymous callers; the SPA handles the redirect to login."""

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if _active_user() is None:
            return jsonify({"error": "Unauthorized"}), 401
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Login required, then 403 with `missing_permission` set for the error handler."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @require_login
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            if not user_has_permission(_active_user(), permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
