from collections.abc import Callable, Iterable
from functools import wraps
from typing import Any

from flask import g, jsonify
from sqlalchemy.orm import Session

from app.portal.models import User


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def user_has_role(user: User | None, roles: Iterable[str]) -> bool:
    if not user or not user.is_active:
        return False
    wanted = set(roles)
    return any(r.key in wanted for r in user.roles)


def actor_has_role(s: Session, actor_id: int | None, roles: Iterable[str]) -> bool:
    """Authorization boundary consulted before every staff-only mutation."""
    if actor_id is None:
        return False
    return user_has_role(s.get(User, actor_id), roles)


def _unauthenticated():
    return jsonify({"ok": False, "error": "unauthenticated", "message": "Login required."}), 401


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            return _unauthenticated()
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                return _unauthenticated()
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                return jsonify({"ok": False, "error": "forbidden", "message": f"Missing permission {permission_key}."}), 403
            return fn(*args, **kwargs)

        return wrapped

    return decorator
