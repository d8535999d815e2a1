from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
from typing import Callable, TypeVar, Any, cast

from flask import g, session

from utils.responses import fail

F = TypeVar("F", bound=Callable[..., Any])

STAFF_ROLES = ("admin", "teacher", "accountant")


@dataclass(frozen=True)
class Identity:
    user_id: int
    role: str
    name: str = ""

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


def current_identity() -> Identity | None:
    """Caller identity as placed in the session by the login layer."""
    user_id = session.get("user_id")
    role = session.get("role")
    if not user_id or not role:
        return None
    return Identity(user_id=int(user_id), role=str(role), name=session.get("name") or "")


def role_required(*roles: str) -> Callable[[F], F]:
    """Decorator that requires a session identity with one of ``roles``.

    - No identity: 401 envelope.
    - Identity with another role: 403 envelope.
    - Otherwise the identity is exposed as ``g.identity``.

    With no roles given any authenticated caller passes.
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any):
            identity = current_identity()
            if identity is None:
                return fail("Authentication required", 401)
            if roles and identity.role not in roles:
                return fail("Access denied", 403)
            g.identity = identity
            return func(*args, **kwargs)

        return cast(F, wrapper)

    return decorator
