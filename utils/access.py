"""Single capability check for role-based visibility.

Access levels are ordered ``public < students < teachers < admin``; a role may
see every level up to its own tier. Accountants sit in the staff tier with
teachers.
"""
from __future__ import annotations

from models import ACCESS_LEVELS, Student
from utils import Identity
from utils.errors import ForbiddenError

ROLE_TIER = {
    "admin": 3,
    "teacher": 2,
    "accountant": 2,
    "student": 1,
    "parent": 0,
}

LEVEL_TIER = {level: tier for tier, level in enumerate(ACCESS_LEVELS)}

# Aggregation scopes and the access level they require.
SCOPE_LEVELS = {
    "dashboard": "teachers",
    "attendance": "teachers",
    "performance": "teachers",
    "enrollment": "teachers",
    "financial": "teachers",
    "overview": "teachers",
    "trends": "teachers",
    "promotion_stats": "teachers",
    "reminder_stats": "teachers",
}


def can_view(access_level: str, role: str | None) -> bool:
    level_tier = LEVEL_TIER.get(access_level)
    if level_tier is None:
        return False
    return ROLE_TIER.get(role or "", 0) >= level_tier


def visible_levels(role: str | None) -> list[str]:
    return [level for level in ACCESS_LEVELS if can_view(level, role)]


def can_view_scope(scope: str, role: str | None) -> bool:
    return can_view(SCOPE_LEVELS.get(scope, "admin"), role)


def audience_matches(audience: list[str], role: str | None) -> bool:
    return "all" in audience or (role or "") in audience or role == "admin"


def student_for_identity(identity: Identity) -> Student | None:
    return Student.query.filter_by(user_id=identity.user_id).first()


def can_view_student(identity: Identity, student_id: int) -> bool:
    if identity.is_staff:
        return True
    if identity.role == "student":
        own = student_for_identity(identity)
        return own is not None and own.id == student_id
    return False


def ensure_can_view_student(identity: Identity, student_id: int) -> None:
    if not can_view_student(identity, student_id):
        raise ForbiddenError("Access denied")


def ensure_scope(identity: Identity, scope: str) -> None:
    if not can_view_scope(scope, identity.role):
        raise ForbiddenError(f"Role '{identity.role}' may not view {scope} analytics")
