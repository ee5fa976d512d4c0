"""Organization roles carried in identity provider tokens.

Hierarchical levels:
- ADMIN (level 2): Organization analytics and job controls
- INSTRUCTOR (level 1): Authors lessons
- LEARNER (level 0): Watches lessons
"""

from enum import Enum


class OrgRole(str, Enum):
    """Roles within an organization, higher level = more permissions."""

    LEARNER = "learner"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"


ROLE_HIERARCHY: dict[OrgRole, int] = {
    OrgRole.LEARNER: 0,
    OrgRole.INSTRUCTOR: 1,
    OrgRole.ADMIN: 2,
}


def get_role_level(role: OrgRole | str | None) -> int:
    """Permission level for a role; unknown or missing roles are learners."""
    if role is None:
        return 0
    if isinstance(role, str):
        try:
            role = OrgRole(role)
        except ValueError:
            return 0
    return ROLE_HIERARCHY.get(role, 0)


def has_permission(role: OrgRole | str | None, required: OrgRole) -> bool:
    """Check if ``role`` is at least ``required``."""
    return get_role_level(role) >= get_role_level(required)
