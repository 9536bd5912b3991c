"""Role hierarchy for access checks.

- ADMIN (level 2): Platform administration, analytics and reports
- INSTRUCTOR (level 1): Teaches courses
- STUDENT (level 0): Enrolls in courses
"""

from src.entities.models import UserRole


# Role hierarchy mapping (role -> permission level)
ROLE_HIERARCHY: dict[UserRole, int] = {
    UserRole.STUDENT: 0,
    UserRole.INSTRUCTOR: 1,
    UserRole.ADMIN: 2,
}


def get_role_level(role: UserRole | str) -> int:
    """Get the permission level for a role.

    Returns:
        Permission level, -1 for unknown roles
    """
    if isinstance(role, str):
        try:
            role = UserRole(role)
        except ValueError:
            return -1
    return ROLE_HIERARCHY.get(role, -1)


def has_permission(user_role: UserRole | str, required_role: UserRole | str) -> bool:
    """Check if user has at least the required permission level.

    Examples:
        >>> has_permission(UserRole.ADMIN, UserRole.INSTRUCTOR)
        True
        >>> has_permission("student", "instructor")
        False
    """
    required = get_role_level(required_role)
    return required >= 0 and get_role_level(user_role) >= required
