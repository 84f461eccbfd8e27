"""Role-based access control.

Role hierarchy: admin > company = guard > default
"""

from __future__ import annotations

from vigil.auth.models import Role, User
from vigil.errors import PermissionDeniedError


def has_permission(user: User, required_role: Role) -> bool:
    """Check if a user's role meets or exceeds the required role level.

    Suspended accounts have no permissions.
    """
    if user.suspended:
        return False
    user_role = user.role if isinstance(user.role, Role) else Role(user.role)
    return user_role.level >= required_role.level


def require_role(user: User, role: Role) -> None:
    """Validate that a user has at least the given role.

    Raises :class:`~vigil.errors.PermissionDeniedError` otherwise.
    """
    if not has_permission(user, role):
        raise PermissionDeniedError(f"Requires role '{role.value}' or higher")
