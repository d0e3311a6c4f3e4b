#!/usr/bin/env python3
"""
Project-based permission model

Roles map to a closed set of permission tokens. Tokens say what kind of action
a role may take; which projects it may take them on is decided by project
assignments (see rbac.access).
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, FrozenSet, Iterable, List, Mapping, Optional


class Role(str, Enum):
    COMPANY_ADMIN = "company_admin"
    # Legacy name for company_admin, kept with an identical permission set
    ADMIN = "admin"
    MANAGER = "manager"
    HR = "hr"
    EMPLOYEE = "employee"

    @property
    def is_admin(self) -> bool:
        return self in (Role.COMPANY_ADMIN, Role.ADMIN)


class Permission(str, Enum):
    # Project management
    PROJECT_CREATE = "project_create"
    PROJECT_VIEW_ALL = "project_view_all"
    PROJECT_VIEW_ASSIGNED = "project_view_assigned"
    PROJECT_EDIT = "project_edit"
    PROJECT_DELETE = "project_delete"

    # Team management
    TEAM_ASSIGN_MANAGER = "team_assign_manager"
    TEAM_ASSIGN_HR = "team_assign_hr"
    TEAM_VIEW_ASSIGNED = "team_view_assigned"
    TEAM_MANAGE = "team_manage"

    # Data access
    DATA_VIEW_PROJECT = "data_view_project"
    DATA_VIEW_TEAM = "data_view_team"
    DATA_EDIT_PROJECT = "data_edit_project"

    # User management
    USER_CREATE = "user_create"
    USER_ASSIGN_PROJECT = "user_assign_project"
    USER_VIEW_TEAM = "user_view_team"

    # Reports
    REPORTS_VIEW_PROJECT = "reports_view_project"
    REPORTS_VIEW_ALL = "reports_view_all"
    REPORTS_EXPORT = "reports_export"


_ADMIN_PERMISSIONS: FrozenSet[Permission] = frozenset(Permission)

ROLE_PERMISSIONS: Mapping[Role, FrozenSet[Permission]] = MappingProxyType({
    Role.COMPANY_ADMIN: _ADMIN_PERMISSIONS,
    Role.ADMIN: _ADMIN_PERMISSIONS,
    Role.MANAGER: frozenset({
        Permission.PROJECT_VIEW_ASSIGNED,
        Permission.PROJECT_EDIT,
        Permission.TEAM_VIEW_ASSIGNED,
        Permission.TEAM_MANAGE,
        Permission.DATA_VIEW_PROJECT,
        Permission.DATA_VIEW_TEAM,
        Permission.DATA_EDIT_PROJECT,
        Permission.USER_VIEW_TEAM,
        Permission.REPORTS_VIEW_PROJECT,
        Permission.REPORTS_EXPORT,
    }),
    Role.HR: frozenset({
        Permission.PROJECT_VIEW_ASSIGNED,
        Permission.TEAM_VIEW_ASSIGNED,
        Permission.DATA_VIEW_PROJECT,
        Permission.DATA_VIEW_TEAM,
        Permission.USER_VIEW_TEAM,
        Permission.REPORTS_VIEW_PROJECT,
    }),
    Role.EMPLOYEE: frozenset({
        Permission.PROJECT_VIEW_ASSIGNED,
        Permission.DATA_VIEW_PROJECT,
    }),
})

# Lower rank = more authority
ROLE_HIERARCHY: Mapping[Role, int] = MappingProxyType({
    Role.COMPANY_ADMIN: 1,
    Role.ADMIN: 1,
    Role.MANAGER: 2,
    Role.HR: 3,
    Role.EMPLOYEE: 4,
})


def parse_role(value: Any) -> Optional[Role]:
    """Role for ``value``, or None when it is not a known role."""
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Role(value.strip().lower())
    except ValueError:
        return None


def normalize_role(value: Any) -> Optional[Role]:
    """Like parse_role, with the admin alias folded into company_admin."""
    role = parse_role(value)
    if role is Role.ADMIN:
        return Role.COMPANY_ADMIN
    return role


def parse_permission(value: Any) -> Optional[Permission]:
    if isinstance(value, Permission):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Permission(value.strip().lower())
    except ValueError:
        return None


def permissions_for(role: Any) -> FrozenSet[Permission]:
    """Permission set of a role; unknown roles get nothing."""
    parsed = parse_role(role)
    if parsed is None:
        return frozenset()
    return ROLE_PERMISSIONS.get(parsed, frozenset())


def has_permission(role: Any, permission: Any) -> bool:
    token = parse_permission(permission)
    if token is None:
        return False
    return token in permissions_for(role)


def has_any_permission(role: Any, permissions: Iterable[Any]) -> bool:
    return any(has_permission(role, permission) for permission in permissions)


def has_all_permissions(role: Any, permissions: Iterable[Any]) -> bool:
    return all(has_permission(role, permission) for permission in permissions)


def outranks(role: Any, other: Any) -> bool:
    """True if ``role`` carries strictly more authority than ``other``."""
    left, right = parse_role(role), parse_role(other)
    if left is None or right is None:
        return False
    return ROLE_HIERARCHY[left] < ROLE_HIERARCHY[right]


@dataclass(frozen=True)
class ActorContext:
    """Authenticated principal as handed over by the gateway."""
    actor_id: str
    role: str
    tenant_id: str

    @property
    def parsed_role(self) -> Optional[Role]:
        return normalize_role(self.role)

    def is_admin(self) -> bool:
        role = self.parsed_role
        return role is not None and role.is_admin

    def has_permission(self, permission: Any) -> bool:
        return has_permission(self.role, permission)


class AccessError(Exception):
    """Base for errors that map onto an HTTP status."""
    status_code = 403
    default_message = "Access denied"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[str]] = None):
        self.message = message or self.default_message
        self.errors = list(errors or [])
        super().__init__(self.message)


class AuthenticationRequired(AccessError):
    status_code = 401
    default_message = "Authentication required"


class PermissionDenied(AccessError):
    """Raised when a role lacks the required permission token."""
    status_code = 403
    default_message = "Insufficient permissions for this action"


class ProjectAccessDenied(AccessError):
    """Raised when an actor is not authorized for a specific project."""
    status_code = 403
    default_message = "Access denied to this project"


class MissingProjectError(AccessError):
    status_code = 400
    default_message = "Project ID is required"


class NotFound(AccessError):
    status_code = 404
    default_message = "Resource not found"


class AssignmentValidationError(AccessError):
    """Raised when a bulk assignment names users without the expected role."""
    status_code = 400
    default_message = "Invalid project assignments"
