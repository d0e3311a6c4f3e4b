"""
RBAC (Role-Based Access Control) Module

Role permission matrix, project-scoped access resolution and request guards
for tenant HR data.
"""

from rbac.permissions import (
    ActorContext,
    Permission,
    Role,
    ROLE_PERMISSIONS,
    ROLE_HIERARCHY,
    has_permission,
    normalize_role,
    AccessError,
    AuthenticationRequired,
    PermissionDenied,
    ProjectAccessDenied,
    MissingProjectError,
    NotFound,
    AssignmentValidationError,
)

from rbac.access import (
    FallbackPolicy,
    ProjectAccessResolver,
    TeamMembershipResolver,
    get_user_projects,
    can_access_project,
    can_perform_project_action,
    get_user_team_members,
)

from rbac.filters import filter_by_project_access

from rbac.auth import (
    get_current_actor,
    require_permission,
    require_project_access,
    require_team_management_access,
    validate_project_assignments,
    ProjectScope,
    RecordScope,
)

__all__ = [
    # Core types
    "ActorContext",
    "Permission",
    "Role",
    "ROLE_PERMISSIONS",
    "ROLE_HIERARCHY",
    "has_permission",
    "normalize_role",
    # Errors
    "AccessError",
    "AuthenticationRequired",
    "PermissionDenied",
    "ProjectAccessDenied",
    "MissingProjectError",
    "NotFound",
    "AssignmentValidationError",
    # Resolution
    "FallbackPolicy",
    "ProjectAccessResolver",
    "TeamMembershipResolver",
    "get_user_projects",
    "can_access_project",
    "can_perform_project_action",
    "get_user_team_members",
    "filter_by_project_access",
    # Guards
    "get_current_actor",
    "require_permission",
    "require_project_access",
    "require_team_management_access",
    "validate_project_assignments",
    "ProjectScope",
    "RecordScope",
]
