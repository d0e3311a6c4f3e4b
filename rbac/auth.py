#!/usr/bin/env python3
"""
Request-time access guards

FastAPI dependencies that compose the permission matrix, the tenant registry
and the project resolvers. Credentials are verified upstream; the gateway
forwards the actor as X-User-Id / X-User-Role / X-Tenant-Id headers.
"""

import logging
from dataclasses import dataclass
from typing import Annotated, Any, Dict, List, Optional

from fastapi import Depends, Header, Request

from mongo.accessors import accessor_for, as_document
from mongo.ids import id_str
from mongo.tenants import TenantConnection, TenantConnectionRegistry
from rbac.access import ProjectAccessResolver
from rbac.filters import filter_by_project_access as scope_records, filter_payload
from rbac.permissions import (
    ActorContext,
    AssignmentValidationError,
    AuthenticationRequired,
    MissingProjectError,
    Permission,
    PermissionDenied,
    ProjectAccessDenied,
    Role,
    has_any_permission,
    has_permission,
)

logger = logging.getLogger(__name__)


async def get_current_actor(
    x_user_id: Annotated[Optional[str], Header()] = None,
    x_user_role: Annotated[Optional[str], Header()] = None,
    x_tenant_id: Annotated[Optional[str], Header()] = None,
) -> ActorContext:
    """Actor forwarded by the authenticating gateway."""
    missing = [
        name for name, value in (
            ("X-User-Id", x_user_id),
            ("X-User-Role", x_user_role),
            ("X-Tenant-Id", x_tenant_id),
        )
        if not value or not value.strip()
    ]
    if missing:
        raise AuthenticationRequired(f"Missing authentication headers: {', '.join(missing)}")
    return ActorContext(
        actor_id=x_user_id.strip(),
        role=x_user_role.strip().lower(),
        tenant_id=x_tenant_id.strip(),
    )


def get_tenant_registry(request: Request) -> TenantConnectionRegistry:
    return request.app.state.tenant_registry


async def get_tenant_connection(
    actor: Annotated[ActorContext, Depends(get_current_actor)],
    registry: Annotated[TenantConnectionRegistry, Depends(get_tenant_registry)],
) -> TenantConnection:
    return await registry.get_connection(actor.tenant_id)


async def _request_project_id(request: Request) -> Optional[str]:
    """Project id from the path, the query string or a JSON body, in that order."""
    project_id = request.path_params.get("project_id") or request.query_params.get("projectId")
    if project_id:
        return project_id
    if request.method in ("POST", "PUT", "PATCH"):
        body = await _json_body(request)
        if body.get("projectId"):
            return str(body["projectId"])
    return None


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@dataclass
class ProjectScope:
    """An actor cleared for one project, with the tenant connection used to check it."""
    actor: ActorContext
    project_id: str
    connection: TenantConnection


class PermissionChecker:
    """Require one permission token (or, with any_of, at least one of several)."""

    def __init__(self, *permissions: Permission, any_of: bool = False):
        self.permissions = permissions
        self.any_of = any_of

    async def __call__(
        self,
        actor: Annotated[ActorContext, Depends(get_current_actor)],
    ) -> ActorContext:
        if self.any_of:
            allowed = has_any_permission(actor.role, self.permissions)
        else:
            allowed = all(has_permission(actor.role, permission) for permission in self.permissions)
        if not allowed:
            logger.info(
                f"Permission denied for role {actor.role}: "
                f"{', '.join(permission.value for permission in self.permissions)}"
            )
            raise PermissionDenied()
        return actor


class ProjectAccessChecker:
    """Require access to the project named by the request."""

    async def __call__(
        self,
        request: Request,
        actor: Annotated[ActorContext, Depends(get_current_actor)],
        registry: Annotated[TenantConnectionRegistry, Depends(get_tenant_registry)],
    ) -> ProjectScope:
        project_id = await _request_project_id(request)
        if not project_id:
            raise MissingProjectError()

        connection = await registry.get_connection(actor.tenant_id)
        resolver = ProjectAccessResolver(connection)
        if not await resolver.can_access_project(actor.actor_id, project_id, actor.role):
            logger.info(f"Access denied for user {actor.actor_id} to project {project_id}")
            raise ProjectAccessDenied()

        return ProjectScope(actor=actor, project_id=project_id, connection=connection)


class TeamManagementChecker(ProjectAccessChecker):
    """Company admins and managers, and only on projects they can access."""

    async def __call__(
        self,
        request: Request,
        actor: Annotated[ActorContext, Depends(get_current_actor)],
        registry: Annotated[TenantConnectionRegistry, Depends(get_tenant_registry)],
    ) -> ProjectScope:
        if actor.parsed_role not in (Role.COMPANY_ADMIN, Role.MANAGER):
            raise PermissionDenied("Insufficient permissions for team management")
        return await super().__call__(request, actor, registry)


@dataclass
class RecordScope:
    """Post-retrieval filter bound to the current actor."""
    actor: ActorContext
    connection: TenantConnection

    async def apply(self, records: List[Any]) -> List[Any]:
        return await scope_records(self.actor.actor_id, self.actor.role, records, self.connection)

    async def apply_to_payload(self, payload: Any) -> Any:
        return await filter_payload(self.actor.actor_id, self.actor.role, payload, self.connection)


async def _record_scope(
    actor: Annotated[ActorContext, Depends(get_current_actor)],
    connection: Annotated[TenantConnection, Depends(get_tenant_connection)],
) -> RecordScope:
    return RecordScope(actor=actor, connection=connection)


@dataclass
class ProjectContext:
    """The actor's authorized projects; None means unrestricted (company admin)."""
    actor: ActorContext
    connection: TenantConnection
    projects: Optional[List[dict]]

    @property
    def project_ids(self) -> Optional[List[str]]:
        if self.projects is None:
            return None
        return [id_str(project.get("_id")) for project in self.projects]


async def _project_context(
    actor: Annotated[ActorContext, Depends(get_current_actor)],
    connection: Annotated[TenantConnection, Depends(get_tenant_connection)],
) -> ProjectContext:
    if actor.is_admin():
        return ProjectContext(actor=actor, connection=connection, projects=None)
    projects = await ProjectAccessResolver(connection).get_user_projects(actor.actor_id)
    return ProjectContext(actor=actor, connection=connection, projects=projects)


# Payload keys of a bulk assignment -> role each referenced user must hold
ASSIGNMENT_ROLES = {
    "managers": Role.MANAGER,
    "assignedManagers": Role.MANAGER,
    "hrs": Role.HR,
    "assignedHRs": Role.HR,
    "employees": Role.EMPLOYEE,
    "assignedEmployees": Role.EMPLOYEE,
}


class AssignmentValidator:
    """Check every user named in a bulk assignment holds the expected role."""

    async def __call__(
        self,
        request: Request,
        connection: Annotated[TenantConnection, Depends(get_tenant_connection)],
    ) -> Dict[str, List[str]]:
        body = await _json_body(request)
        requested: Dict[str, List[Any]] = {}
        for key in ASSIGNMENT_ROLES:
            value = body.get(key)
            if value is None:
                continue
            if not isinstance(value, list):
                raise AssignmentValidationError(errors=[f"'{key}' must be a list of user ids"])
            if value:
                requested[key] = value

        if not requested:
            return {}

        users = accessor_for(connection, "User")
        all_ids = [user_id for ids in requested.values() for user_id in ids]
        found = {id_str(user.get("_id")): user for user in map(as_document, await users.find_by_ids(all_ids))}

        reasons: List[str] = []
        for key, ids in requested.items():
            expected = ASSIGNMENT_ROLES[key]
            for user_id in ids:
                user = found.get(id_str(user_id))
                if user is None:
                    reasons.append(f"{key}: user {user_id} not found")
                elif str(user.get("role", "")).lower() != expected.value:
                    reasons.append(
                        f"{key}: user {user_id} has role '{user.get('role')}', expected '{expected.value}'"
                    )

        if reasons:
            logger.info(f"Rejected project assignment with {len(reasons)} invalid entries")
            raise AssignmentValidationError(errors=reasons)

        return {key: [id_str(user_id) for user_id in ids] for key, ids in requested.items()}


def require_permission(permission: Permission) -> PermissionChecker:
    return PermissionChecker(permission)


def require_any_permission(*permissions: Permission) -> PermissionChecker:
    return PermissionChecker(*permissions, any_of=True)


def require_project_access() -> ProjectAccessChecker:
    return ProjectAccessChecker()


def require_team_management_access() -> TeamManagementChecker:
    return TeamManagementChecker()


def validate_project_assignments() -> AssignmentValidator:
    return AssignmentValidator()


def filter_by_project_access():
    return _record_scope


def project_context():
    return _project_context
