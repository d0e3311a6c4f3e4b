#!/usr/bin/env python3
"""
RBAC-Protected Project Endpoints

Project listing, creation and team lookups behind the project access guards,
plus a generic scoped listing for tenant entities.
"""

import re
from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from mongo.accessors import accessor_for
from mongo.ids import jsonable_document
from mongo.projects import create_project_with_assignments
from mongo.tenants import TenantConnection
from rbac.access import ProjectAccessResolver, TeamMembershipResolver
from rbac.auth import (
    ProjectContext,
    ProjectScope,
    RecordScope,
    filter_by_project_access,
    get_current_actor,
    get_tenant_connection,
    project_context,
    require_any_permission,
    require_permission,
    require_project_access,
    validate_project_assignments,
)
from rbac.permissions import ActorContext, NotFound, Permission, parse_permission


router = APIRouter(prefix="/api", tags=["projects"])

_ENTITY_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_]{0,63}$")


def _envelope(data: Any, **extra: Any) -> Dict[str, Any]:
    encoded = jsonable_document(data)
    body: Dict[str, Any] = {"success": True, "data": encoded}
    if isinstance(encoded, list):
        body["count"] = len(encoded)
    body.update(extra)
    return body


# ============================================================================
# PROJECTS ENDPOINTS
# ============================================================================

class ProjectCreateRequest(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    description: Optional[str] = None
    location: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    start_date: Optional[str] = Field(default=None, alias="startDate")
    end_date: Optional[str] = Field(default=None, alias="endDate")
    assigned_managers: List[str] = Field(default_factory=list, alias="assignedManagers")
    assigned_hrs: List[str] = Field(default_factory=list, alias="assignedHRs")
    assigned_employees: List[str] = Field(default_factory=list, alias="assignedEmployees")


@router.get("/projects")
async def list_projects(
    actor: Annotated[ActorContext, Depends(
        require_any_permission(Permission.PROJECT_VIEW_ALL, Permission.PROJECT_VIEW_ASSIGNED)
    )],
    context: Annotated[ProjectContext, Depends(project_context())],
    status: Optional[str] = None,
):
    """
    List projects visible to the actor.

    - Company admins see every project in the tenant
    - Everyone else sees the projects they are assigned to
    """
    if context.projects is None:
        query = {"status": status} if status else {}
        projects = await accessor_for(context.connection, "Project").find(query)
    else:
        projects = [p for p in context.projects if not status or p.get("status") == status]
    return _envelope(projects)


@router.post("/projects", status_code=201)
async def create_project(
    payload: ProjectCreateRequest,
    actor: Annotated[ActorContext, Depends(require_permission(Permission.PROJECT_CREATE))],
    assignments: Annotated[Dict[str, List[str]], Depends(validate_project_assignments())],
    connection: Annotated[TenantConnection, Depends(get_tenant_connection)],
):
    """
    Create a project and its project assignments.

    - Requires project_create
    - Every assigned manager / HR / employee must hold that role
    """
    data = payload.model_dump(by_alias=True, exclude_none=True)
    project = await create_project_with_assignments(connection, data, created_by=actor.actor_id)
    return _envelope(project, message="Project created successfully")


@router.get("/projects/{project_id}")
async def get_project(
    project_id: str,
    scope: Annotated[ProjectScope, Depends(require_project_access())],
):
    """Get a project the actor is cleared for."""
    project = await accessor_for(scope.connection, "Project").find_by_id(project_id)
    if not project:
        raise NotFound("Project not found")
    return _envelope(project)


@router.get("/projects/{project_id}/team")
async def get_project_team(
    project_id: str,
    scope: Annotated[ProjectScope, Depends(require_project_access())],
):
    """Managers see their HR partners on the project, HR staff their managers."""
    members = await TeamMembershipResolver(scope.connection).get_user_team_members(
        scope.actor.actor_id, scope.actor.role, project_id
    )
    return _envelope(members)


@router.get("/projects/{project_id}/actions/{action}")
async def check_project_action(
    project_id: str,
    action: str,
    actor: Annotated[ActorContext, Depends(get_current_actor)],
    connection: Annotated[TenantConnection, Depends(get_tenant_connection)],
):
    """Whether the actor may perform ``action`` on the project."""
    if parse_permission(action) is None:
        raise HTTPException(status_code=400, detail=f"Unknown action: {action}")
    allowed = await ProjectAccessResolver(connection).can_perform_project_action(
        actor.actor_id, actor.role, action, project_id
    )
    return _envelope({"projectId": project_id, "action": action, "allowed": allowed})


# ============================================================================
# TENANT ENTITIES ENDPOINT
# ============================================================================

@router.get("/entities/{entity_name}")
async def list_entity_records(
    entity_name: str,
    actor: Annotated[ActorContext, Depends(require_permission(Permission.DATA_VIEW_PROJECT))],
    connection: Annotated[TenantConnection, Depends(get_tenant_connection)],
    scope: Annotated[RecordScope, Depends(filter_by_project_access())],
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
):
    """
    List records of any tenant entity, scoped to the actor's projects.

    Records without a projectId are only visible to company admins.
    """
    if not _ENTITY_NAME.match(entity_name):
        raise HTTPException(status_code=400, detail="Invalid entity name")
    records = await accessor_for(connection, entity_name).find(limit=limit)
    return _envelope(await scope.apply(records))
