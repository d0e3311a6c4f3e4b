#!/usr/bin/env python3
"""
Authorization data sources, tried in order.

Tenants carry project authorization in two places: dedicated assignment
records (projectassignments / teamassignments) and, on older data, arrays
embedded in the project document itself. Each source is an AccessTier; a tier
answers None when it has nothing to say, which hands the question to the next
tier.
"""

import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Set

from mongo.accessors import accessor_for, as_document, as_shape
from mongo.ids import contains_id, id_candidates, id_str, same_id
from mongo.models import ProjectAssignment, TeamAssignment
from mongo.tenants import TenantConnection
from rbac.permissions import Role

logger = logging.getLogger(__name__)


class AccessTier:
    """One source of project authorization data."""

    name = "tier"

    def __init__(self, connection: TenantConnection):
        self.connection = connection
        self.projects = accessor_for(connection, "Project")

    async def projects_for(self, actor_id: Any) -> Optional[List[dict]]:
        return None

    async def grants_access(self, actor_id: Any, project_id: Any) -> Optional[bool]:
        return None

    async def team_member_ids(self, actor_id: Any, role: Role, project_id: Any) -> Optional[List[Any]]:
        return None


class AssignmentTier(AccessTier):
    """Dedicated ProjectAssignment / TeamAssignment records."""

    name = "assignment"

    def __init__(self, connection: TenantConnection, revocations_are_final: bool = False):
        super().__init__(connection)
        self.assignments = accessor_for(connection, "ProjectAssignment", ProjectAssignment)
        self.teams = accessor_for(connection, "TeamAssignment", TeamAssignment)
        # When set, an inactive assignment denies instead of deferring to later tiers
        self.revocations_are_final = revocations_are_final

    async def _rows(self, actor_id: Any, active: bool, project_id: Any = None) -> List[ProjectAssignment]:
        query = {"userId": {"$in": id_candidates(actor_id)}, "isActive": active}
        if project_id is not None:
            query["projectId"] = {"$in": id_candidates(project_id)}
        return [as_shape(row, ProjectAssignment) for row in await self.assignments.find(query)]

    async def projects_for(self, actor_id: Any) -> Optional[List[dict]]:
        rows = await self._rows(actor_id, active=True)
        logger.debug(f"Found {len(rows)} active assignments for user {actor_id}")
        if not rows:
            return None
        return [as_document(p) for p in await self.projects.find_by_ids(row.project_id for row in rows)]

    async def grants_access(self, actor_id: Any, project_id: Any) -> Optional[bool]:
        if await self._rows(actor_id, active=True, project_id=project_id):
            return True
        if self.revocations_are_final and await self._rows(actor_id, active=False, project_id=project_id):
            logger.info(f"User {actor_id} has a deactivated assignment on project {project_id}")
            return False
        return None

    async def revoked_project_ids(self, actor_id: Any) -> Set[str]:
        """Projects the actor was unassigned from and not re-assigned to."""
        inactive = {id_str(row.project_id) for row in await self._rows(actor_id, active=False)}
        if not inactive:
            return set()
        active = {id_str(row.project_id) for row in await self._rows(actor_id, active=True)}
        return inactive - active

    async def team_member_ids(self, actor_id: Any, role: Role, project_id: Any) -> Optional[List[Any]]:
        if role is Role.MANAGER:
            own_field, other = "managerId", "hr_id"
        elif role is Role.HR:
            own_field, other = "hrId", "manager_id"
        else:
            return None

        rows = await self.teams.find({
            own_field: {"$in": id_candidates(actor_id)},
            "projectId": {"$in": id_candidates(project_id)},
            "isActive": True,
        })
        if not rows:
            return None
        return [getattr(as_shape(row, TeamAssignment), other) for row in rows]


class EmbeddedProjectTier(AccessTier):
    """assignedManagers / assignedHRs / createdBy embedded in the project."""

    name = "embedded project"

    async def projects_for(self, actor_id: Any) -> Optional[List[dict]]:
        candidates = id_candidates(actor_id)
        projects = await self.projects.find({
            "$or": [
                {"assignedManagers": {"$in": candidates}},
                {"assignedHRs": {"$in": candidates}},
                {"createdBy": {"$in": candidates}},
            ]
        })
        logger.debug(f"Found {len(projects)} projects in embedded fallback for user {actor_id}")
        return [as_document(project) for project in projects]

    async def grants_access(self, actor_id: Any, project_id: Any) -> Optional[bool]:
        project = as_document(await self.projects.find_by_id(project_id))
        if not project:
            return False
        return (
            contains_id(project.get("assignedManagers"), actor_id)
            or contains_id(project.get("assignedHRs"), actor_id)
            or same_id(project.get("createdBy"), actor_id)
        )

    async def team_member_ids(self, actor_id: Any, role: Role, project_id: Any) -> Optional[List[Any]]:
        project = as_document(await self.projects.find_by_id(project_id))
        if not project:
            return []
        if role is Role.MANAGER:
            return list(project.get("assignedHRs") or [])
        if role is Role.HR:
            return list(project.get("assignedManagers") or [])
        return []


async def first_decisive(
    tiers: Sequence[AccessTier],
    ask: Callable[[AccessTier], Awaitable[Any]],
    description: str,
) -> Any:
    """Ask each tier in order; the first answer that is not None wins.

    A tier that raises is logged as an error and the next tier is asked.
    """
    for index, tier in enumerate(tiers):
        try:
            answer = await ask(tier)
        except Exception as e:
            logger.error(f"{tier.name} tier failed for {description}: {e}", exc_info=True)
            continue
        if answer is None:
            continue
        if index > 0:
            logger.warning(f"No {tiers[0].name} records for {description}; used {tier.name} tier")
        return answer
    return None
