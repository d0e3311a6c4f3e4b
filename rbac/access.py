#!/usr/bin/env python3
"""
Project and team access resolution

Answers "which projects may this actor see", "may this actor touch that
project" and "who is on this actor's team" for one tenant, by asking the
access tiers in rbac.tiers. Resolution is fail-soft: storage errors are logged
and come back as an empty list or False, never as an exception.
"""

import logging
from enum import Enum
from typing import Any, List, Optional, Sequence

from mongo.accessors import accessor_for, as_document
from mongo.constants import ACCESS_FALLBACK_POLICY
from mongo.ids import id_str
from mongo.tenants import TenantConnection
from rbac.permissions import (
    Permission,
    Role,
    has_permission,
    normalize_role,
    parse_permission,
)
from rbac.tiers import AccessTier, AssignmentTier, EmbeddedProjectTier, first_decisive

logger = logging.getLogger(__name__)


class FallbackPolicy(str, Enum):
    # Embedded project arrays are consulted whenever no active assignment exists
    ALWAYS = "always"
    # A deactivated assignment is a revocation the embedded arrays cannot undo
    UNASSIGNED_ONLY = "unassigned_only"

    @classmethod
    def from_setting(cls, value: Optional[str]) -> "FallbackPolicy":
        try:
            return cls((value or cls.ALWAYS.value).strip().lower())
        except ValueError:
            logger.warning(f"Unknown ACCESS_FALLBACK_POLICY '{value}', using '{cls.ALWAYS.value}'")
            return cls.ALWAYS


class ProjectAccessResolver:
    """Project visibility and action checks for one tenant."""

    def __init__(
        self,
        connection: TenantConnection,
        policy: Optional[FallbackPolicy] = None,
        tiers: Optional[Sequence[AccessTier]] = None,
    ):
        self.connection = connection
        self.policy = policy or FallbackPolicy.from_setting(ACCESS_FALLBACK_POLICY)
        if tiers is None:
            tiers = (
                AssignmentTier(connection, revocations_are_final=self.policy is FallbackPolicy.UNASSIGNED_ONLY),
                EmbeddedProjectTier(connection),
            )
        self.tiers = tuple(tiers)

    def _assignment_tier(self) -> Optional[AssignmentTier]:
        for tier in self.tiers:
            if isinstance(tier, AssignmentTier):
                return tier
        return None

    async def get_user_projects(self, actor_id: Any) -> List[dict]:
        """Projects the actor is assigned to, or [] if none (or on error)."""
        try:
            projects = await first_decisive(
                self.tiers,
                lambda tier: tier.projects_for(actor_id),
                f"projects of user {actor_id}",
            )
            projects = [project for project in (projects or []) if project]

            assignment_tier = self._assignment_tier()
            if self.policy is FallbackPolicy.UNASSIGNED_ONLY and projects and assignment_tier:
                revoked = await assignment_tier.revoked_project_ids(actor_id)
                if revoked:
                    projects = [p for p in projects if id_str(p.get("_id")) not in revoked]
            return projects
        except Exception as e:
            logger.error(f"Error getting user projects for {actor_id}: {e}")
            return []

    async def can_access_project(self, actor_id: Any, project_id: Any, role: Any) -> bool:
        role = normalize_role(role)
        if role is Role.COMPANY_ADMIN:
            return True
        if project_id is None:
            return False
        try:
            granted = await first_decisive(
                self.tiers,
                lambda tier: tier.grants_access(actor_id, project_id),
                f"user {actor_id} on project {project_id}",
            )
            return bool(granted)
        except Exception as e:
            logger.error(f"Error checking project access for {actor_id} on {project_id}: {e}")
            return False

    async def can_perform_project_action(self, actor_id: Any, role: Any, action: Any, project_id: Any) -> bool:
        """Permission token, project access, then per-action role rules."""
        if not has_permission(role, action):
            return False
        if not await self.can_access_project(actor_id, project_id, role):
            return False

        role = normalize_role(role)
        action = parse_permission(action)
        if action is Permission.TEAM_MANAGE:
            # Teams are managed by the project's managers
            return role is Role.MANAGER
        if action is Permission.USER_ASSIGN_PROJECT:
            return role is Role.COMPANY_ADMIN
        if action is Permission.PROJECT_EDIT:
            return role in (Role.COMPANY_ADMIN, Role.MANAGER)
        return True


class TeamMembershipResolver:
    """Manager <-> HR pairings within a project."""

    def __init__(self, connection: TenantConnection, tiers: Optional[Sequence[AccessTier]] = None):
        self.connection = connection
        self.tiers = tuple(tiers) if tiers is not None else (
            AssignmentTier(connection),
            EmbeddedProjectTier(connection),
        )
        self.users = accessor_for(connection, "User")

    async def get_user_team_members(self, actor_id: Any, role: Any, project_id: Any) -> List[dict]:
        """Managers get their HRs, HRs get their managers, everyone else []."""
        role = normalize_role(role)
        if role not in (Role.MANAGER, Role.HR):
            return []
        try:
            member_ids = await first_decisive(
                self.tiers,
                lambda tier: tier.team_member_ids(actor_id, role, project_id),
                f"team of {role.value} {actor_id} on project {project_id}",
            )
            if not member_ids:
                return []
            return await self.resolve_actors(member_ids)
        except Exception as e:
            logger.error(f"Error getting team members for {actor_id} on {project_id}: {e}")
            return []

    async def resolve_actors(self, member_ids: Sequence[Any]) -> List[dict]:
        """User documents for ``member_ids`` in order; unknown ids come back as stubs."""
        refs = [ref for ref in member_ids if ref is not None]
        users = await self.users.find_by_ids(
            ref["_id"] if isinstance(ref, dict) else ref for ref in refs
        )
        by_id = {id_str(user.get("_id")): user for user in map(as_document, users)}

        members: List[dict] = []
        seen = set()
        for ref in refs:
            key = id_str(ref)
            if key in seen:
                continue
            seen.add(key)
            user = by_id.get(key)
            if user is None:
                user = ref if isinstance(ref, dict) else {"_id": ref}
            members.append(user)
        return members


async def get_user_projects(actor_id: Any, connection: TenantConnection) -> List[dict]:
    return await ProjectAccessResolver(connection).get_user_projects(actor_id)


async def can_access_project(actor_id: Any, project_id: Any, role: Any, connection: TenantConnection) -> bool:
    return await ProjectAccessResolver(connection).can_access_project(actor_id, project_id, role)


async def can_perform_project_action(
    actor_id: Any,
    role: Any,
    action: Any,
    project_id: Any,
    connection: TenantConnection,
) -> bool:
    return await ProjectAccessResolver(connection).can_perform_project_action(actor_id, role, action, project_id)


async def get_user_team_members(
    actor_id: Any,
    role: Any,
    project_id: Any,
    connection: TenantConnection,
) -> List[dict]:
    return await TeamMembershipResolver(connection).get_user_team_members(actor_id, role, project_id)
