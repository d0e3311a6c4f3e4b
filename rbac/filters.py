#!/usr/bin/env python3
"""
Data scope filters - narrow list results to the actor's authorized projects

Applied by endpoints as an explicit step after retrieval. Records without a
projectId are dropped for everyone except company admins.
"""

import logging
from typing import Any, Iterable, List, Mapping, Optional, Set

from mongo.ids import id_str
from mongo.tenants import TenantConnection
from rbac.access import ProjectAccessResolver
from rbac.permissions import Role, normalize_role

logger = logging.getLogger(__name__)

PROJECT_FIELD = "projectId"


def _record_project_id(record: Any) -> Optional[Any]:
    if isinstance(record, Mapping):
        return record.get(PROJECT_FIELD)
    return getattr(record, PROJECT_FIELD, None) or getattr(record, "project_id", None)


def keep_records_in_projects(records: Iterable[Any], project_ids: Set[str]) -> List[Any]:
    """Records whose projectId is present and in ``project_ids``."""
    kept = []
    for record in records:
        project_id = _record_project_id(record)
        if project_id is None:
            continue
        if id_str(project_id) in project_ids:
            kept.append(record)
    return kept


async def authorized_project_ids(actor_id: Any, connection: TenantConnection) -> Set[str]:
    projects = await ProjectAccessResolver(connection).get_user_projects(actor_id)
    return {id_str(project.get("_id")) for project in projects if project.get("_id") is not None}


async def filter_by_project_access(
    actor_id: Any,
    role: Any,
    records: List[Any],
    connection: TenantConnection,
) -> List[Any]:
    """Restrict ``records`` to the actor's projects; admins get ``records`` itself."""
    if normalize_role(role) is Role.COMPANY_ADMIN:
        return records

    try:
        project_ids = await authorized_project_ids(actor_id, connection)
    except Exception as e:
        logger.error(f"Error filtering data for {actor_id}: {e}")
        return []

    filtered = keep_records_in_projects(records, project_ids)
    logger.debug(
        f"Project scope for {actor_id}: kept {len(filtered)} of {len(records)} records "
        f"across {len(project_ids)} projects"
    )
    return filtered


async def filter_payload(
    actor_id: Any,
    role: Any,
    payload: Any,
    connection: TenantConnection,
) -> Any:
    """Filter the ``data`` list of a response envelope and refresh its ``count``."""
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
        return payload
    data = await filter_by_project_access(actor_id, role, payload["data"], connection)
    if data is payload["data"]:
        return payload
    return {**payload, "data": data, "count": len(data)}
