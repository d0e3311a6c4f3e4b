"""Project creation with its batch of project assignments.

MongoDB writes to two collections are not atomic here, so a failed assignment
batch is compensated by deleting the freshly written project and whatever
assignments made it in.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping

from mongo.accessors import accessor_for
from mongo.models import ProjectAssignment
from mongo.tenants import TenantConnection

logger = logging.getLogger(__name__)

# Project field -> role-in-project of the assignment rows created for it
ASSIGNMENT_FIELDS = {
    "assignedManagers": "manager",
    "assignedHRs": "hr",
    "assignedEmployees": "employee",
}


def _generate_project_code() -> str:
    return f"PROJ{int(time.time() * 1000)}"


def build_assignments(project_id: Any, project: Mapping[str, Any], assigned_by: Any) -> List[ProjectAssignment]:
    now = datetime.now(timezone.utc)
    assignments: List[ProjectAssignment] = []
    seen = set()
    for field, role in ASSIGNMENT_FIELDS.items():
        for user_id in project.get(field) or []:
            key = (str(user_id), role)
            if key in seen:
                continue
            seen.add(key)
            assignments.append(
                ProjectAssignment(
                    projectId=project_id,
                    userId=user_id,
                    role=role,
                    isActive=True,
                    assignedBy=assigned_by,
                    assignedAt=now,
                )
            )
    return assignments


async def create_project_with_assignments(
    connection: TenantConnection,
    data: Mapping[str, Any],
    created_by: Any,
) -> Dict[str, Any]:
    """Insert a project and one active ProjectAssignment per assigned user.

    Returns the stored project document. If the assignment batch fails the
    project is removed again and the original error propagates.
    """
    projects = accessor_for(connection, "Project")
    assignments = accessor_for(connection, "ProjectAssignment", ProjectAssignment)

    now = datetime.now(timezone.utc)
    project: Dict[str, Any] = {
        "status": "planning",
        "priority": "medium",
        **dict(data),
        "projectCode": data.get("projectCode") or _generate_project_code(),
        "createdBy": created_by,
        "createdAt": now,
        "updatedAt": now,
    }
    for field in ASSIGNMENT_FIELDS:
        project[field] = list(project.get(field) or [])

    project_id = await projects.insert_one(project)
    project["_id"] = project_id
    logger.info(f"Created project {project_id} in {connection.db_name}")

    rows = build_assignments(project_id, project, created_by)
    try:
        await assignments.insert_many(rows)
    except Exception as e:
        logger.error(f"Assignment batch failed for project {project_id}, rolling back: {e}")
        try:
            await assignments.delete_many({"projectId": project_id})
            await projects.delete_by_id(project_id)
        except Exception as cleanup_error:
            logger.error(f"Compensating cleanup failed for project {project_id}: {cleanup_error}")
        raise

    logger.info(f"Created {len(rows)} project assignments for project {project_id}")
    return project
