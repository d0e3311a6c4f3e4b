#!/usr/bin/env python3
"""
Tenant database bootstrap
Creates the standard tenant collections and the indexes the access layer
queries by (assignment lookups and embedded-array fallbacks).
"""

import argparse
import asyncio
import logging
from typing import Any, Dict, List, Tuple

from mongo.constants import (
    PROJECTS_COLLECTION,
    PROJECT_ASSIGNMENTS_COLLECTION,
    TEAM_ASSIGNMENTS_COLLECTION,
    TENANT_COLLECTIONS,
    USERS_COLLECTION,
)
from mongo.tenants import TenantConnection, TenantConnectionRegistry

# Configure logging
logger = logging.getLogger(__name__)

# (collection, keys, index name)
TENANT_INDEXES: List[Tuple[str, List[Tuple[str, int]], str]] = [
    # Tier-1 project access: active assignments per user / per (user, project)
    (PROJECT_ASSIGNMENTS_COLLECTION, [("userId", 1), ("projectId", 1), ("isActive", 1)], "projectassignments_user_project_active"),
    (PROJECT_ASSIGNMENTS_COLLECTION, [("projectId", 1), ("isActive", 1)], "projectassignments_project_active"),

    # Tier-1 team membership, looked up from either side of the pairing
    (TEAM_ASSIGNMENTS_COLLECTION, [("projectId", 1), ("managerId", 1), ("isActive", 1)], "teamassignments_project_manager_active"),
    (TEAM_ASSIGNMENTS_COLLECTION, [("projectId", 1), ("hrId", 1), ("isActive", 1)], "teamassignments_project_hr_active"),

    # Tier-2 fallback over embedded arrays
    (PROJECTS_COLLECTION, [("assignedManagers", 1)], "projects_assigned_managers"),
    (PROJECTS_COLLECTION, [("assignedHRs", 1)], "projects_assigned_hrs"),
    (PROJECTS_COLLECTION, [("createdBy", 1)], "projects_created_by"),

    # Bulk assignment validation
    (USERS_COLLECTION, [("role", 1)], "users_role"),
]


async def create_index_if_not_exists(collection, index_spec, index_name) -> bool:
    """Create index only if it doesn't already exist"""
    try:
        existing = await collection.index_information()
        if index_name in existing:
            return True
        await collection.create_index(index_spec, name=index_name)
        return True
    except Exception as e:
        logger.error(f"Error creating index '{index_name}': {e}")
        return False


async def initialize_tenant_database(connection: TenantConnection) -> Dict[str, Any]:
    """Create missing tenant collections and ensure access-layer indexes.

    Returns a summary; index failures are reported there rather than raised.
    """
    existing = set(await connection.database.list_collection_names())
    created: List[str] = []
    for name in TENANT_COLLECTIONS:
        if name not in existing:
            await connection.database.create_collection(name)
            created.append(name)
            logger.info(f"Created collection {connection.db_name}.{name}")

    failed: List[str] = []
    for collection_name, keys, index_name in TENANT_INDEXES:
        ok = await create_index_if_not_exists(connection[collection_name], keys, index_name)
        if not ok:
            failed.append(index_name)

    logger.info(
        f"Initialized tenant database {connection.db_name}: "
        f"{len(created)} collections created, {len(TENANT_INDEXES) - len(failed)} indexes ensured"
    )
    return {
        "database": connection.db_name,
        "createdCollections": created,
        "failedIndexes": failed,
    }


async def _main(tenant_ids: List[str]) -> None:
    registry = TenantConnectionRegistry()
    try:
        for tenant_id in tenant_ids:
            connection = await registry.get_connection(tenant_id)
            await initialize_tenant_database(connection)
    finally:
        await registry.close_all()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    parser = argparse.ArgumentParser(description="Bootstrap tenant databases")
    parser.add_argument("tenant_ids", nargs="+", help="Tenant ids (with or without the tenant_ prefix)")
    args = parser.parse_args()
    asyncio.run(_main(args.tenant_ids))
