#!/usr/bin/env python3
"""
Data Scope Filter Tests
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from bson import ObjectId

from rbac.filters import filter_by_project_access, filter_payload, keep_records_in_projects


MANAGER = "64b000000000000000000001"


@pytest.fixture
def projects(tenant_db):
    """P1 managed by MANAGER, P2 owned by someone else."""
    p1, p2 = tenant_db["projects"].seed(
        {"name": "P1", "assignedManagers": [MANAGER]},
        {"name": "P2", "assignedManagers": ["someone-else"]},
    )
    return p1, p2


class TestFilterByProjectAccess:
    @pytest.mark.asyncio
    async def test_admin_gets_identical_list(self, connection):
        records = [{"projectId": "x"}, {"name": "no project"}]

        assert await filter_by_project_access("u1", "company_admin", records, connection) is records
        assert await filter_by_project_access("u1", "admin", records, connection) is records

    @pytest.mark.asyncio
    async def test_manager_sees_only_authorized_projects(self, connection, projects):
        p1, p2 = projects
        records = [{"projectId": p1}, {"projectId": p2}, {"name": "orphan"}]

        filtered = await filter_by_project_access(MANAGER, "manager", records, connection)

        assert filtered == [{"projectId": p1}]

    @pytest.mark.asyncio
    async def test_string_and_object_ids_both_match(self, connection, projects):
        p1, _ = projects
        records = [{"projectId": str(p1), "n": 1}, {"projectId": p1, "n": 2}]

        filtered = await filter_by_project_access(MANAGER, "manager", records, connection)

        assert [r["n"] for r in filtered] == [1, 2]

    @pytest.mark.asyncio
    async def test_attribute_records(self, connection, projects):
        p1, p2 = projects
        records = [SimpleNamespace(projectId=p1), SimpleNamespace(project_id=p2), SimpleNamespace()]

        filtered = await filter_by_project_access(MANAGER, "manager", records, connection)

        assert filtered == [records[0]]

    @pytest.mark.asyncio
    async def test_actor_without_projects_sees_nothing(self, connection, projects):
        p1, _ = projects

        assert await filter_by_project_access("nobody", "employee", [{"projectId": p1}], connection) == []

    @pytest.mark.asyncio
    async def test_error_yields_empty_list(self, connection):
        with patch("rbac.filters.authorized_project_ids", AsyncMock(side_effect=RuntimeError("down"))):
            assert await filter_by_project_access(MANAGER, "manager", [{"projectId": "p"}], connection) == []


class TestFilterPayload:
    @pytest.mark.asyncio
    async def test_envelope_count_rewritten(self, connection, projects):
        p1, p2 = projects
        payload = {"success": True, "data": [{"projectId": p1}, {"projectId": p2}], "count": 2}

        filtered = await filter_payload(MANAGER, "manager", payload, connection)

        assert filtered == {"success": True, "data": [{"projectId": p1}], "count": 1}

    @pytest.mark.asyncio
    async def test_non_list_payload_passes_through(self, connection):
        payload = {"success": True, "data": {"projectId": "p"}}

        assert await filter_payload(MANAGER, "manager", payload, connection) is payload
        assert await filter_payload(MANAGER, "manager", "text", connection) == "text"

    @pytest.mark.asyncio
    async def test_admin_payload_untouched(self, connection):
        payload = {"data": [{"name": "anything"}], "count": 1}

        assert await filter_payload("u1", "company_admin", payload, connection) is payload


def test_keep_records_in_projects():
    oid = ObjectId()
    records = [{"projectId": oid}, {"projectId": None}, {"other": 1}]

    assert keep_records_in_projects(records, {str(oid)}) == [records[0]]
