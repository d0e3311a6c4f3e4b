#!/usr/bin/env python3
"""
Request Guard Tests

Guards are mounted on a throwaway app so each one can be exercised on its own.
"""

from typing import Annotated, Any, Dict, List

import pytest
from bson import ObjectId
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from main import create_app
from rbac import (
    ActorContext,
    Permission,
    ProjectScope,
    RecordScope,
    get_current_actor,
    require_permission,
    require_project_access,
    require_team_management_access,
    validate_project_assignments,
)
from rbac.auth import ProjectContext, filter_by_project_access, project_context


MANAGER = "64b000000000000000000001"
HR = "64b000000000000000000002"
EMPLOYEE = "64b000000000000000000003"


def headers(role: str, user_id: str = MANAGER, tenant: str = "acme") -> Dict[str, str]:
    return {"X-User-Id": user_id, "X-User-Role": role, "X-Tenant-Id": tenant}


@pytest.fixture
def guard_app(registry):
    app = create_app(registry)

    @app.get("/guarded/whoami")
    async def whoami(actor: Annotated[ActorContext, Depends(get_current_actor)]):
        return {"actor": actor.actor_id, "role": actor.role, "tenant": actor.tenant_id}

    @app.get("/guarded/reports")
    async def reports(actor: Annotated[ActorContext, Depends(require_permission(Permission.REPORTS_VIEW_ALL))]):
        return {"ok": True}

    @app.get("/guarded/project")
    async def project_from_query(scope: Annotated[ProjectScope, Depends(require_project_access())]):
        return {"projectId": scope.project_id, "db": scope.connection.db_name}

    @app.post("/guarded/project")
    async def project_from_body(scope: Annotated[ProjectScope, Depends(require_project_access())]):
        return {"projectId": scope.project_id}

    @app.post("/guarded/projects/{project_id}/team")
    async def manage_team(
        project_id: str,
        scope: Annotated[ProjectScope, Depends(require_team_management_access())],
    ):
        return {"projectId": scope.project_id}

    @app.post("/guarded/assign")
    async def assign(assignments: Annotated[Dict[str, List[str]], Depends(validate_project_assignments())]):
        return assignments

    @app.get("/guarded/records")
    async def records(scope: Annotated[RecordScope, Depends(filter_by_project_access())]):
        data: List[Any] = [{"projectId": "p1"}, {"projectId": "p2"}, {"n": 3}]
        return await scope.apply_to_payload({"success": True, "data": data, "count": len(data)})

    @app.get("/guarded/context")
    async def context(ctx: Annotated[ProjectContext, Depends(project_context())]):
        return {"projectIds": ctx.project_ids}

    return app


@pytest.fixture
def client(guard_app):
    with TestClient(guard_app) as client:
        yield client


@pytest.fixture
def project_p1(tenant_db):
    project_id, = tenant_db["projects"].seed({"_id": "p1", "name": "P1", "assignedManagers": [MANAGER]})
    return project_id


class TestCurrentActor:
    def test_headers_required(self, client):
        response = client.get("/guarded/whoami", headers={"X-User-Id": MANAGER, "X-User-Role": "manager"})

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert "X-Tenant-Id" in body["message"]

    def test_actor_from_headers(self, client):
        response = client.get("/guarded/whoami", headers=headers("Manager"))

        assert response.status_code == 200
        assert response.json() == {"actor": MANAGER, "role": "manager", "tenant": "acme"}


class TestRequirePermission:
    def test_missing_permission(self, client):
        response = client.get("/guarded/reports", headers=headers("manager"))

        assert response.status_code == 403
        assert response.json()["message"] == "Insufficient permissions for this action"

    def test_unknown_role_is_denied(self, client):
        assert client.get("/guarded/reports", headers=headers("superuser")).status_code == 403

    def test_permission_granted(self, client):
        assert client.get("/guarded/reports", headers=headers("company_admin")).status_code == 200


class TestRequireProjectAccess:
    def test_missing_project_id(self, client):
        response = client.get("/guarded/project", headers=headers("manager"))

        assert response.status_code == 400
        assert response.json()["message"] == "Project ID is required"

    def test_project_from_query(self, client, project_p1):
        response = client.get("/guarded/project", params={"projectId": "p1"}, headers=headers("manager"))

        assert response.status_code == 200
        assert response.json() == {"projectId": "p1", "db": "tenant_acme"}

    def test_project_from_body(self, client, project_p1):
        response = client.post("/guarded/project", json={"projectId": "p1"}, headers=headers("manager"))

        assert response.status_code == 200
        assert response.json() == {"projectId": "p1"}

    def test_access_denied(self, client, project_p1):
        response = client.get("/guarded/project", params={"projectId": "p1"}, headers=headers("hr", HR))

        assert response.status_code == 403
        assert response.json()["message"] == "Access denied to this project"

    def test_admin_always_allowed(self, client):
        response = client.get("/guarded/project", params={"projectId": "p404"}, headers=headers("admin", EMPLOYEE))

        assert response.status_code == 200

    def test_tenant_unavailable(self, client, client_factory):
        client_factory.ping_error = RuntimeError("no servers")

        response = client.get("/guarded/project", params={"projectId": "p1"}, headers=headers("manager"))

        assert response.status_code == 503
        assert response.json()["success"] is False


class TestTeamManagementAccess:
    def test_hr_cannot_manage_teams(self, client, project_p1):
        response = client.post("/guarded/projects/p1/team", headers=headers("hr", HR))

        assert response.status_code == 403
        assert response.json()["message"] == "Insufficient permissions for team management"

    def test_manager_on_own_project(self, client, project_p1):
        assert client.post("/guarded/projects/p1/team", headers=headers("manager")).status_code == 200

    def test_manager_on_other_project(self, client, tenant_db):
        tenant_db["projects"].seed({"_id": "p2", "assignedManagers": ["someone"]})

        assert client.post("/guarded/projects/p2/team", headers=headers("manager")).status_code == 403


class TestValidateAssignments:
    @pytest.fixture(autouse=True)
    def users(self, tenant_db):
        tenant_db["users"].seed(
            {"_id": ObjectId(MANAGER), "role": "manager"},
            {"_id": ObjectId(HR), "role": "hr"},
            {"_id": ObjectId(EMPLOYEE), "role": "employee"},
        )

    def test_valid_assignment(self, client):
        response = client.post(
            "/guarded/assign",
            json={"managers": [MANAGER], "hrs": [HR], "employees": [EMPLOYEE]},
            headers=headers("company_admin"),
        )

        assert response.status_code == 200
        assert response.json() == {"managers": [MANAGER], "hrs": [HR], "employees": [EMPLOYEE]}

    def test_itemized_errors(self, client):
        missing = str(ObjectId())
        response = client.post(
            "/guarded/assign",
            json={"assignedManagers": [HR, MANAGER], "assignedHRs": [missing]},
            headers=headers("company_admin"),
        )

        assert response.status_code == 400
        errors = response.json()["errors"]
        assert len(errors) == 2
        assert f"assignedManagers: user {HR} has role 'hr', expected 'manager'" in errors
        assert f"assignedHRs: user {missing} not found" in errors

    def test_non_list_value(self, client):
        response = client.post("/guarded/assign", json={"hrs": HR}, headers=headers("company_admin"))

        assert response.status_code == 400

    def test_nothing_to_validate(self, client):
        response = client.post("/guarded/assign", json={"name": "x"}, headers=headers("company_admin"))

        assert response.status_code == 200
        assert response.json() == {}


class TestRecordScope:
    def test_payload_filtered_for_manager(self, client, project_p1):
        response = client.get("/guarded/records", headers=headers("manager"))

        assert response.json() == {"success": True, "data": [{"projectId": "p1"}], "count": 1}

    def test_admin_sees_everything(self, client):
        response = client.get("/guarded/records", headers=headers("company_admin"))

        assert response.json()["count"] == 3

    def test_project_context(self, client, project_p1):
        assert client.get("/guarded/context", headers=headers("manager")).json() == {"projectIds": ["p1"]}
        assert client.get("/guarded/context", headers=headers("company_admin")).json() == {"projectIds": None}
