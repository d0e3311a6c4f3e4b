"""Partial document shapes for tenant collections.

Shapes type the fields the access layer reads and keep everything else, so
documents written by older tooling still load.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TenantDocument(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, arbitrary_types_allowed=True)

    id: Any = Field(default=None, alias="_id")


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


class Project(TenantDocument):
    name: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    project_code: Optional[str] = Field(default=None, alias="projectCode")
    assigned_managers: List[Any] = Field(default_factory=list, alias="assignedManagers")
    assigned_hrs: List[Any] = Field(default_factory=list, alias="assignedHRs")
    assigned_employees: List[Any] = Field(default_factory=list, alias="assignedEmployees")
    created_by: Any = Field(default=None, alias="createdBy")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    @field_validator("assigned_managers", "assigned_hrs", "assigned_employees", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> List[Any]:
        return _as_list(value)


class ProjectAssignment(TenantDocument):
    project_id: Any = Field(alias="projectId")
    user_id: Any = Field(alias="userId")
    role: Optional[str] = None
    is_active: bool = Field(default=True, alias="isActive")
    permissions: List[str] = Field(default_factory=list)
    assigned_by: Any = Field(default=None, alias="assignedBy")
    assigned_at: Optional[datetime] = Field(default=None, alias="assignedAt")

    @field_validator("permissions", mode="before")
    @classmethod
    def _coerce_permissions(cls, value: Any) -> List[Any]:
        return _as_list(value)


class TeamAssignment(TenantDocument):
    project_id: Any = Field(alias="projectId")
    manager_id: Any = Field(alias="managerId")
    hr_id: Any = Field(alias="hrId")
    relationship_type: Optional[str] = Field(default=None, alias="relationshipType")
    is_active: bool = Field(default=True, alias="isActive")
    notes: Optional[str] = None
    assigned_at: Optional[datetime] = Field(default=None, alias="assignedAt")
