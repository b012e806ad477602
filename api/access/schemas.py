"""
Access control schemas.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class GrantAccessRequest(BaseModel):
    node_id: str = Field(..., min_length=1, max_length=50)
    department_ids: list[str] = Field(..., min_length=1)


class UpdateAccessRequest(BaseModel):
    department_ids: list[str] = Field(default_factory=list)


class CreateGroupRequest(BaseModel):
    group_id: str = Field(..., min_length=1, max_length=50)
    group_name: str = Field(..., min_length=1, max_length=200)
    group_description: str | None = None


class UpdateGroupRequest(BaseModel):
    group_name: str = Field(..., min_length=1, max_length=200)
    group_description: str | None = None


class GroupNodeAccess(BaseModel):
    node_id: str = Field(..., min_length=1, max_length=50)
    department_ids: list[str] = Field(default_factory=list)


class SetGroupNodesRequest(BaseModel):
    node_access: list[GroupNodeAccess]


class SetGroupPagesRequest(BaseModel):
    item_ids: list[str]


class SetUserGroupsRequest(BaseModel):
    group_ids: list[str]
