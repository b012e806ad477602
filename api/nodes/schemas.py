"""
Node and node/school schemas.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

SchoolSource = Literal["nex", "mb"]


class CreateNodeRequest(BaseModel):
    node_id: str = Field(..., min_length=1, max_length=50)
    node_description: str = Field(..., min_length=1, max_length=200)
    is_head_office: bool = False
    is_school_node: bool = False
    parent_node_id: str | None = Field(default=None, max_length=50)


class UpdateNodeRequest(BaseModel):
    node_description: str | None = Field(default=None, min_length=1, max_length=200)
    is_head_office: bool | None = None
    is_school_node: bool | None = None
    # Send "" to detach a node from its parent.
    parent_node_id: str | None = Field(default=None, max_length=50)


class AssignSchoolRequest(BaseModel):
    school_id: str = Field(..., min_length=1, max_length=100)
    school_source: SchoolSource
