"""
Sync trigger and schedule schemas.

Request bodies accept both snake_case and the camelCase keys the admin UI sends.
"""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, Field


class TriggerSyncRequest(BaseModel):
    node_ids: list[str] | None = Field(default=None, validation_alias=AliasChoices("node_ids", "nodeIds"))
    node_id: str | None = Field(default=None, validation_alias=AliasChoices("node_id", "nodeId"))
    academic_year: str | None = Field(default=None, validation_alias=AliasChoices("academic_year", "academicYear"))
    all: bool = False
    include_descendants: bool = Field(
        default=False,
        validation_alias=AliasChoices("include_descendants", "includeDescendants"),
    )
    endpoints_mb: list[str] | None = Field(default=None, validation_alias=AliasChoices("endpoints_mb", "endpointsMb"))
    endpoints_nex: list[str] | None = Field(default=None, validation_alias=AliasChoices("endpoints_nex", "endpointsNex"))

    def resolved_node_ids(self) -> list[str]:
        if self.node_ids:
            return self.node_ids
        return [self.node_id] if self.node_id else []


class CreateScheduleRequest(BaseModel):
    node_id: str = Field(..., min_length=1)
    academic_year: str = Field(..., min_length=1)
    cron_expression: str = Field(..., min_length=1)
    endpoints_mb: list[str] | None = None
    endpoints_nex: list[str] | None = None
    include_descendants: bool = False


class UpdateScheduleRequest(BaseModel):
    node_id: str | None = Field(default=None, min_length=1)
    academic_year: str | None = Field(default=None, min_length=1)
    cron_expression: str | None = Field(default=None, min_length=1)
    endpoints_mb: list[str] | None = None
    endpoints_nex: list[str] | None = None
    include_descendants: bool | None = None
    is_active: bool | None = None
