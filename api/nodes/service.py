"""
Node hierarchy rules and node/school assignment.

Rules:
- node ids are unique and nodes are never deleted
- at most one head office
- a parent must exist, a node cannot be its own parent, and the parent
  cannot be one of the node's descendants
- a school belongs to at most one node
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, status

from . import repository, schemas

logger = logging.getLogger(__name__)

SCHOOL_SOURCES = ("nex", "mb")


def build_tree(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Nest flat node rows under their parents.

    A node whose parent is missing from `rows` becomes a root.
    """
    by_id: dict[str, dict[str, Any]] = {str(r["node_id"]): {**r, "children": []} for r in rows}
    roots: list[dict[str, Any]] = []
    for node in by_id.values():
        parent_id = node.get("parent_node_id")
        parent = by_id.get(str(parent_id)) if parent_id else None
        if parent is None or parent is node:
            roots.append(node)
        else:
            parent["children"].append(node)
    return roots


async def list_nodes(*, tree: bool = False) -> list[dict]:
    rows = await repository.list_nodes()
    return build_tree(rows) if tree else rows


async def get_node(node_id: str) -> dict:
    node = await repository.get_node(node_id)
    if node is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Node not found")
    return node


async def _ensure_single_head_office(*, exclude_node_id: str | None = None) -> None:
    existing = await repository.get_head_office(exclude_node_id=exclude_node_id)
    if existing is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                f"Another node ({existing['node_id']}) is already set as Head Office. "
                "Only one Head Office is allowed."
            ),
        )


async def create_node(payload: schemas.CreateNodeRequest, *, created_by: str | None) -> dict:
    node_id = payload.node_id.strip()
    if await repository.get_node(node_id) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Node {node_id} already exists")

    if payload.is_head_office:
        await _ensure_single_head_office()

    parent_id = (payload.parent_node_id or "").strip() or None
    if parent_id is not None:
        if parent_id == node_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Node cannot be its own parent")
        if await repository.get_node(parent_id) is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Parent node not found")

    row = await repository.insert_node(
        node_id=node_id,
        node_description=payload.node_description.strip(),
        is_head_office=payload.is_head_office,
        is_school_node=payload.is_school_node,
        parent_node_id=parent_id,
        created_by=created_by,
    )
    logger.info("node_created node_id=%s parent=%s by=%s", node_id, parent_id, created_by)
    return row


async def update_node(node_id: str, payload: schemas.UpdateNodeRequest) -> dict:
    await get_node(node_id)

    if payload.is_head_office:
        await _ensure_single_head_office(exclude_node_id=node_id)

    clear_parent = payload.parent_node_id is not None and payload.parent_node_id.strip() == ""
    parent_id = None if clear_parent else payload.parent_node_id
    if parent_id is not None:
        parent_id = parent_id.strip()
        if parent_id == node_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Node cannot be its own parent")
        if await repository.get_node(parent_id) is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Parent node not found")
        if parent_id in await repository.descendant_ids([node_id]):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Circular reference: parent cannot be a descendant of this node",
            )

    row = await repository.update_node(
        node_id,
        node_description=payload.node_description,
        is_head_office=payload.is_head_office,
        is_school_node=payload.is_school_node,
        parent_node_id=parent_id,
        clear_parent=clear_parent,
    )
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Node not found")
    return row


def _check_source(school_source: str) -> str:
    source = (school_source or "").strip().lower()
    if source not in SCHOOL_SOURCES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="school_source must be 'nex' or 'mb'")
    return source


async def assign_school(node_id: str, payload: schemas.AssignSchoolRequest, *, created_by: str | None) -> dict:
    source = _check_source(payload.school_source)
    school_id = payload.school_id.strip()

    existing = await repository.get_school_assignment(school_id, source)
    if existing is not None:
        if str(existing["node_id"]) == node_id:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="School is already assigned to this node")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"School is already assigned to node {existing['node_id']}",
        )

    await get_node(node_id)

    if not await repository.school_exists(school_id, source):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="School not found")

    row = await repository.insert_school_assignment(
        node_id=node_id,
        school_id=school_id,
        school_source=source,
        created_by=created_by,
    )
    logger.info("school_assigned node_id=%s school_id=%s source=%s", node_id, school_id, source)
    return row


async def unassign_school(node_id: str, school_id: str, school_source: str) -> dict:
    source = _check_source(school_source)
    if not await repository.delete_school_assignment(node_id=node_id, school_id=school_id, school_source=source):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="School assignment not found")
    return {"success": True}


async def get_node_for_school(school_id: str, school_source: str) -> dict:
    source = _check_source(school_source)
    row = await repository.get_school_assignment(school_id, source)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="School is not assigned to any node")
    return row
