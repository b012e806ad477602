"""
Node/department access for users, access groups and sidebar pages.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from auth import repository as auth_repository
from auth.security import normalize_email

from . import repository, schemas

logger = logging.getLogger(__name__)

# Sidebar pages an access group can grant.
ADMIN_ITEMS: list[dict[str, str]] = [
    {"id": "dashboard", "label": "Dashboard"},
    {"id": "admin:superset-config", "label": "Superset Dashboards Config"},
    {"id": "admin:ef-upload", "label": "Upload External Files"},
    {"id": "admin:nexquare-config", "label": "Nexquare Configuration"},
    {"id": "admin:managebac-config", "label": "ManageBac Configuration"},
    {"id": "admin:nexquare-sync", "label": "Nexquare Data Sync"},
    {"id": "admin:managebac-sync", "label": "ManageBac Data Sync"},
    {"id": "admin:rp-config", "label": "RP Configuration"},
    {"id": "admin:users", "label": "User Management"},
    {"id": "admin:access-control", "label": "Access Control"},
    {"id": "admin:access-groups", "label": "Access Groups"},
    {"id": "admin:sidebar-access", "label": "Sidebar Access"},
    {"id": "admin:microsoft-tenant-config", "label": "Microsoft Tenant Config"},
    {"id": "admin:nodes", "label": "Node Management"},
    {"id": "admin:departments", "label": "Department Management"},
    {"id": "admin:school-assignment", "label": "School Assignment"},
]


def _not_found(what: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} not found")


async def _require_user(email: str) -> str:
    row = await auth_repository.get_user_by_email(email)
    if row is None:
        raise _not_found("User")
    return str(row["user_id"])


def group_school_access(rows: list[dict]) -> list[dict]:
    """
    Collapse (node, school, department) rows into one entry per
    (node, source, school) with the department ids aggregated.
    """
    grouped: dict[tuple[str, str, str], dict] = {}
    for row in rows:
        key = (str(row["node_id"]), str(row["school_source"]), str(row["school_id"]))
        entry = grouped.get(key)
        if entry is None:
            entry = {
                "node_id": key[0],
                "school_source": key[1],
                "school_id": key[2],
                "departments": [],
            }
            grouped[key] = entry
        dept = str(row["department_id"])
        if dept not in entry["departments"]:
            entry["departments"].append(dept)
    return list(grouped.values())


async def get_user_access(email: str) -> list[dict]:
    return await repository.list_user_access(normalize_email(email))


async def get_user_school_access(email: str) -> list[dict]:
    rows = await repository.list_user_school_rows(normalize_email(email))
    return group_school_access(rows)


async def grant_access(email: str, payload: schemas.GrantAccessRequest, *, created_by: str | None) -> list[dict]:
    user_id = await _require_user(email)
    if not await repository.node_exists(payload.node_id):
        raise _not_found("Node")

    department_ids = list(dict.fromkeys(payload.department_ids))
    if await repository.count_departments(department_ids) != len(department_ids):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="One or more departments not found",
        )

    await repository.insert_user_access(
        user_id=user_id,
        node_id=payload.node_id,
        department_ids=department_ids,
        created_by=created_by,
    )
    logger.info("access_granted user=%s node=%s departments=%s", user_id, payload.node_id, department_ids)
    return await repository.list_user_access(user_id)


async def update_access(
    email: str, node_id: str, payload: schemas.UpdateAccessRequest, *, created_by: str | None
) -> list[dict]:
    user_id = await _require_user(email)
    await repository.delete_node_access(user_id=user_id, node_id=node_id)
    if payload.department_ids:
        return await grant_access(
            user_id,
            schemas.GrantAccessRequest(node_id=node_id, department_ids=payload.department_ids),
            created_by=created_by,
        )
    return await repository.list_user_access(user_id)


async def revoke_node_access(email: str, node_id: str) -> dict:
    removed = await repository.delete_node_access(user_id=normalize_email(email), node_id=node_id)
    return {"success": True, "removed": removed}


async def revoke_department_access(email: str, node_id: str, department_id: str) -> dict:
    removed = await repository.delete_department_access(
        user_id=normalize_email(email),
        node_id=node_id,
        department_id=department_id,
    )
    return {"success": True, "removed": removed}


# Access groups


async def get_group(group_id: str) -> dict:
    group = await repository.get_group(group_id)
    if group is None:
        raise _not_found("Group")
    return group


async def create_group(payload: schemas.CreateGroupRequest, *, created_by: str | None) -> dict:
    group_id = payload.group_id.strip()
    if await repository.get_group(group_id) is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Group ID already exists")
    return await repository.insert_group(
        group_id=group_id,
        group_name=payload.group_name.strip(),
        group_description=payload.group_description or None,
        created_by=created_by,
    )


async def update_group(group_id: str, payload: schemas.UpdateGroupRequest) -> dict:
    row = await repository.update_group(
        group_id,
        group_name=payload.group_name.strip(),
        group_description=payload.group_description or None,
    )
    if row is None:
        raise _not_found("Group")
    return row


async def delete_group(group_id: str) -> dict:
    if not await repository.delete_group(group_id):
        raise _not_found("Group")
    return {"message": "Group deleted successfully"}


async def set_group_nodes(group_id: str, payload: schemas.SetGroupNodesRequest, *, created_by: str | None) -> list[dict]:
    await get_group(group_id)
    pairs = [(item.node_id, dept) for item in payload.node_access for dept in item.department_ids]
    await repository.replace_group_nodes(group_id, pairs, created_by=created_by)
    return await repository.list_group_nodes(group_id)


async def get_group_pages(group_id: str) -> list[str]:
    await get_group(group_id)
    return await repository.list_group_pages(group_id)


async def set_group_pages(group_id: str, payload: schemas.SetGroupPagesRequest, *, created_by: str | None) -> list[str]:
    await get_group(group_id)
    item_ids = list(dict.fromkeys(i.strip() for i in payload.item_ids if i.strip()))
    await repository.replace_group_pages(group_id, item_ids, created_by=created_by)
    return await repository.list_group_pages(group_id)


async def get_user_groups(email: str) -> list[str]:
    return await repository.list_user_groups(normalize_email(email))


async def set_user_groups(email: str, payload: schemas.SetUserGroupsRequest, *, created_by: str | None) -> list[str]:
    user_id = await _require_user(email)
    group_ids = list(dict.fromkeys(payload.group_ids))
    await repository.replace_user_groups(user_id, group_ids, created_by=created_by)
    return await repository.list_user_groups(user_id)
