"""
Admin routes for user access, user groups and access groups.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from auth import dependencies as auth_dependencies

from . import repository, schemas, service

router = APIRouter()


# User node/department access


@router.post("/api/users/{email}/access", status_code=201)
async def grant_access(
    email: str,
    payload: schemas.GrantAccessRequest,
    current_user: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    access = await service.grant_access(email, payload, created_by=str(current_user["email"]))
    return {"access": access}


@router.get("/api/users/{email}/access")
async def get_access(email: str, _: dict = Depends(auth_dependencies.require_admin)) -> dict:
    access = await service.get_user_access(email)
    return {"access": access, "count": len(access)}


@router.put("/api/users/{email}/access/{node_id}")
async def update_access(
    email: str,
    node_id: str,
    payload: schemas.UpdateAccessRequest,
    current_user: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    access = await service.update_access(email, node_id, payload, created_by=str(current_user["email"]))
    return {"access": access}


@router.delete("/api/users/{email}/access/{node_id}")
async def revoke_node_access(email: str, node_id: str, _: dict = Depends(auth_dependencies.require_admin)) -> dict:
    return await service.revoke_node_access(email, node_id)


@router.delete("/api/users/{email}/access/{node_id}/departments/{department_id}")
async def revoke_department_access(
    email: str,
    node_id: str,
    department_id: str,
    _: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.revoke_department_access(email, node_id, department_id)


# User groups


@router.get("/api/users/{email}/groups")
async def get_user_groups(email: str, _: dict = Depends(auth_dependencies.require_admin)) -> dict:
    return {"group_ids": await service.get_user_groups(email)}


@router.put("/api/users/{email}/groups")
async def set_user_groups(
    email: str,
    payload: schemas.SetUserGroupsRequest,
    current_user: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    group_ids = await service.set_user_groups(email, payload, created_by=str(current_user["email"]))
    return {"message": "User groups updated", "group_ids": group_ids}


# Access groups


# Declared before "/{group_id}" so the literal path wins.
@router.get("/api/access-groups/available-pages")
async def available_pages(_: dict = Depends(auth_dependencies.require_admin)) -> dict:
    return {"items": service.ADMIN_ITEMS}


@router.get("/api/access-groups")
async def list_groups(_: dict = Depends(auth_dependencies.require_admin)) -> list[dict]:
    return await repository.list_groups()


@router.post("/api/access-groups", status_code=201)
async def create_group(
    payload: schemas.CreateGroupRequest,
    current_user: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.create_group(payload, created_by=str(current_user["email"]))


@router.get("/api/access-groups/{group_id}")
async def get_group(group_id: str, _: dict = Depends(auth_dependencies.require_admin)) -> dict:
    return await service.get_group(group_id)


@router.put("/api/access-groups/{group_id}")
async def update_group(
    group_id: str,
    payload: schemas.UpdateGroupRequest,
    _: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.update_group(group_id, payload)


@router.delete("/api/access-groups/{group_id}")
async def delete_group(group_id: str, _: dict = Depends(auth_dependencies.require_admin)) -> dict:
    return await service.delete_group(group_id)


@router.get("/api/access-groups/{group_id}/nodes")
async def get_group_nodes(group_id: str, _: dict = Depends(auth_dependencies.require_admin)) -> list[dict]:
    return await repository.list_group_nodes(group_id)


@router.put("/api/access-groups/{group_id}/nodes")
async def set_group_nodes(
    group_id: str,
    payload: schemas.SetGroupNodesRequest,
    current_user: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    access = await service.set_group_nodes(group_id, payload, created_by=str(current_user["email"]))
    return {"message": "Group node access updated", "access": access}


@router.get("/api/access-groups/{group_id}/pages")
async def get_group_pages(group_id: str, _: dict = Depends(auth_dependencies.require_admin)) -> dict:
    return {"item_ids": await service.get_group_pages(group_id)}


@router.put("/api/access-groups/{group_id}/pages")
async def set_group_pages(
    group_id: str,
    payload: schemas.SetGroupPagesRequest,
    current_user: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    item_ids = await service.set_group_pages(group_id, payload, created_by=str(current_user["email"]))
    return {"message": "Group page access updated", "item_ids": item_ids}
