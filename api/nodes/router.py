"""
Node, node/school and department endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from auth import dependencies as auth_dependencies

from . import repository, schemas, service

router = APIRouter()


@router.get("/api/nodes")
async def list_nodes(
    tree: bool = Query(default=False),
    _: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    nodes = await service.list_nodes(tree=tree)
    return {"nodes": nodes, "count": len(nodes)}


@router.get("/api/nodes/{node_id}")
async def get_node(node_id: str, _: dict = Depends(auth_dependencies.get_current_user)) -> dict:
    return await service.get_node(node_id)


@router.post("/api/nodes", status_code=201)
async def create_node(
    payload: schemas.CreateNodeRequest,
    current_user: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.create_node(payload, created_by=str(current_user["email"]))


@router.put("/api/nodes/{node_id}")
async def update_node(
    node_id: str,
    payload: schemas.UpdateNodeRequest,
    _: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.update_node(node_id, payload)


@router.post("/api/nodes/{node_id}/schools", status_code=201)
async def assign_school(
    node_id: str,
    payload: schemas.AssignSchoolRequest,
    current_user: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.assign_school(node_id, payload, created_by=str(current_user["email"]))


@router.get("/api/nodes/{node_id}/schools")
async def list_node_schools(node_id: str, _: dict = Depends(auth_dependencies.get_current_user)) -> dict:
    await service.get_node(node_id)
    schools = await repository.list_node_schools(node_id)
    return {"schools": schools, "count": len(schools)}


@router.delete("/api/nodes/{node_id}/schools/{school_id}/{source}")
async def unassign_school(
    node_id: str,
    school_id: str,
    source: str,
    _: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.unassign_school(node_id, school_id, source)


@router.get("/api/schools/{school_id}/{source}/node")
async def get_node_for_school(
    school_id: str,
    source: str,
    _: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    return await service.get_node_for_school(school_id, source)


@router.get("/api/admin/schools")
async def list_available_schools(_: dict = Depends(auth_dependencies.require_admin)) -> dict:
    schools = await repository.list_available_schools()
    return {"schools": schools, "count": len(schools)}


@router.get("/api/departments")
async def list_departments(_: dict = Depends(auth_dependencies.get_current_user)) -> dict:
    departments = await repository.list_departments()
    return {"departments": departments, "count": len(departments)}
