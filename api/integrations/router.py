"""
Admin routes for upstream configs and single-endpoint runs.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from auth import dependencies as auth_dependencies

from . import schemas, service

router = APIRouter()


# GET /authenticate and POST /{endpoint} use different methods, so neither shadows the other.
@router.get("/api/managebac/authenticate")
async def managebac_authenticate(
    config_id: str = Query(...),
    _: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.authenticate_managebac(config_id)


@router.post("/api/managebac/{endpoint}")
async def managebac_endpoint(
    endpoint: str,
    config_id: str = Query(...),
    academic_year: str | None = Query(None),
    _: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.run_managebac_endpoint(endpoint, config_id, academic_year)


@router.get("/api/nexquare/authenticate")
async def nexquare_authenticate(
    config_id: str = Query(...),
    _: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.authenticate_nexquare(config_id)


@router.post("/api/nexquare/{endpoint}")
async def nexquare_endpoint(
    endpoint: str,
    config_id: str = Query(...),
    academic_year: str | None = Query(None),
    _: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.run_nexquare_endpoint(endpoint, config_id, academic_year)


@router.get("/api/managebac-config")
async def list_managebac_configs(_: dict = Depends(auth_dependencies.require_admin)) -> list[dict]:
    return await service.list_managebac_configs()


@router.get("/api/managebac-config/{config_id}")
async def get_managebac_config(config_id: int, _: dict = Depends(auth_dependencies.require_admin)) -> dict:
    return await service.get_managebac_config(config_id)


@router.post("/api/managebac-config", status_code=201)
async def create_managebac_config(
    payload: schemas.CreateManageBacConfigRequest,
    _: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.create_managebac_config(payload)


@router.put("/api/managebac-config/{config_id}")
async def update_managebac_config(
    config_id: int,
    payload: schemas.UpdateManageBacConfigRequest,
    _: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.update_managebac_config(config_id, payload)


@router.delete("/api/managebac-config/{config_id}", status_code=204)
async def delete_managebac_config(config_id: int, _: dict = Depends(auth_dependencies.require_admin)) -> Response:
    await service.delete_managebac_config(config_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/api/nexquare-config")
async def list_nexquare_configs(_: dict = Depends(auth_dependencies.require_admin)) -> list[dict]:
    return await service.list_nexquare_configs()


@router.get("/api/nexquare-config/{config_id}")
async def get_nexquare_config(config_id: int, _: dict = Depends(auth_dependencies.require_admin)) -> dict:
    return await service.get_nexquare_config(config_id)


@router.post("/api/nexquare-config", status_code=201)
async def create_nexquare_config(
    payload: schemas.CreateNexquareConfigRequest,
    _: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.create_nexquare_config(payload)


@router.put("/api/nexquare-config/{config_id}")
async def update_nexquare_config(
    config_id: int,
    payload: schemas.UpdateNexquareConfigRequest,
    _: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.update_nexquare_config(config_id, payload)


@router.delete("/api/nexquare-config/{config_id}", status_code=204)
async def delete_nexquare_config(config_id: int, _: dict = Depends(auth_dependencies.require_admin)) -> Response:
    await service.delete_nexquare_config(config_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
