"""
Superset embedding routes: guest tokens and dashboard lookups.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from auth import dependencies as auth_dependencies
from core.http import UpstreamError

from . import access, schemas, service

logger = logging.getLogger(__name__)

router = APIRouter()


def _bad_gateway(e: UpstreamError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.to_dict())


@router.post("/api/superset/guest-token", response_model=schemas.GuestTokenResponse)
async def guest_token(
    payload: schemas.GuestTokenRequest,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    dashboard_id = str(payload.dashboard_id or service.default_dashboard_id()).strip()
    if not dashboard_id and not payload.resources:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="dashboard_id is required")

    if dashboard_id:
        decision = await access.check_dashboard_access(str(current_user["email"]), dashboard_id)
        if not decision["allowed"]:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"error": "Dashboard access denied", "reason": decision.get("reason")},
            )

    try:
        result = await service.get_service().generate_guest_token(dashboard_id or None, payload.resources)
    except UpstreamError as e:
        logger.error("superset_guest_token_failed dashboard_id=%s error=%s", dashboard_id, e)
        raise _bad_gateway(e) from e
    logger.info("superset_guest_token_issued email=%s dashboard_id=%s", current_user["email"], dashboard_id)
    return result


@router.get("/api/superset/dashboards")
async def list_dashboards(_: dict = Depends(auth_dependencies.get_current_user)) -> list[dict]:
    try:
        return await service.get_service().list_dashboards()
    except UpstreamError as e:
        raise _bad_gateway(e) from e


@router.get("/api/superset/dashboards/{dashboard_id}")
async def get_dashboard(dashboard_id: int, _: dict = Depends(auth_dependencies.get_current_user)) -> dict:
    try:
        dashboard = await service.get_service().get_dashboard(dashboard_id)
    except UpstreamError as e:
        if e.status_code == status.HTTP_404_NOT_FOUND:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dashboard not found") from e
        raise _bad_gateway(e) from e
    if dashboard is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dashboard not found")
    return dashboard
