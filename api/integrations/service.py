"""
ManageBac and Nexquare configs: admin CRUD, loading for runs, and one-off
endpoint runs.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, status

from core.http import UpstreamError
from managebac.client import ManageBacClient
from managebac.service import ManageBacSync
from nexquare.client import NexquareClient
from nexquare.service import NexquareSync
from tenants.service import SECRET_MASK

from . import repository, schemas

logger = logging.getLogger(__name__)


def _parse_config_id(config_id: str | int | None) -> int:
    text = str(config_id if config_id is not None else "").strip()
    if not text.isdigit():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid config_id. Must be a number.")
    return int(text)


async def load_managebac_config(config_id: str | int | None) -> dict:
    parsed = _parse_config_id(config_id)
    config = await repository.get_active_managebac_config(parsed)
    if config is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"ManageBac configuration with ID {parsed} not found or inactive",
        )
    return config


async def load_nexquare_config(config_id: str | int | None) -> dict:
    parsed = _parse_config_id(config_id)
    config = await repository.get_active_nexquare_config(parsed)
    if config is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Nexquare configuration with ID {parsed} not found or inactive",
        )
    return config


def _summary(result: Any) -> dict[str, Any]:
    if isinstance(result, list):
        return {"count": len(result)}
    if isinstance(result, dict):
        return result
    return {"result": result}


def _upstream_http_error(e: UpstreamError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.to_dict())


async def authenticate_managebac(config_id: str | int | None) -> dict:
    config = await load_managebac_config(config_id)
    async with ManageBacClient(config["api_token"], config.get("base_url")) as client:
        return await ManageBacSync(client, school_id=config.get("school_id")).authenticate()


async def authenticate_nexquare(config_id: str | int | None) -> dict:
    config = await load_nexquare_config(config_id)
    async with NexquareClient(config) as client:
        return await NexquareSync(client, school_id=config.get("school_id")).authenticate()


async def run_managebac_endpoint(endpoint: str, config_id: str | int | None, academic_year: str | None = None) -> dict:
    config = await load_managebac_config(config_id)
    try:
        async with ManageBacClient(config["api_token"], config.get("base_url")) as client:
            sync = ManageBacSync(client, school_id=config.get("school_id"))
            result = await sync.run_endpoint(endpoint, academic_year=academic_year)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except UpstreamError as e:
        raise _upstream_http_error(e) from e
    logger.info("managebac_endpoint_run endpoint=%s config_id=%s", endpoint, config["id"])
    return {"success": True, "endpoint": endpoint, "config_id": config["id"], **_summary(result)}


async def run_nexquare_endpoint(endpoint: str, config_id: str | int | None, academic_year: str | None = None) -> dict:
    config = await load_nexquare_config(config_id)
    try:
        async with NexquareClient(config) as client:
            sync = NexquareSync(client, school_id=config.get("school_id"))
            result = await sync.run_endpoint(endpoint, academic_year=academic_year)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except UpstreamError as e:
        raise _upstream_http_error(e) from e
    logger.info("nexquare_endpoint_run endpoint=%s config_id=%s", endpoint, config["id"])
    return {"success": True, "endpoint": endpoint, "config_id": config["id"], **_summary(result)}


# Config CRUD


def mask_managebac(row: dict) -> dict:
    return {**row, "api_token": SECRET_MASK if row.get("api_token") else ""}


def mask_nexquare(row: dict) -> dict:
    return {**row, "client_secret": SECRET_MASK if row.get("client_secret") else ""}


def _config_not_found(label: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{label} configuration not found")


def _clean_changes(changes: dict[str, Any], secret_key: str) -> dict[str, Any]:
    # Clients echo the mask back for untouched secrets.
    secret = changes.get(secret_key)
    if secret is None or not secret.strip() or secret == SECRET_MASK:
        changes.pop(secret_key, None)
    for key, value in list(changes.items()):
        if isinstance(value, str) and key != secret_key:
            changes[key] = value.strip() or None
    if changes.get("is_active", False) is None:
        del changes["is_active"]
    return changes


async def list_managebac_configs() -> list[dict]:
    return [mask_managebac(row) for row in await repository.list_managebac_configs()]


async def get_managebac_config(config_id: int) -> dict:
    row = await repository.get_managebac_config(config_id)
    if row is None:
        raise _config_not_found("ManageBac")
    return mask_managebac(row)


async def create_managebac_config(payload: schemas.CreateManageBacConfigRequest) -> dict:
    row = await repository.insert_managebac_config(
        api_token=payload.api_token.strip(),
        base_url=(payload.base_url or "").strip() or None,
        school_name=(payload.school_name or "").strip() or None,
        school_id=payload.school_id,
    )
    logger.info("managebac_config_created config_id=%s school_id=%s", row["id"], row.get("school_id"))
    return mask_managebac(row)


async def update_managebac_config(config_id: int, payload: schemas.UpdateManageBacConfigRequest) -> dict:
    changes = _clean_changes(payload.model_dump(exclude_unset=True), "api_token")
    row = await repository.update_managebac_config(config_id, changes)
    if row is None:
        raise _config_not_found("ManageBac")
    logger.info("managebac_config_updated config_id=%s fields=%s", config_id, ",".join(sorted(changes)))
    return mask_managebac(row)


async def delete_managebac_config(config_id: int) -> None:
    if not await repository.delete_managebac_config(config_id):
        raise _config_not_found("ManageBac")
    logger.info("managebac_config_deleted config_id=%s", config_id)


async def list_nexquare_configs() -> list[dict]:
    return [mask_nexquare(row) for row in await repository.list_nexquare_configs()]


async def get_nexquare_config(config_id: int) -> dict:
    row = await repository.get_nexquare_config(config_id)
    if row is None:
        raise _config_not_found("Nexquare")
    return mask_nexquare(row)


async def create_nexquare_config(payload: schemas.CreateNexquareConfigRequest) -> dict:
    row = await repository.insert_nexquare_config(
        client_id=payload.client_id.strip(),
        client_secret=payload.client_secret,
        domain_url=payload.domain_url.strip(),
        school_name=(payload.school_name or "").strip() or None,
        school_id=(payload.school_id or "").strip() or None,
    )
    logger.info("nexquare_config_created config_id=%s school_id=%s", row["id"], row.get("school_id"))
    return mask_nexquare(row)


async def update_nexquare_config(config_id: int, payload: schemas.UpdateNexquareConfigRequest) -> dict:
    changes = _clean_changes(payload.model_dump(exclude_unset=True), "client_secret")
    for key in ("client_id", "domain_url"):
        # NOT NULL columns
        if key in changes and changes[key] is None:
            del changes[key]
    row = await repository.update_nexquare_config(config_id, changes)
    if row is None:
        raise _config_not_found("Nexquare")
    logger.info("nexquare_config_updated config_id=%s fields=%s", config_id, ",".join(sorted(changes)))
    return mask_nexquare(row)


async def delete_nexquare_config(config_id: int) -> None:
    if not await repository.delete_nexquare_config(config_id):
        raise _config_not_found("Nexquare")
    logger.info("nexquare_config_deleted config_id=%s", config_id)
