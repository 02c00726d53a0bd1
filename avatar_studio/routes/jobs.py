from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Query

from avatar_studio.application import StudioServices

from .deps import get_owner, get_services

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("")
async def create_job(
    body: dict | None = Body(default=None),
    owner: str = Depends(get_owner),
    services: StudioServices = Depends(get_services),
) -> dict:
    """Create a pending job and hand back the webhook token for the worker."""
    body = body or {}
    payload = body.get("payload") if isinstance(body.get("payload"), dict) else body
    return await services.registry.create_job(owner, payload)


@router.patch("")
async def attach_external_id(
    body: dict,
    owner: str = Depends(get_owner),
    services: StudioServices = Depends(get_services),
) -> dict:
    external_id = body.get("externalId") or body.get("external_id") or body.get("job_uuid")
    return await services.registry.attach_external_id(owner, body.get("token"), external_id)


@router.get("")
async def list_jobs(
    status: str | None = Query(default=None),
    owner: str = Depends(get_owner),
    services: StudioServices = Depends(get_services),
) -> dict:
    jobs = await services.registry.list_jobs(owner, status)
    return {"items": [job.to_public() for job in jobs]}


@router.get("/{job_id}")
async def get_job(
    job_id: str,
    owner: str = Depends(get_owner),
    services: StudioServices = Depends(get_services),
) -> dict:
    job = await services.registry.get_job(owner, job_id)
    return job.to_public()
