from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from avatar_studio.application import StudioServices

from .deps import get_services

router = APIRouter(prefix="/sd", tags=["webhooks"])


@router.post("/webhook")
async def complete_job(request: Request, services: StudioServices = Depends(get_services)) -> JSONResponse:
    """Completion callback from the generation worker.

    Always answers ``{"ok": true}`` once the body parses, whatever happened to
    the job, so the caller cannot probe which tokens exist.
    """
    header_key = (request.headers.get("x-webhook-key") or "").strip()
    if not header_key:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    try:
        body = json.loads(await request.body())
    except (UnicodeDecodeError, ValueError):
        return JSONResponse({"error": "Bad Request"}, status_code=400)
    if not isinstance(body, dict):
        return JSONResponse({"error": "Bad Request"}, status_code=400)

    token = body.get("token") or header_key
    external_id = body.get("uuid") or body.get("externalId") or body.get("external_id")
    ack = await services.ingress.complete_job(str(token), external_id and str(external_id), body)
    return JSONResponse(ack)
