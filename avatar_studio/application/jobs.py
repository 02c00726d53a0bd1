"""Job registry: issues capability tokens and tracks generation jobs."""
from __future__ import annotations

import logging
import secrets
from typing import Any

from avatar_studio.core.errors import BadRequest, NotFound, Unauthorized
from avatar_studio.domain import Job, JobStatus
from avatar_studio.infrastructure import JobRepository

log = logging.getLogger(__name__)

TOKEN_BYTES = 32


def new_webhook_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def _require_owner(owner: str | None) -> str:
    if not owner:
        raise Unauthorized()
    return owner


class JobRegistry:
    """Coordinates job creation, worker correlation and status queries."""

    def __init__(self, repository: JobRepository) -> None:
        self._repository = repository

    async def create_job(self, owner: str | None, payload: dict[str, Any] | None = None) -> dict[str, str]:
        """Persist a pending job and return its id with the webhook token.

        The token is returned to the creator only and never logged.
        """

        owner = _require_owner(owner)
        if payload is not None and not isinstance(payload, dict):
            raise BadRequest("payload must be an object")
        token = new_webhook_token()
        job = await self._repository.insert(owner, token, payload or {})
        log.info("Created job %s for %s", job.id, owner)
        return {"id": job.id, "token": token}

    async def attach_external_id(self, owner: str | None, token: str | None, external_id: str | None) -> dict[str, bool]:
        """Record the worker's own job id; advisory and last-write-wins."""

        owner = _require_owner(owner)
        if not token or not external_id:
            raise BadRequest("token and external id are required")
        job = await self._repository.set_external_id(owner, str(token), str(external_id))
        if job is None:
            raise NotFound("Job not found")
        log.info("Attached external id to job %s", job.id)
        return {"ok": True}

    async def get_job(self, owner: str | None, job_id: str) -> Job:
        owner = _require_owner(owner)
        job = await self._repository.get(job_id)
        if job is None or job.owner != owner:
            raise NotFound("Job not found")
        return job

    async def list_jobs(self, owner: str | None, status: str | None = None) -> list[Job]:
        owner = _require_owner(owner)
        if status is not None and status not in JobStatus.ALL:
            raise BadRequest(f"status must be one of {', '.join(sorted(JobStatus.ALL))}")
        return await self._repository.list_for_owner(owner, status)
