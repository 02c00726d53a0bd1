"""Infrastructure layer for job persistence."""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Protocol

from avatar_studio.domain import Job, JobStatus
from avatar_studio.domain.jobs import utcnow


class JobRepository(Protocol):
    """Persistence contract for generation jobs.

    ``claim_pending`` is the only read-modify-write that must be atomic: it
    hands a pending job to exactly one completion callback.
    """

    async def insert(self, owner: str, webhook_token: str, payload: dict) -> Job: ...

    async def get(self, job_id: str) -> Job | None: ...

    async def list_for_owner(self, owner: str, status: str | None = None) -> list[Job]: ...

    async def set_external_id(self, owner: str, webhook_token: str, external_id: str) -> Job | None: ...

    async def claim_pending(self, webhook_token: str, external_id: str) -> Job | None: ...

    async def finish(
        self,
        job_id: str,
        status: str,
        *,
        result_ref: str | None = None,
        image_ids: list[str] | None = None,
        error: str | None = None,
    ) -> Job | None: ...

    async def list_stale(self, older_than: datetime) -> list[Job]: ...

    async def expire(self, job_id: str, error: str) -> Job | None: ...

    def reset(self) -> None: ...


class InMemoryJobRepository:
    """In-memory job table guarded by a single asyncio lock."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._by_token: dict[str, str] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    async def get(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return replace(job) if job else None

    async def list_for_owner(self, owner: str, status: str | None = None) -> list[Job]:
        jobs = [
            replace(job)
            for job in self._jobs.values()
            if job.owner == owner and (status is None or job.status == status)
        ]
        jobs.sort(key=lambda job: job.created_at, reverse=True)
        return jobs

    async def list_stale(self, older_than: datetime) -> list[Job]:
        return [
            replace(job)
            for job in self._jobs.values()
            if job.is_pending and job.claimed_at is None and job.created_at < older_than
        ]

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    async def insert(self, owner: str, webhook_token: str, payload: dict) -> Job:
        async with self._lock:
            if webhook_token in self._by_token:
                raise ValueError("webhook token already issued")
            job = Job(id=str(uuid.uuid4()), owner=owner, webhook_token=webhook_token, payload=dict(payload))
            self._jobs[job.id] = job
            self._by_token[webhook_token] = job.id
            return replace(job)

    async def set_external_id(self, owner: str, webhook_token: str, external_id: str) -> Job | None:
        async with self._lock:
            job = self._lookup(webhook_token)
            if job is None or job.owner != owner:
                return None
            job.external_id = external_id
            return replace(job)

    async def claim_pending(self, webhook_token: str, external_id: str) -> Job | None:
        async with self._lock:
            job = self._lookup(webhook_token)
            if job is None or not job.is_pending or job.claimed_at is not None:
                return None
            if job.external_id is None or job.external_id != external_id:
                return None
            job.claimed_at = utcnow()
            return replace(job)

    async def finish(
        self,
        job_id: str,
        status: str,
        *,
        result_ref: str | None = None,
        image_ids: list[str] | None = None,
        error: str | None = None,
    ) -> Job | None:
        if status not in (JobStatus.COMPLETED, JobStatus.FAILED):
            raise ValueError(f"cannot finish a job as {status!r}")
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or not job.is_pending:
                return None
            job.status = status
            job.result_ref = result_ref
            job.image_ids = list(image_ids or [])
            job.error = error
            job.completed_at = utcnow()
            return replace(job)

    async def expire(self, job_id: str, error: str) -> Job | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or not job.is_pending or job.claimed_at is not None:
                return None
            job.status = JobStatus.FAILED
            job.error = error
            job.completed_at = utcnow()
            return replace(job)

    # ------------------------------------------------------------------
    # internal helpers
    # ------------------------------------------------------------------
    def _lookup(self, webhook_token: str) -> Job | None:
        job_id = self._by_token.get(webhook_token)
        return self._jobs.get(job_id) if job_id else None

    def reset(self) -> None:
        self._jobs.clear()
        self._by_token.clear()
