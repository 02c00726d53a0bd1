"""Expiry for jobs whose completion callback never arrives."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

from avatar_studio.domain import Job, JobFailed
from avatar_studio.domain.jobs import utcnow
from avatar_studio.infrastructure import EventBusClient, JobRepository

log = logging.getLogger(__name__)

EXPIRED = "expired"


class JobReaper:
    """Fails pending, unclaimed jobs older than ``ttl_seconds``."""

    def __init__(self, jobs: JobRepository, bus: EventBusClient, ttl_seconds: float) -> None:
        self._jobs = jobs
        self._bus = bus
        self._ttl = timedelta(seconds=ttl_seconds)

    async def reap_once(self, now: datetime | None = None) -> list[Job]:
        cutoff = (now or utcnow()) - self._ttl
        expired: list[Job] = []
        for candidate in await self._jobs.list_stale(cutoff):
            job = await self._jobs.expire(candidate.id, EXPIRED)
            if job is None:
                continue
            expired.append(job)
            await self._bus.publish_event(JobFailed(id=job.id, error=EXPIRED))
        if expired:
            log.info("Expired %d stale job(s)", len(expired))
        return expired

    async def run(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.reap_once()
            except Exception:
                log.exception("Job reaper sweep failed")
