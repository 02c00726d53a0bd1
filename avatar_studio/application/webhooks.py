"""Webhook ingress: applies an untrusted completion callback to one job, once.

The caller only ever learns "received".  Whether the token matched, whether
the artifacts were usable and whether storage worked is recorded on the job
and announced on the bus, never returned.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping

from avatar_studio.core.artifacts import (
    SUCCESS_STATUSES,
    DecodedArtifact,
    collect_artifacts,
    decode_artifact,
    result_status,
)
from avatar_studio.core.errors import ValidationFailed
from avatar_studio.domain import ImageCreated, ImageRecord, Job, JobFailed, JobStatus
from avatar_studio.infrastructure import (
    ArtifactStore,
    EventBusClient,
    JobRepository,
    LibraryRepository,
    StoredArtifact,
)

log = logging.getLogger(__name__)

ACK: dict[str, bool] = {"ok": True}
INTERNAL_ERROR = "internal_error"

# job payload key -> image metadata key
META_FIELDS = {
    "positivePrompt": "positive_prompt",
    "negativePrompt": "negative_prompt",
    "model": "model",
    "orientation": "orientation",
    "batchSize": "batch_size",
    "samplerName": "sampler_name",
    "scheduler": "scheduler",
    "steps": "steps",
    "cfgScale": "cfg_scale",
    "seed": "seed",
    "adetailerEnabled": "adetailer_enabled",
    "adetailerModel": "adetailer_model",
    "loras": "loras",
}


class _JobFailure(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def _image_meta(payload: Mapping[str, Any], result: Mapping[str, Any]) -> dict[str, Any]:
    meta: dict[str, Any] = {}
    for source, target in META_FIELDS.items():
        value = payload.get(source, payload.get(target))
        if value is not None:
            meta[target] = value
    info = result.get("info") or payload.get("info") or {}
    meta["info"] = info if isinstance(info, (dict, list)) else {"raw": str(info)}
    return meta


class WebhookIngress:
    def __init__(
        self,
        jobs: JobRepository,
        library: LibraryRepository,
        store: ArtifactStore,
        bus: EventBusClient,
    ) -> None:
        self._jobs = jobs
        self._library = library
        self._store = store
        self._bus = bus

    async def complete_job(self, token: str | None, external_id: str | None, result: Mapping[str, Any] | None) -> dict[str, bool]:
        if not token or not external_id:
            log.warning("Webhook callback without token or external id ignored")
            return dict(ACK)

        job = await self._jobs.claim_pending(str(token), str(external_id))
        if job is None:
            log.warning("Webhook callback matched no pending job (external id %s)", external_id)
            return dict(ACK)

        result = result if isinstance(result, Mapping) else {}
        try:
            await self._settle(job, result)
        except Exception:
            log.exception("Completing job %s failed unexpectedly", job.id)
            try:
                await self._fail(job, INTERNAL_ERROR)
            except Exception:
                log.exception("Could not mark job %s failed", job.id)
        return dict(ACK)

    async def _settle(self, job: Job, result: Mapping[str, Any]) -> None:
        try:
            images = await self._persist_result(job, result)
        except _JobFailure as failure:
            await self._fail(job, failure.reason)
        else:
            await self._complete(job, images)

    # ------------------------------------------------------------------
    # classification and persistence
    # ------------------------------------------------------------------
    async def _persist_result(self, job: Job, result: Mapping[str, Any]) -> list[ImageRecord]:
        status = result_status(result)
        if status not in SUCCESS_STATUSES:
            raise _JobFailure(str(result.get("error") or "generation_failed"))

        references = collect_artifacts(result)
        if not references:
            raise _JobFailure("no_images")

        try:
            decoded = [decode_artifact(reference) for reference in references]
        except ValidationFailed as exc:
            log.warning("Job %s returned an unusable artifact: %s", job.id, exc.message)
            raise _JobFailure("invalid_artifact") from exc

        stored: list[StoredArtifact] = []
        try:
            return await self._store_images(job, result, decoded, stored)
        except Exception as exc:
            log.exception("Persisting artifacts for job %s failed", job.id)
            for artifact in stored:
                try:
                    await self._store.delete(artifact.storage_path)
                except OSError:
                    log.warning("Could not remove orphaned artifact %s", artifact.storage_path)
            raise _JobFailure("storage_failed") from exc

    async def _store_images(
        self,
        job: Job,
        result: Mapping[str, Any],
        decoded: list[DecodedArtifact],
        stored: list[StoredArtifact],
    ) -> list[ImageRecord]:
        payload = job.payload or {}
        folder_id = payload.get("folder_id") or payload.get("folderId")
        folder = await self._library.get_folder(job.owner, str(folder_id)) if folder_id else None
        meta = _image_meta(payload, result)
        generation_type = str(payload.get("generationType") or payload.get("generation_type") or "txt2img")

        records: list[ImageRecord] = []
        for artifact in decoded:
            image_id = str(uuid.uuid4())
            location = await self._store.put(
                job.owner,
                f"{image_id}.{artifact.extension}",
                artifact.data,
                artifact.content_type,
            )
            stored.append(location)
            records.append(
                ImageRecord(
                    id=image_id,
                    owner=job.owner,
                    storage_path=location.storage_path,
                    url=location.url,
                    folder_id=folder.id if folder else None,
                    character_id=folder.character_id if folder else None,
                    width=artifact.width,
                    height=artifact.height,
                    generation_type=generation_type,
                    job_id=job.id,
                    meta=dict(meta),
                )
            )

        return [await self._library.add_image(record) for record in records]

    # ------------------------------------------------------------------
    # terminal transitions
    # ------------------------------------------------------------------
    async def _complete(self, job: Job, images: list[ImageRecord]) -> None:
        finished = await self._jobs.finish(
            job.id,
            JobStatus.COMPLETED,
            result_ref=images[0].url,
            image_ids=[image.id for image in images],
        )
        if finished is None:
            log.warning("Job %s was no longer pending when completing", job.id)
            return
        log.info("Job %s completed with %d image(s)", job.id, len(images))
        for image in images:
            await self._bus.publish_event(ImageCreated(**image.membership(), job_id=job.id))

    async def _fail(self, job: Job, reason: str) -> None:
        finished = await self._jobs.finish(job.id, JobStatus.FAILED, error=reason)
        if finished is None:
            log.warning("Job %s was no longer pending when failing", job.id)
            return
        log.info("Job %s failed: %s", job.id, reason)
        await self._bus.publish_event(JobFailed(id=job.id, error=reason))
