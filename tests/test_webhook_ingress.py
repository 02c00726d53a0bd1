from __future__ import annotations

import asyncio
import base64
import io
from pathlib import Path
import sys

import pytest
from PIL import Image

sys.path.append(str(Path(__file__).resolve().parents[1]))

from avatar_studio.application import JobRegistry, WebhookIngress
from avatar_studio.infrastructure import (
    EventBusClient,
    InMemoryJobRepository,
    InMemoryLibraryRepository,
    InMemoryTransport,
    LocalArtifactStore,
)


def _png_b64(size: tuple[int, int] = (8, 6)) -> str:
    buffer = io.BytesIO()
    Image.new("RGB", size, (200, 30, 30)).save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


class Harness:
    def __init__(self, root: Path) -> None:
        self.jobs = InMemoryJobRepository()
        self.library = InMemoryLibraryRepository()
        self.transport = InMemoryTransport()
        self.bus = EventBusClient(self.transport)
        self.store = LocalArtifactStore(root)
        self.registry = JobRegistry(self.jobs)
        self.ingress = WebhookIngress(self.jobs, self.library, self.store, self.bus)

    async def pending_job(self, payload: dict | None = None, external_id: str = "ext-1") -> tuple[str, str]:
        created = await self.registry.create_job("alice", payload or {})
        await self.registry.attach_external_id("alice", created["token"], external_id)
        return created["id"], created["token"]


@pytest.fixture()
def harness(tmp_path) -> Harness:
    return Harness(tmp_path / "artifacts")


def test_completion_scenario_is_idempotent(harness):
    async def scenario():
        job_id, token = await harness.pending_job({"positivePrompt": "a knight", "seed": 42})
        result = {"status": "succeeded", "images": [_png_b64()]}

        first = await harness.ingress.complete_job(token, "ext-1", result)
        second = await harness.ingress.complete_job(token, "ext-1", result)
        return job_id, first, second

    job_id, first, second = asyncio.run(scenario())

    assert first == {"ok": True}
    assert second == {"ok": True}
    job = asyncio.run(harness.jobs.get(job_id))
    assert job.status == "completed"
    assert job.completed_at is not None
    assert len(job.image_ids) == 1

    events = harness.transport.published("images", "image_created")
    assert len(events) == 1
    assert events[0]["id"] == job.image_ids[0]
    assert events[0]["job_id"] == job_id
    assert "timestamp" in events[0]

    image = asyncio.run(harness.library.get_image("alice", job.image_ids[0]))
    assert image.width == 8 and image.height == 6
    assert image.meta["positive_prompt"] == "a knight"
    assert image.meta["seed"] == 42
    assert job.result_ref == image.url
    assert harness.store.resolve(image.storage_path).exists()


def test_concurrent_duplicate_callbacks_complete_once(harness):
    async def scenario():
        job_id, token = await harness.pending_job()
        result = {"status": "succeeded", "images": [_png_b64()]}
        acks = await asyncio.gather(
            *(harness.ingress.complete_job(token, "ext-1", result) for _ in range(5))
        )
        job = await harness.jobs.get(job_id)
        return acks, job

    acks, job = asyncio.run(scenario())

    assert acks == [{"ok": True}] * 5
    assert job.status == "completed"
    assert len(harness.transport.published("images", "image_created")) == 1
    assert len(asyncio.run(harness.library.query_images("alice"))) == 1


def test_unknown_token_or_external_id_is_acknowledged_without_effect(harness):
    async def scenario():
        job_id, token = await harness.pending_job()
        unknown = await harness.ingress.complete_job("not-a-token", "ext-1", {"images": [_png_b64()]})
        wrong_ext = await harness.ingress.complete_job(token, "ext-other", {"images": [_png_b64()]})
        job = await harness.jobs.get(job_id)
        return unknown, wrong_ext, job

    unknown, wrong_ext, job = asyncio.run(scenario())

    assert unknown == {"ok": True}
    assert wrong_ext == {"ok": True}
    assert job.status == "pending"
    assert harness.transport.history == []


def test_job_without_external_id_cannot_be_completed(harness):
    async def scenario():
        created = await harness.registry.create_job("alice", {})
        await harness.ingress.complete_job(created["token"], "ext-1", {"images": [_png_b64()]})
        return await harness.jobs.get(created["id"])

    assert asyncio.run(scenario()).status == "pending"


@pytest.mark.parametrize(
    "result, reason",
    [
        ({"status": "failed", "error": "cuda out of memory"}, "cuda out of memory"),
        ({"state": "FAILED"}, "generation_failed"),
        ({"status": "succeeded", "images": []}, "no_images"),
        ({"status": "completed"}, "no_images"),
        ({"status": "succeeded", "images": ["%%% not base64 %%%"]}, "invalid_artifact"),
        ({"status": "succeeded", "images": [base64.b64encode(b"plain text").decode()]}, "invalid_artifact"),
    ],
)
def test_failures_mark_job_failed_and_publish_job_failed(harness, result, reason):
    async def scenario():
        job_id, token = await harness.pending_job()
        ack = await harness.ingress.complete_job(token, "ext-1", result)
        return ack, await harness.jobs.get(job_id)

    ack, job = asyncio.run(scenario())

    assert ack == {"ok": True}
    assert job.status == "failed"
    assert job.error == reason
    assert job.completed_at is not None
    assert harness.transport.published("images") == []
    failed = harness.transport.published("jobs", "job_failed")
    assert failed == [{"id": job.id, "error": reason, "timestamp": failed[0]["timestamp"]}]


def test_artifacts_from_alternate_fields_and_data_urls(harness):
    async def scenario():
        job_id, token = await harness.pending_job()
        result = {
            "result": {"images": [f"data:image/png;base64,{_png_b64()}", {"data": _png_b64((4, 4))}]},
            "info": {"sampler": "euler"},
        }
        await harness.ingress.complete_job(token, "ext-1", result)
        return await harness.jobs.get(job_id)

    job = asyncio.run(scenario())

    assert job.status == "completed"
    assert len(job.image_ids) == 2
    assert len(harness.transport.published("images", "image_created")) == 2
    image = asyncio.run(harness.library.get_image("alice", job.image_ids[1]))
    assert image.meta["info"] == {"sampler": "euler"}


def test_new_image_lands_in_job_folder_with_its_character(harness):
    async def scenario():
        character = await harness.library.add_character("alice", "Aria", None)
        folder = await harness.library.add_folder("alice", "Portraits", character.id)
        job_id, token = await harness.pending_job({"folder_id": folder.id})
        await harness.ingress.complete_job(token, "ext-1", {"images": [_png_b64()]})
        return folder, character

    folder, character = asyncio.run(scenario())

    event = harness.transport.published("images", "image_created")[0]
    assert event["folder_id"] == folder.id
    assert event["character_id"] == character.id


def test_storage_failure_becomes_job_failure(harness, monkeypatch):
    async def broken_put(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(harness.store, "put", broken_put)

    async def scenario():
        job_id, token = await harness.pending_job()
        ack = await harness.ingress.complete_job(token, "ext-1", {"images": [_png_b64()]})
        return ack, await harness.jobs.get(job_id)

    ack, job = asyncio.run(scenario())

    assert ack == {"ok": True}
    assert job.status == "failed"
    assert job.error == "storage_failed"
    assert asyncio.run(harness.library.query_images("alice")) == []


def test_oversized_artifact_fails_the_job_instead_of_hanging(harness, monkeypatch):
    artifact = _png_b64((8, 6))
    # 48 pixels is more than twice this limit, so Pillow rejects it as a decompression bomb
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10)

    async def scenario():
        job_id, token = await harness.pending_job()
        ack = await harness.ingress.complete_job(token, "ext-1", {"status": "succeeded", "images": [artifact]})
        return ack, await harness.jobs.get(job_id)

    ack, job = asyncio.run(scenario())

    assert ack == {"ok": True}
    assert job.status == "failed"
    assert job.error == "invalid_artifact"
    assert harness.transport.published("jobs", "job_failed")[0]["id"] == job.id


def test_unexpected_error_after_claim_still_settles_the_job(harness, monkeypatch):
    def explode(reference):
        raise RuntimeError("decoder crashed")

    monkeypatch.setattr("avatar_studio.application.webhooks.decode_artifact", explode)

    async def scenario():
        job_id, token = await harness.pending_job()
        ack = await harness.ingress.complete_job(token, "ext-1", {"images": [_png_b64()]})
        return ack, await harness.jobs.get(job_id)

    ack, job = asyncio.run(scenario())

    assert ack == {"ok": True}
    assert job.status == "failed"
    assert job.error == "internal_error"
    failed = harness.transport.published("jobs", "job_failed")
    assert [(event["id"], event["error"]) for event in failed] == [(job.id, "internal_error")]
