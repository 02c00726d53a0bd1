from __future__ import annotations

import base64
import io
from pathlib import Path
import sys

import pytest
from fastapi.testclient import TestClient
from PIL import Image

sys.path.append(str(Path(__file__).resolve().parents[1]))

from avatar_studio.app import create_app
from avatar_studio.core.config import Settings
from avatar_studio.infrastructure import InMemoryTransport

ALICE = {"Authorization": "Bearer key-alice"}
BOB = {"Authorization": "Bearer key-bob"}


def _png_b64() -> str:
    buffer = io.BytesIO()
    Image.new("RGB", (16, 12), (10, 120, 200)).save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


@pytest.fixture()
def transport() -> InMemoryTransport:
    return InMemoryTransport()


@pytest.fixture()
def client(tmp_path, transport):
    settings = Settings(
        api_keys={"key-alice": "alice", "key-bob": "bob"},
        realtime_transport="memory",
        artifacts_root=tmp_path / "artifacts",
        job_reap_interval_seconds=0,
    )
    app = create_app(settings, transport=transport)
    with TestClient(app) as test_client:
        yield test_client


def _completed_image(client) -> tuple[str, str]:
    created = client.post("/api/jobs", json={"payload": {"positivePrompt": "portrait"}}, headers=ALICE).json()
    client.patch("/api/jobs", json={"token": created["token"], "externalId": "ext-1"}, headers=ALICE)
    client.post(
        "/api/sd/webhook",
        json={"uuid": "ext-1", "status": "succeeded", "images": [_png_b64()]},
        headers={"x-webhook-key": created["token"]},
    )
    job = client.get(f"/api/jobs/{created['id']}", headers=ALICE).json()
    return job["id"], job["image_ids"][0]


def test_root_reports_realtime_state(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["realtime"] is True


def test_job_routes_require_bearer_key(client):
    assert client.post("/api/jobs", json={}).status_code == 401
    response = client.get("/api/jobs", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}


def test_full_generation_flow(client, transport):
    created = client.post("/api/jobs", json={"payload": {"positivePrompt": "portrait"}}, headers=ALICE)
    assert created.status_code == 200
    job_id, token = created.json()["id"], created.json()["token"]

    attached = client.patch("/api/jobs", json={"token": token, "externalId": "ext-1"}, headers=ALICE)
    assert attached.json() == {"ok": True}

    body = {"uuid": "ext-1", "status": "succeeded", "images": [_png_b64()]}
    first = client.post("/api/sd/webhook", json=body, headers={"x-webhook-key": token})
    second = client.post("/api/sd/webhook", json=body, headers={"x-webhook-key": token})
    assert first.status_code == 200 and first.json() == {"ok": True}
    assert second.json() == {"ok": True}

    job = client.get(f"/api/jobs/{job_id}", headers=ALICE).json()
    assert job["status"] == "completed"
    assert "webhook_token" not in job
    assert len(job["image_ids"]) == 1
    assert len(transport.published("images", "image_created")) == 1

    listing = client.get("/api/images", headers=ALICE).json()
    assert listing["total"] == 1
    image = listing["items"][0]
    assert image["id"] == job["image_ids"][0]
    assert image["meta"]["positive_prompt"] == "portrait"
    assert (image["width"], image["height"]) == (16, 12)

    served = client.get(image["url"])
    assert served.status_code == 200
    assert served.content.startswith(b"\x89PNG")

    completed = client.get("/api/jobs", params={"status": "completed"}, headers=ALICE).json()
    assert [item["id"] for item in completed["items"]] == [job_id]


def test_jobs_are_scoped_to_their_owner(client):
    created = client.post("/api/jobs", json={}, headers=ALICE).json()

    response = client.get(f"/api/jobs/{created['id']}", headers=BOB)
    assert response.status_code == 404
    assert response.json() == {"error": "Job not found"}

    patched = client.patch("/api/jobs", json={"token": created["token"], "externalId": "x"}, headers=BOB)
    assert patched.status_code == 404


def test_job_route_validation(client):
    assert client.get("/api/jobs", params={"status": "running"}, headers=ALICE).status_code == 400
    assert client.patch("/api/jobs", json={"token": "t"}, headers=ALICE).status_code == 400


def test_webhook_rejects_missing_key_and_malformed_body(client):
    missing = client.post("/api/sd/webhook", json={"uuid": "x"})
    assert missing.status_code == 401
    assert missing.json() == {"error": "Unauthorized"}

    malformed = client.post(
        "/api/sd/webhook",
        content=b"{not json",
        headers={"x-webhook-key": "anything", "content-type": "application/json"},
    )
    assert malformed.status_code == 400
    assert malformed.json() == {"error": "Bad Request"}

    not_object = client.post("/api/sd/webhook", json=["a"], headers={"x-webhook-key": "anything"})
    assert not_object.status_code == 400


def test_webhook_acknowledges_unknown_token(client, transport):
    response = client.post(
        "/api/sd/webhook",
        json={"uuid": "ext-1", "images": [_png_b64()]},
        headers={"x-webhook-key": "forged"},
    )
    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert transport.history == []


def test_failed_generation_is_visible_on_the_job(client, transport):
    created = client.post("/api/jobs", json={}, headers=ALICE).json()
    client.patch("/api/jobs", json={"token": created["token"], "job_uuid": "ext-9"}, headers=ALICE)

    client.post(
        "/api/sd/webhook",
        json={"token": created["token"], "uuid": "ext-9", "status": "failed", "error": "oom"},
        headers={"x-webhook-key": "worker"},
    )

    job = client.get(f"/api/jobs/{created['id']}", headers=ALICE).json()
    assert job["status"] == "failed"
    assert job["error"] == "oom"
    assert transport.published("jobs", "job_failed")[0]["id"] == created["id"]


def test_library_mutations_announce_events(client, transport):
    _, image_id = _completed_image(client)

    character = client.post("/api/characters", json={"name": "Aria"}, headers=ALICE).json()
    assert character["slug"] == "aria"
    folder = client.post(
        "/api/folders", json={"name": "Portraits", "characterId": character["id"]}, headers=ALICE
    ).json()
    assert folder["character_id"] == character["id"]

    moved = client.put(f"/api/images/{image_id}", json={"folderId": folder["id"]}, headers=ALICE).json()
    assert moved["folder_id"] == folder["id"]
    assert moved["character_id"] == character["id"]
    move_event = transport.published("images", "image_moved")[-1]
    assert move_event["folder_id"] == folder["id"]
    assert move_event["character_id"] == character["id"]

    in_folder = client.get("/api/images", params={"folder_id": folder["id"]}, headers=ALICE).json()
    assert in_folder["total"] == 1
    unfiled = client.get("/api/images", params={"folder_id": "unfiled"}, headers=ALICE).json()
    assert unfiled["total"] == 0

    flagged = client.patch(f"/api/images/{image_id}", json={"isFavorite": True}, headers=ALICE).json()
    assert flagged["is_favorite"] is True
    assert transport.published("images", "image_updated")[-1]["is_favorite"] is True
    favorites = client.get("/api/images", params={"favorites_only": "true"}, headers=ALICE).json()
    assert favorites["total"] == 1

    assert client.delete(f"/api/folders/{folder['id']}", headers=ALICE).json() == {"success": True}
    last_move = transport.published("images", "image_moved")[-1]
    assert last_move["id"] == image_id
    assert last_move["folder_id"] is None
    assert last_move["character_id"] is None
    assert transport.published("folders", "folder_deleted")[-1]["id"] == folder["id"]

    deleted = client.post("/api/images/bulk-delete", json={"imageIds": [image_id, "missing"]}, headers=ALICE)
    assert deleted.json() == {"success": True, "count": 1}
    assert transport.published("images", "image_deleted")[-1]["id"] == image_id
    assert client.get(f"/api/images/{image_id}", headers=ALICE).status_code == 404


def test_library_validation_errors(client):
    _, image_id = _completed_image(client)

    assert client.put(f"/api/images/{image_id}", json={"folderId": "nope"}, headers=ALICE).status_code == 404
    assert client.patch(f"/api/images/{image_id}", json={}, headers=ALICE).status_code == 400
    assert client.post("/api/images/bulk-move", json={"imageIds": "x"}, headers=ALICE).status_code == 400
    assert client.post("/api/folders", json={"name": " "}, headers=ALICE).status_code == 400
    assert client.get(f"/api/images/{image_id}", headers=BOB).status_code == 404
    assert client.get("/api/images/serve/nobody/missing.png").status_code == 404


def test_deleting_character_detaches_folders(client, transport):
    _, image_id = _completed_image(client)
    character = client.post("/api/characters", json={"name": "Rin"}, headers=ALICE).json()
    folder = client.post("/api/folders", json={"name": "Rin", "character_id": character["id"]}, headers=ALICE).json()
    client.put(f"/api/images/{image_id}", json={"folderId": folder["id"]}, headers=ALICE)

    assert client.delete(f"/api/characters/{character['id']}", headers=ALICE).json() == {"success": True}

    folders = client.get("/api/folders", headers=ALICE).json()["items"]
    assert folders[0]["character_id"] is None
    image = client.get(f"/api/images/{image_id}", headers=ALICE).json()
    assert image["folder_id"] == folder["id"]
    assert image["character_id"] is None
    assert transport.published("characters", "character_deleted")[-1]["id"] == character["id"]


def test_image_flags_must_be_booleans(client, transport):
    _, image_id = _completed_image(client)

    response = client.patch(f"/api/images/{image_id}", json={"isFavorite": "false"}, headers=ALICE)

    assert response.status_code == 400
    assert response.json() == {"error": "isFavorite must be a boolean"}
    assert client.get(f"/api/images/{image_id}", headers=ALICE).json()["is_favorite"] is False
    assert transport.published("images", "image_updated") == []
