from __future__ import annotations

from fastapi import APIRouter, Depends

from avatar_studio.application import StudioServices

from .deps import get_owner, get_services

router = APIRouter(prefix="/folders", tags=["folders"])


def _folder_changes(payload: dict) -> dict:
    changes: dict = {}
    if "name" in payload:
        changes["name"] = payload["name"]
    for key in ("character_id", "characterId"):
        if key in payload:
            changes["character_id"] = payload[key]
    return changes


@router.get("")
async def list_folders(owner: str = Depends(get_owner), services: StudioServices = Depends(get_services)) -> dict:
    folders = await services.library.list_folders(owner)
    return {"items": [folder.to_public() for folder in folders]}


@router.post("")
async def create_folder(
    payload: dict,
    owner: str = Depends(get_owner),
    services: StudioServices = Depends(get_services),
) -> dict:
    character_id = payload.get("character_id", payload.get("characterId"))
    folder = await services.library.create_folder(owner, payload.get("name"), character_id)
    return folder.to_public()


@router.put("/{folder_id}")
async def update_folder(
    folder_id: str,
    payload: dict,
    owner: str = Depends(get_owner),
    services: StudioServices = Depends(get_services),
) -> dict:
    folder = await services.library.update_folder(owner, folder_id, _folder_changes(payload))
    return folder.to_public()


@router.delete("/{folder_id}")
async def delete_folder(
    folder_id: str,
    owner: str = Depends(get_owner),
    services: StudioServices = Depends(get_services),
) -> dict:
    await services.library.delete_folder(owner, folder_id)
    return {"success": True}
