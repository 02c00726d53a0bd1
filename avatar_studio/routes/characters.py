from __future__ import annotations

from fastapi import APIRouter, Depends

from avatar_studio.application import StudioServices

from .deps import get_owner, get_services

router = APIRouter(prefix="/characters", tags=["characters"])


@router.get("")
async def list_characters(owner: str = Depends(get_owner), services: StudioServices = Depends(get_services)) -> dict:
    characters = await services.library.list_characters(owner)
    return {"items": [character.to_public() for character in characters]}


@router.post("")
async def create_character(
    payload: dict,
    owner: str = Depends(get_owner),
    services: StudioServices = Depends(get_services),
) -> dict:
    character = await services.library.create_character(owner, payload.get("name"), payload.get("description"))
    return character.to_public()


@router.put("/{character_id}")
async def update_character(
    character_id: str,
    payload: dict,
    owner: str = Depends(get_owner),
    services: StudioServices = Depends(get_services),
) -> dict:
    changes = {key: payload[key] for key in ("name", "description") if key in payload}
    character = await services.library.update_character(owner, character_id, changes)
    return character.to_public()


@router.delete("/{character_id}")
async def delete_character(
    character_id: str,
    owner: str = Depends(get_owner),
    services: StudioServices = Depends(get_services),
) -> dict:
    await services.library.delete_character(owner, character_id)
    return {"success": True}
