from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse

from avatar_studio.application import StudioServices
from avatar_studio.core.errors import BadRequest
from avatar_studio.core.view_filter import ViewFilter

from .deps import get_owner, get_services

router = APIRouter(prefix="/images", tags=["images"])


def _flag(payload: dict, *keys: str) -> bool | None:
    for key in keys:
        value = payload.get(key)
        if value is None:
            continue
        if not isinstance(value, bool):
            raise BadRequest(f"{key} must be a boolean")
        return value
    return None


@router.get("")
async def list_images(
    character_id: str | None = Query(default=None),
    folder_id: str | None = Query(default=None),
    favorites_only: bool = Query(default=False),
    limit: int = Query(default=50),
    offset: int = Query(default=0),
    owner: str = Depends(get_owner),
    services: StudioServices = Depends(get_services),
) -> dict:
    view = ViewFilter.from_params(character_id, folder_id, favorites_only)
    items, total = await services.library.list_images(owner, view, limit=limit, offset=offset)
    return {"items": [item.to_public() for item in items], "total": total}


@router.get("/serve/{storage_path:path}")
async def serve_image(storage_path: str, services: StudioServices = Depends(get_services)) -> FileResponse:
    candidate = services.store.resolve(storage_path)
    if candidate is None:
        raise HTTPException(status_code=400, detail="invalid image path")
    if not candidate.exists():
        raise HTTPException(status_code=404, detail="image not found")
    return FileResponse(candidate)


@router.post("/bulk-move")
async def bulk_move(
    payload: dict,
    owner: str = Depends(get_owner),
    services: StudioServices = Depends(get_services),
) -> dict:
    folder_id = payload.get("folderId", payload.get("folder_id"))
    count = await services.library.bulk_move(owner, payload.get("imageIds"), folder_id)
    return {"success": True, "count": count}


@router.post("/bulk-delete")
async def bulk_delete(
    payload: dict,
    owner: str = Depends(get_owner),
    services: StudioServices = Depends(get_services),
) -> dict:
    count = await services.library.bulk_delete(owner, payload.get("imageIds"))
    return {"success": True, "count": count}


@router.get("/{image_id}")
async def get_image(
    image_id: str,
    owner: str = Depends(get_owner),
    services: StudioServices = Depends(get_services),
) -> dict:
    record = await services.library.get_image(owner, image_id)
    return record.to_public()


@router.put("/{image_id}")
async def move_image(
    image_id: str,
    payload: dict,
    owner: str = Depends(get_owner),
    services: StudioServices = Depends(get_services),
) -> dict:
    """Move an image to a folder; a null folder makes it unfiled."""
    folder_id = payload.get("folderId", payload.get("folder_id"))
    record = await services.library.move_image(owner, image_id, folder_id)
    return record.to_public()


@router.patch("/{image_id}")
async def update_image_flags(
    image_id: str,
    payload: dict,
    owner: str = Depends(get_owner),
    services: StudioServices = Depends(get_services),
) -> dict:
    record = await services.library.update_image_flags(
        owner,
        image_id,
        is_favorite=_flag(payload, "is_favorite", "isFavorite"),
        is_nsfw=_flag(payload, "is_nsfw", "isNsfw"),
    )
    return record.to_public()


@router.delete("/{image_id}")
async def delete_image(
    image_id: str,
    owner: str = Depends(get_owner),
    services: StudioServices = Depends(get_services),
) -> dict:
    await services.library.delete_image(owner, image_id)
    return {"success": True}
