"""Application service for the image library.

Every mutation is announced on the bus after it has been persisted, so other
connected clients can reconcile their views without refetching.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable

from avatar_studio.core.errors import BadRequest, NotFound, Unauthorized
from avatar_studio.core.view_filter import ViewFilter, matches
from avatar_studio.domain import (
    CharacterCreated,
    CharacterDeleted,
    CharacterRecord,
    CharacterUpdated,
    FolderCreated,
    FolderDeleted,
    FolderRecord,
    FolderUpdated,
    ImageDeleted,
    ImageMoved,
    ImageRecord,
    ImageUpdated,
)
from avatar_studio.infrastructure import ArtifactStore, EventBusClient, LibraryRepository

log = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


def _require_owner(owner: str | None) -> str:
    if not owner:
        raise Unauthorized()
    return owner


def _id_list(values: Any) -> list[str]:
    if not isinstance(values, list):
        raise BadRequest("imageIds array is required")
    return [str(value) for value in values if value not in (None, "")]


class LibraryService:
    """Coordinates image, folder and character use cases."""

    def __init__(self, repository: LibraryRepository, store: ArtifactStore, bus: EventBusClient) -> None:
        self._repository = repository
        self._store = store
        self._bus = bus

    # ------------------------------------------------------------------
    # images
    # ------------------------------------------------------------------
    async def list_images(
        self,
        owner: str | None,
        view: ViewFilter,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ImageRecord], int]:
        owner = _require_owner(owner)
        if limit < 1 or offset < 0:
            raise BadRequest("limit must be positive and offset non-negative")
        rows = await self._repository.query_images(owner, lambda record: matches(record, view))
        limit = min(limit, MAX_PAGE_SIZE)
        return rows[offset : offset + limit], len(rows)

    async def get_image(self, owner: str | None, image_id: str) -> ImageRecord:
        owner = _require_owner(owner)
        record = await self._repository.get_image(owner, image_id)
        if record is None:
            raise NotFound("Image not found")
        return record

    async def _resolve_folder(self, owner: str, folder_id: str | None) -> FolderRecord | None:
        if not folder_id:
            return None
        folder = await self._repository.get_folder(owner, str(folder_id))
        if folder is None:
            raise NotFound("Folder not found")
        return folder

    async def _place_image(self, owner: str, image_id: str, folder: FolderRecord | None) -> ImageRecord | None:
        record = await self._repository.update_image(
            owner,
            image_id,
            folder_id=folder.id if folder else None,
            character_id=folder.character_id if folder else None,
        )
        if record is not None:
            await self._bus.publish_event(ImageMoved(**record.membership()))
        return record

    async def move_image(self, owner: str | None, image_id: str, folder_id: str | None) -> ImageRecord:
        owner = _require_owner(owner)
        folder = await self._resolve_folder(owner, folder_id)
        record = await self._place_image(owner, image_id, folder)
        if record is None:
            raise NotFound("Image not found")
        return record

    async def bulk_move(self, owner: str | None, image_ids: Any, folder_id: str | None) -> int:
        owner = _require_owner(owner)
        ids = _id_list(image_ids)
        folder = await self._resolve_folder(owner, folder_id)
        moved = 0
        for image_id in ids:
            if await self._place_image(owner, image_id, folder) is not None:
                moved += 1
        log.info("Moved %d image(s) for %s", moved, owner)
        return moved

    async def update_image_flags(
        self,
        owner: str | None,
        image_id: str,
        *,
        is_favorite: bool | None = None,
        is_nsfw: bool | None = None,
    ) -> ImageRecord:
        owner = _require_owner(owner)
        changes = {
            key: bool(value)
            for key, value in (("is_favorite", is_favorite), ("is_nsfw", is_nsfw))
            if value is not None
        }
        if not changes:
            raise BadRequest("no valid updates provided")
        record = await self._repository.update_image(owner, image_id, **changes)
        if record is None:
            raise NotFound("Image not found")
        await self._bus.publish_event(ImageUpdated(id=record.id, **changes))
        return record

    async def _remove_image(self, owner: str, image_id: str) -> ImageRecord | None:
        record = await self._repository.delete_image(owner, image_id)
        if record is None:
            return None
        try:
            await self._store.delete(record.storage_path)
        except OSError:
            log.warning("Could not remove stored artifact for image %s", record.id)
        await self._bus.publish_event(
            ImageDeleted(id=record.id, folder_id=record.folder_id, character_id=record.character_id)
        )
        return record

    async def delete_image(self, owner: str | None, image_id: str) -> None:
        owner = _require_owner(owner)
        if await self._remove_image(owner, image_id) is None:
            raise NotFound("Image not found")

    async def bulk_delete(self, owner: str | None, image_ids: Any) -> int:
        owner = _require_owner(owner)
        deleted = 0
        for image_id in _id_list(image_ids):
            if await self._remove_image(owner, image_id) is not None:
                deleted += 1
        return deleted

    # ------------------------------------------------------------------
    # folders
    # ------------------------------------------------------------------
    async def list_folders(self, owner: str | None) -> list[FolderRecord]:
        return await self._repository.list_folders(_require_owner(owner))

    async def _resolve_character(self, owner: str, character_id: str | None) -> CharacterRecord | None:
        if not character_id:
            return None
        character = await self._repository.get_character(owner, str(character_id))
        if character is None:
            raise NotFound("Character not found")
        return character

    async def create_folder(self, owner: str | None, name: str | None, character_id: str | None = None) -> FolderRecord:
        owner = _require_owner(owner)
        if not name or not str(name).strip():
            raise BadRequest("name is required")
        character = await self._resolve_character(owner, character_id)
        folder = await self._repository.add_folder(owner, str(name).strip(), character.id if character else None)
        await self._bus.publish_event(FolderCreated(id=folder.id, character_id=folder.character_id))
        return folder

    async def _reassign_folder_images(self, owner: str, folder: FolderRecord | None, images: Iterable[ImageRecord]) -> None:
        for image in images:
            await self._place_image(owner, image.id, folder)

    async def update_folder(self, owner: str | None, folder_id: str, changes: dict[str, Any]) -> FolderRecord:
        owner = _require_owner(owner)
        current = await self._resolve_folder(owner, folder_id)
        if current is None:
            raise NotFound("Folder not found")

        updates: dict[str, Any] = {}
        if "name" in changes:
            name = str(changes["name"] or "").strip()
            if not name:
                raise BadRequest("name is required")
            updates["name"] = name
        if "character_id" in changes:
            character = await self._resolve_character(owner, changes["character_id"])
            updates["character_id"] = character.id if character else None
        if not updates:
            raise BadRequest("no valid updates provided")

        folder = await self._repository.update_folder(owner, current.id, **updates)
        if folder is None:
            raise NotFound("Folder not found")
        if folder.character_id != current.character_id:
            contents = await self._repository.query_images(owner, lambda record: record.folder_id == folder.id)
            await self._reassign_folder_images(owner, folder, contents)
        await self._bus.publish_event(FolderUpdated(id=folder.id, character_id=folder.character_id))
        return folder

    async def delete_folder(self, owner: str | None, folder_id: str) -> None:
        owner = _require_owner(owner)
        folder = await self._repository.delete_folder(owner, str(folder_id))
        if folder is None:
            raise NotFound("Folder not found")
        contents = await self._repository.query_images(owner, lambda record: record.folder_id == folder.id)
        await self._reassign_folder_images(owner, None, contents)
        await self._bus.publish_event(FolderDeleted(id=folder.id, character_id=folder.character_id))

    # ------------------------------------------------------------------
    # characters
    # ------------------------------------------------------------------
    async def list_characters(self, owner: str | None) -> list[CharacterRecord]:
        return await self._repository.list_characters(_require_owner(owner))

    async def create_character(self, owner: str | None, name: str | None, description: str | None = None) -> CharacterRecord:
        owner = _require_owner(owner)
        if not name or not str(name).strip():
            raise BadRequest("name is required")
        character = await self._repository.add_character(owner, str(name).strip(), description)
        await self._bus.publish_event(CharacterCreated(id=character.id))
        return character

    async def update_character(self, owner: str | None, character_id: str, changes: dict[str, Any]) -> CharacterRecord:
        owner = _require_owner(owner)
        updates: dict[str, Any] = {}
        if "name" in changes:
            name = str(changes["name"] or "").strip()
            if not name:
                raise BadRequest("name is required")
            updates["name"] = name
        if "description" in changes:
            updates["description"] = changes["description"]
        if not updates:
            raise BadRequest("no valid updates provided")
        character = await self._repository.update_character(owner, str(character_id), **updates)
        if character is None:
            raise NotFound("Character not found")
        await self._bus.publish_event(CharacterUpdated(id=character.id))
        return character

    async def delete_character(self, owner: str | None, character_id: str) -> None:
        owner = _require_owner(owner)
        character = await self._repository.delete_character(owner, str(character_id))
        if character is None:
            raise NotFound("Character not found")

        for folder in await self._repository.list_folders(owner):
            if folder.character_id == character.id:
                detached = await self._repository.update_folder(owner, folder.id, character_id=None)
                await self._bus.publish_event(FolderUpdated(id=folder.id, character_id=None))
                contents = await self._repository.query_images(owner, lambda record, fid=folder.id: record.folder_id == fid)
                await self._reassign_folder_images(owner, detached, contents)

        orphans = await self._repository.query_images(
            owner, lambda record: record.character_id == character.id and record.folder_id is None
        )
        for image in orphans:
            await self._place_image(owner, image.id, None)
        await self._bus.publish_event(CharacterDeleted(id=character.id))
