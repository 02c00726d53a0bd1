"""Infrastructure layer for image, folder and character persistence."""
from __future__ import annotations

import re
import uuid
from dataclasses import replace
from typing import Any, Callable, Iterable, Protocol

from avatar_studio.domain import CharacterRecord, FolderRecord, ImageRecord


class LibraryRepository(Protocol):
    """Owner-scoped persistence contract for the image library."""

    async def add_image(self, record: ImageRecord) -> ImageRecord: ...

    async def get_image(self, owner: str, image_id: str) -> ImageRecord | None: ...

    async def query_images(
        self,
        owner: str,
        predicate: Callable[[ImageRecord], bool] | None = None,
    ) -> list[ImageRecord]: ...

    async def update_image(self, owner: str, image_id: str, **changes: Any) -> ImageRecord | None: ...

    async def delete_image(self, owner: str, image_id: str) -> ImageRecord | None: ...

    async def add_folder(self, owner: str, name: str, character_id: str | None) -> FolderRecord: ...

    async def get_folder(self, owner: str, folder_id: str) -> FolderRecord | None: ...

    async def list_folders(self, owner: str) -> list[FolderRecord]: ...

    async def update_folder(self, owner: str, folder_id: str, **changes: Any) -> FolderRecord | None: ...

    async def delete_folder(self, owner: str, folder_id: str) -> FolderRecord | None: ...

    async def add_character(self, owner: str, name: str, description: str | None) -> CharacterRecord: ...

    async def get_character(self, owner: str, character_id: str) -> CharacterRecord | None: ...

    async def list_characters(self, owner: str) -> list[CharacterRecord]: ...

    async def update_character(self, owner: str, character_id: str, **changes: Any) -> CharacterRecord | None: ...

    async def delete_character(self, owner: str, character_id: str) -> CharacterRecord | None: ...

    def reset(self) -> None: ...


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")
    return slug or "character"


class InMemoryLibraryRepository:
    """Simple in-memory repository for fast iteration and tests."""

    def __init__(self) -> None:
        self._images: dict[str, ImageRecord] = {}
        self._folders: dict[str, FolderRecord] = {}
        self._characters: dict[str, CharacterRecord] = {}

    # ------------------------------------------------------------------
    # internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _owned(table: dict[str, Any], owner: str, key: str) -> Any:
        record = table.get(str(key))
        if record is None or record.owner != owner:
            return None
        return record

    @staticmethod
    def _newest_first(records: Iterable[Any]) -> list[Any]:
        return sorted((replace(record) for record in records), key=lambda r: r.created_at, reverse=True)

    # ------------------------------------------------------------------
    # images
    # ------------------------------------------------------------------
    async def add_image(self, record: ImageRecord) -> ImageRecord:
        self._images[record.id] = replace(record)
        return replace(record)

    async def get_image(self, owner: str, image_id: str) -> ImageRecord | None:
        record = self._owned(self._images, owner, image_id)
        return replace(record) if record else None

    async def query_images(
        self,
        owner: str,
        predicate: Callable[[ImageRecord], bool] | None = None,
    ) -> list[ImageRecord]:
        rows = [
            record
            for record in self._images.values()
            if record.owner == owner and (predicate is None or predicate(record))
        ]
        return self._newest_first(rows)

    async def update_image(self, owner: str, image_id: str, **changes: Any) -> ImageRecord | None:
        record = self._owned(self._images, owner, image_id)
        if record is None:
            return None
        for key, value in changes.items():
            setattr(record, key, value)
        return replace(record)

    async def delete_image(self, owner: str, image_id: str) -> ImageRecord | None:
        record = self._owned(self._images, owner, image_id)
        if record is None:
            return None
        del self._images[record.id]
        return record

    # ------------------------------------------------------------------
    # folders
    # ------------------------------------------------------------------
    async def add_folder(self, owner: str, name: str, character_id: str | None) -> FolderRecord:
        folder = FolderRecord(id=str(uuid.uuid4()), owner=owner, name=name, character_id=character_id)
        self._folders[folder.id] = folder
        return replace(folder)

    async def get_folder(self, owner: str, folder_id: str) -> FolderRecord | None:
        folder = self._owned(self._folders, owner, folder_id)
        return replace(folder) if folder else None

    async def list_folders(self, owner: str) -> list[FolderRecord]:
        return self._newest_first(folder for folder in self._folders.values() if folder.owner == owner)

    async def update_folder(self, owner: str, folder_id: str, **changes: Any) -> FolderRecord | None:
        folder = self._owned(self._folders, owner, folder_id)
        if folder is None:
            return None
        for key, value in changes.items():
            setattr(folder, key, value)
        return replace(folder)

    async def delete_folder(self, owner: str, folder_id: str) -> FolderRecord | None:
        folder = self._owned(self._folders, owner, folder_id)
        if folder is None:
            return None
        del self._folders[folder.id]
        return folder

    # ------------------------------------------------------------------
    # characters
    # ------------------------------------------------------------------
    async def add_character(self, owner: str, name: str, description: str | None) -> CharacterRecord:
        character = CharacterRecord(
            id=str(uuid.uuid4()),
            owner=owner,
            name=name,
            slug=slugify(name),
            description=description,
        )
        self._characters[character.id] = character
        return replace(character)

    async def get_character(self, owner: str, character_id: str) -> CharacterRecord | None:
        character = self._owned(self._characters, owner, character_id)
        return replace(character) if character else None

    async def list_characters(self, owner: str) -> list[CharacterRecord]:
        return self._newest_first(item for item in self._characters.values() if item.owner == owner)

    async def update_character(self, owner: str, character_id: str, **changes: Any) -> CharacterRecord | None:
        character = self._owned(self._characters, owner, character_id)
        if character is None:
            return None
        for key, value in changes.items():
            setattr(character, key, value)
        if "name" in changes:
            character.slug = slugify(character.name)
        return replace(character)

    async def delete_character(self, owner: str, character_id: str) -> CharacterRecord | None:
        character = self._owned(self._characters, owner, character_id)
        if character is None:
            return None
        del self._characters[character.id]
        return character

    def reset(self) -> None:
        self._images.clear()
        self._folders.clear()
        self._characters.clear()
