"""Domain entities for the user's image library."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from .jobs import utcnow


@dataclass(slots=True)
class CharacterRecord:
    id: str
    owner: str
    name: str
    slug: str
    description: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    def to_public(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("owner")
        data["created_at"] = self.created_at.isoformat()
        return data


@dataclass(slots=True)
class FolderRecord:
    id: str
    owner: str
    name: str
    character_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    def to_public(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("owner")
        data["created_at"] = self.created_at.isoformat()
        return data


@dataclass(slots=True)
class ImageRecord:
    """A stored, generated image.

    ``character_id`` is derived from the owning folder whenever the folder
    changes, so membership can be evaluated from the row alone.
    """

    id: str
    owner: str
    storage_path: str
    url: str
    folder_id: str | None = None
    character_id: str | None = None
    is_favorite: bool = False
    is_nsfw: bool = False
    width: int | None = None
    height: int | None = None
    generation_type: str = "txt2img"
    job_id: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def to_public(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("owner")
        data["created_at"] = self.created_at.isoformat()
        return data

    def membership(self) -> dict[str, Any]:
        """Fields a consumer needs to re-derive view membership."""

        return {
            "id": self.id,
            "folder_id": self.folder_id,
            "character_id": self.character_id,
            "is_favorite": self.is_favorite,
            "is_nsfw": self.is_nsfw,
        }
