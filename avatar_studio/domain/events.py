"""Typed domain events carried over the realtime bus.

Payloads arrive as flat JSON objects; the event name travels alongside the
payload as the message name.  Each channel has its own tagged union keyed on
``name`` so consumers can match exhaustively instead of probing fields.
"""
from __future__ import annotations

import time
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


def now_ms() -> int:
    return int(time.time() * 1000)


def _coerce_id(value: Any) -> Any:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value))
    return value


class EventBase(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    channel: ClassVar[str] = ""

    id: str
    timestamp: int = Field(default_factory=now_ms)

    @field_validator("id", mode="before")
    @classmethod
    def _require_id(cls, value: Any) -> Any:
        value = _coerce_id(value)
        if value is None:
            raise ValueError("id is required")
        return value

    def payload(self) -> dict[str, Any]:
        return self.model_dump(exclude={"name"})


class _Placement(EventBase):
    folder_id: str | None = None
    character_id: str | None = None

    @field_validator("folder_id", "character_id", mode="before")
    @classmethod
    def _optional_id(cls, value: Any) -> Any:
        return _coerce_id(value)


# ----- images -----
class ImageCreated(_Placement):
    channel: ClassVar[str] = "images"
    name: Literal["image_created"] = "image_created"
    is_favorite: bool = False
    is_nsfw: bool = False
    job_id: str | None = None


class ImageUpdated(EventBase):
    channel: ClassVar[str] = "images"
    name: Literal["image_updated"] = "image_updated"
    is_favorite: bool | None = None
    is_nsfw: bool | None = None

    def changes(self) -> dict[str, bool]:
        return {
            key: value
            for key, value in (("is_favorite", self.is_favorite), ("is_nsfw", self.is_nsfw))
            if value is not None
        }


class ImageMoved(_Placement):
    channel: ClassVar[str] = "images"
    name: Literal["image_moved"] = "image_moved"
    is_favorite: bool | None = None


class ImageDeleted(_Placement):
    channel: ClassVar[str] = "images"
    name: Literal["image_deleted"] = "image_deleted"


# ----- folders -----
class FolderCreated(EventBase):
    channel: ClassVar[str] = "folders"
    name: Literal["folder_created"] = "folder_created"
    character_id: str | None = None


class FolderUpdated(EventBase):
    channel: ClassVar[str] = "folders"
    name: Literal["folder_updated"] = "folder_updated"
    character_id: str | None = None


class FolderDeleted(EventBase):
    channel: ClassVar[str] = "folders"
    name: Literal["folder_deleted"] = "folder_deleted"
    character_id: str | None = None


# ----- characters -----
class CharacterCreated(EventBase):
    channel: ClassVar[str] = "characters"
    name: Literal["character_created"] = "character_created"


class CharacterUpdated(EventBase):
    channel: ClassVar[str] = "characters"
    name: Literal["character_updated"] = "character_updated"


class CharacterDeleted(EventBase):
    channel: ClassVar[str] = "characters"
    name: Literal["character_deleted"] = "character_deleted"


# ----- jobs -----
class JobFailed(EventBase):
    channel: ClassVar[str] = "jobs"
    name: Literal["job_failed"] = "job_failed"
    error: str | None = None


ImageEvent = Annotated[
    Union[ImageCreated, ImageUpdated, ImageMoved, ImageDeleted],
    Field(discriminator="name"),
]
FolderEvent = Annotated[
    Union[FolderCreated, FolderUpdated, FolderDeleted],
    Field(discriminator="name"),
]
CharacterEvent = Annotated[
    Union[CharacterCreated, CharacterUpdated, CharacterDeleted],
    Field(discriminator="name"),
]
DomainEvent = Union[
    ImageCreated,
    ImageUpdated,
    ImageMoved,
    ImageDeleted,
    FolderCreated,
    FolderUpdated,
    FolderDeleted,
    CharacterCreated,
    CharacterUpdated,
    CharacterDeleted,
    JobFailed,
]

_ADAPTERS: dict[str, TypeAdapter[Any]] = {
    "images": TypeAdapter(ImageEvent),
    "folders": TypeAdapter(FolderEvent),
    "characters": TypeAdapter(CharacterEvent),
    "jobs": TypeAdapter(JobFailed),
}

CHANNELS = tuple(_ADAPTERS)

# Older publishers announced new images as ``image_saved``.
_NAME_ALIASES = {"image_saved": "image_created"}


def parse_event(channel: str, name: str, data: Any) -> DomainEvent:
    """Validate a raw bus message into its typed event.

    Raises :class:`ValueError` (``pydantic.ValidationError`` is a subclass)
    when the channel is unknown or the payload does not fit the event.
    """

    adapter = _ADAPTERS.get(channel)
    if adapter is None:
        raise ValueError(f"unknown channel {channel!r}")
    if not isinstance(data, dict):
        raise ValueError("event payload must be an object")
    body = dict(data)
    body["name"] = _NAME_ALIASES.get(name, name)
    return adapter.validate_python(body)
