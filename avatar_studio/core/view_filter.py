"""Membership predicate for the image collection currently on screen.

The same predicate decides which rows the initial ``GET /api/images`` load
returns and whether a realtime event touches the materialised view, so both
paths always agree on what "belongs" to the active selection.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

UNFILED = "unfiled"


@dataclass(frozen=True, slots=True)
class ViewFilter:
    """Active selection of a gallery view.

    ``folder`` is ``""`` (no folder constraint), ``"unfiled"`` or a folder id.
    """

    character: str | None = None
    folder: str = ""
    favorites_only: bool = False

    @classmethod
    def from_params(
        cls,
        character: str | None = None,
        folder: str | None = None,
        favorites_only: bool | None = None,
    ) -> "ViewFilter":
        return cls(
            character=str(character) if character else None,
            folder=str(folder or ""),
            favorites_only=bool(favorites_only),
        )


def _field(entity: Any, name: str) -> Any:
    if isinstance(entity, Mapping):
        return entity.get(name)
    return getattr(entity, name, None)


def _same_id(value: Any, expected: str) -> bool:
    return value is not None and str(value) == str(expected)


def matches(entity: Any, view: ViewFilter) -> bool:
    """Return ``True`` when ``entity`` belongs in the collection for ``view``.

    ``entity`` may be a mapping (event payloads, API rows) or any object
    exposing ``folder_id``, ``character_id`` and ``is_favorite``.
    """

    folder_id = _field(entity, "folder_id")
    character_id = _field(entity, "character_id")

    if view.character:
        if not _same_id(character_id, view.character):
            return False
        if not view.folder:
            in_scope = True
        elif view.folder == UNFILED:
            in_scope = folder_id is None
        else:
            in_scope = _same_id(folder_id, view.folder)
    elif view.folder == UNFILED:
        in_scope = folder_id is None and character_id is None
    elif view.folder:
        in_scope = _same_id(folder_id, view.folder)
    else:
        in_scope = True

    if not in_scope:
        return False
    if view.favorites_only and not _field(entity, "is_favorite"):
        return False
    return True
