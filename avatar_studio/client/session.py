"""Wires the reconciliation engines of one connected client to the bus."""
from __future__ import annotations

import logging
from typing import Callable

from avatar_studio.core.view_filter import ViewFilter
from avatar_studio.domain import CharacterDeleted, FolderDeleted
from avatar_studio.infrastructure import EventBusClient

from .api import StudioAPIClient
from .reconcile import CHARACTER_EVENTS, FOLDER_EVENTS, CollectionRefresher, ImageReconciler

log = logging.getLogger(__name__)


class SyncSession:
    """Realtime view state for one client: images, folders and characters.

    The session owns the subscriptions it makes and releases them on
    :meth:`stop`; the bus lifecycle itself belongs to whoever built the bus.
    """

    def __init__(self, api: StudioAPIClient, bus: EventBusClient, *, page_size: int = 50) -> None:
        self._api = api
        self._bus = bus
        self._page_size = page_size
        self.images = ImageReconciler(api.get_image)
        self.folders = CollectionRefresher("folders", FOLDER_EVENTS, api.list_folders)
        self.characters = CollectionRefresher("characters", CHARACTER_EVENTS, api.list_characters)
        self._detachers: list[Callable[[], None]] = []

    @property
    def view(self) -> ViewFilter:
        return self.images.state.view

    async def start(self, view: ViewFilter | None = None) -> None:
        if not self._bus.enabled:
            log.info("Realtime disabled; views refresh only on explicit reloads")
        self._detachers = [
            self.images.attach(self._bus),
            self.folders.attach(self._bus),
            self.characters.attach(self._bus),
            self._bus.subscribe("folders", "folder_deleted", self._on_folder_deleted),
            self._bus.subscribe("characters", "character_deleted", self._on_character_deleted),
        ]
        await self.folders.refresh()
        await self.characters.refresh()
        await self.set_filter(view or ViewFilter())

    async def set_filter(self, view: ViewFilter) -> None:
        """Load the first page for ``view`` and make it the active selection."""

        items, total = await self._api.list_images(view, limit=self._page_size)
        self.images.reset(items, total, view)

    async def stop(self) -> None:
        for detach in self._detachers:
            detach()
        self._detachers = []

    async def _on_folder_deleted(self, event: FolderDeleted) -> None:
        if self.view.folder == event.id:
            log.info("Active folder %s was deleted; showing all images", event.id)
            await self.set_filter(ViewFilter(character=self.view.character, favorites_only=self.view.favorites_only))

    async def _on_character_deleted(self, event: CharacterDeleted) -> None:
        if self.view.character == event.id:
            log.info("Active character %s was deleted; showing all images", event.id)
            await self.set_filter(ViewFilter(favorites_only=self.view.favorites_only))
