"""Realtime reconciliation of materialised client views.

The engines here never touch a UI.  Each bus event is turned into zero or more
transition descriptions; the engine folds them into its own :class:`ViewState`
with :func:`reduce` and forwards them to listeners, which can apply the same
transitions to whatever store the presentation layer uses.

Delivery is at-least-once and only roughly ordered, so every policy is
idempotent: presence is checked by id before inserting (and again after every
await), deleted ids are remembered so late ``created``/``moved`` events cannot
resurrect them, and events older than the last one applied to an id are
dropped.  Moves and flag updates are ordered independently of each other.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Union

from avatar_studio.core.view_filter import ViewFilter, matches
from avatar_studio.domain import (
    ImageCreated,
    ImageDeleted,
    ImageMoved,
    ImageUpdated,
)
from avatar_studio.infrastructure import EventBusClient

log = logging.getLogger(__name__)

Item = dict[str, Any]
ImageFetcher = Callable[[str], Awaitable[Union[Item, None]]]
CollectionFetcher = Callable[[], Awaitable[list[Item]]]


@dataclass(frozen=True, slots=True)
class ViewState:
    items: tuple[Item, ...] = ()
    total_count: int = 0
    view: ViewFilter = field(default_factory=ViewFilter)
    open_item_id: str | None = None

    def find(self, item_id: str) -> Item | None:
        for item in self.items:
            if str(item.get("id")) == str(item_id):
                return item
        return None

    def contains(self, item_id: str) -> bool:
        return self.find(item_id) is not None

    def ids(self) -> list[str]:
        return [str(item.get("id")) for item in self.items]


# ----- transitions -----
@dataclass(frozen=True, slots=True)
class Inserted:
    item: Item
    total_count: int


@dataclass(frozen=True, slots=True)
class Patched:
    item_id: str
    changes: dict[str, Any]


@dataclass(frozen=True, slots=True)
class Replaced:
    item: Item


@dataclass(frozen=True, slots=True)
class Removed:
    item_id: str
    total_count: int


@dataclass(frozen=True, slots=True)
class DetailClosed:
    item_id: str


@dataclass(frozen=True, slots=True)
class Reloaded:
    items: tuple[Item, ...]
    total_count: int
    view: ViewFilter


@dataclass(frozen=True, slots=True)
class CollectionReloaded:
    channel: str
    items: tuple[Item, ...]


Transition = Union[Inserted, Patched, Replaced, Removed, DetailClosed, Reloaded]
Listener = Callable[[Any], None]


def reduce(state: ViewState, transition: Transition) -> ViewState:
    """Apply one transition to a view state and return the new state."""

    if isinstance(transition, Inserted):
        if state.contains(str(transition.item.get("id"))):
            return state
        return replace(state, items=(transition.item, *state.items), total_count=transition.total_count)
    if isinstance(transition, Patched):
        items = tuple(
            {**item, **transition.changes} if str(item.get("id")) == transition.item_id else item
            for item in state.items
        )
        return replace(state, items=items)
    if isinstance(transition, Replaced):
        target = str(transition.item.get("id"))
        items = tuple(transition.item if str(item.get("id")) == target else item for item in state.items)
        return replace(state, items=items)
    if isinstance(transition, Removed):
        items = tuple(item for item in state.items if str(item.get("id")) != transition.item_id)
        return replace(state, items=items, total_count=transition.total_count)
    if isinstance(transition, DetailClosed):
        if state.open_item_id != transition.item_id:
            return state
        return replace(state, open_item_id=None)
    if isinstance(transition, Reloaded):
        return ViewState(items=transition.items, total_count=transition.total_count, view=transition.view)
    raise TypeError(f"unknown transition {transition!r}")


class _Listeners:
    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def add(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def emit(self, transition: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(transition)
            except Exception:
                log.exception("View listener failed on %s", type(transition).__name__)


class ImageReconciler:
    """Keeps one client's filtered image collection in step with the bus."""

    EVENT_NAMES = ("image_created", "image_saved", "image_updated", "image_moved", "image_deleted")

    def __init__(
        self,
        fetch_image: ImageFetcher,
        state: ViewState | None = None,
        *,
        tombstone_limit: int = 1024,
    ) -> None:
        self._fetch_image = fetch_image
        self._state = state or ViewState()
        self._listeners = _Listeners()
        self._tombstones: OrderedDict[str, None] = OrderedDict()
        self._tombstone_limit = tombstone_limit
        # (event name, image id) -> timestamp of the last applied event of that kind
        self._last_seen: OrderedDict[tuple[str, str], int] = OrderedDict()
        self._generation = 0

    @property
    def state(self) -> ViewState:
        return self._state

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        return self._listeners.add(listener)

    def attach(self, bus: EventBusClient) -> Callable[[], None]:
        unsubscribers = [bus.subscribe("images", name, self.handle) for name in self.EVENT_NAMES]

        def detach() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return detach

    # ------------------------------------------------------------------
    # local actions
    # ------------------------------------------------------------------
    def reset(self, items: list[Item], total_count: int, view: ViewFilter) -> None:
        """Replace the collection after an authoritative load for ``view``."""

        self._generation += 1
        self._last_seen.clear()
        self._commit([Reloaded(items=tuple(items), total_count=total_count, view=view)])

    def open_detail(self, item_id: str | None) -> None:
        self._state = replace(self._state, open_item_id=str(item_id) if item_id else None)

    # ------------------------------------------------------------------
    # event handling
    # ------------------------------------------------------------------
    async def handle(self, event: Any) -> list[Transition]:
        """Apply one bus event; failures are logged and never propagate."""

        try:
            transitions = await self._dispatch(event)
        except Exception:
            log.exception("Failed to reconcile %s for image %s", getattr(event, "name", "?"), getattr(event, "id", "?"))
            return []
        self._commit(transitions)
        return transitions

    async def _dispatch(self, event: Any) -> list[Transition]:
        if isinstance(event, ImageCreated):
            return await self._on_created(event)
        if isinstance(event, ImageUpdated):
            return self._on_updated(event)
        if isinstance(event, ImageMoved):
            return await self._on_moved(event)
        if isinstance(event, ImageDeleted):
            return self._on_deleted(event)
        log.debug("Ignoring %s on the image view", type(event).__name__)
        return []

    def _commit(self, transitions: list[Transition]) -> None:
        for transition in transitions:
            self._state = reduce(self._state, transition)
            self._listeners.emit(transition)

    def _is_stale(self, event: Any) -> bool:
        key = (event.name, event.id)
        last = self._last_seen.get(key)
        if last is not None and event.timestamp < last:
            log.debug("Dropping stale %s for image %s", event.name, event.id)
            return True
        self._last_seen[key] = event.timestamp
        self._last_seen.move_to_end(key)
        while len(self._last_seen) > self._tombstone_limit:
            self._last_seen.popitem(last=False)
        return False

    def _bury(self, item_id: str) -> None:
        self._tombstones[item_id] = None
        self._tombstones.move_to_end(item_id)
        while len(self._tombstones) > self._tombstone_limit:
            self._tombstones.popitem(last=False)

    async def _fetch_for(self, item_id: str) -> Item | None:
        """Fetch a full row; ``None`` when gone or when the view changed meanwhile."""

        generation = self._generation
        item = await self._fetch_image(item_id)
        if generation != self._generation or item_id in self._tombstones:
            return None
        return item

    async def _insert(self, item_id: str) -> list[Transition]:
        item = await self._fetch_for(item_id)
        if item is None or self._state.contains(item_id):
            return []
        if not matches(item, self._state.view):
            return []
        return [Inserted(item=item, total_count=self._state.total_count + 1)]

    async def _on_created(self, event: ImageCreated) -> list[Transition]:
        if event.id in self._tombstones or self._state.contains(event.id):
            return []
        if not matches(event.payload(), self._state.view):
            return []
        return await self._insert(event.id)

    def _on_updated(self, event: ImageUpdated) -> list[Transition]:
        if self._is_stale(event):
            return []
        changes = event.changes()
        if not changes or not self._state.contains(event.id):
            return []
        return [Patched(item_id=event.id, changes=changes)]

    async def _on_moved(self, event: ImageMoved) -> list[Transition]:
        if event.id in self._tombstones or self._is_stale(event):
            return []

        existing = self._state.find(event.id)
        favorite = event.is_favorite
        if favorite is None:
            favorite = existing.get("is_favorite") if existing else True
        fits = matches(
            {"folder_id": event.folder_id, "character_id": event.character_id, "is_favorite": favorite},
            self._state.view,
        )

        if existing is not None and not fits:
            return [Removed(item_id=event.id, total_count=max(0, self._state.total_count - 1))]
        if existing is None and fits:
            return await self._insert(event.id)
        if existing is not None and fits:
            item = await self._fetch_for(event.id)
            if item is None or not self._state.contains(event.id):
                return []
            return [Replaced(item=item)]
        return []

    def _on_deleted(self, event: ImageDeleted) -> list[Transition]:
        self._bury(event.id)
        for name in ("image_updated", "image_moved"):
            self._last_seen.pop((name, event.id), None)
        if not self._state.contains(event.id):
            return []
        transitions: list[Transition] = [
            Removed(item_id=event.id, total_count=max(0, self._state.total_count - 1))
        ]
        if self._state.open_item_id == event.id:
            transitions.append(DetailClosed(item_id=event.id))
        return transitions


class CollectionRefresher:
    """Refetches a whole small collection (folders, characters) on any event.

    A refetch that finishes after a newer one has already been applied is
    discarded.
    """

    def __init__(self, channel: str, event_names: tuple[str, ...], fetch_all: CollectionFetcher) -> None:
        self.channel = channel
        self.event_names = event_names
        self._fetch_all = fetch_all
        self._items: tuple[Item, ...] = ()
        self._listeners = _Listeners()
        self._requested = 0
        self._applied = 0

    @property
    def items(self) -> tuple[Item, ...]:
        return self._items

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        return self._listeners.add(listener)

    def attach(self, bus: EventBusClient) -> Callable[[], None]:
        unsubscribers = [bus.subscribe(self.channel, name, self.handle) for name in self.event_names]

        def detach() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return detach

    async def refresh(self) -> CollectionReloaded | None:
        self._requested += 1
        ticket = self._requested
        items = tuple(await self._fetch_all())
        if ticket < self._applied:
            return None
        self._applied = ticket
        self._items = items
        transition = CollectionReloaded(channel=self.channel, items=items)
        self._listeners.emit(transition)
        return transition

    async def handle(self, event: Any) -> CollectionReloaded | None:
        try:
            return await self.refresh()
        except Exception:
            log.exception("Failed to refresh %s after %s", self.channel, getattr(event, "name", "?"))
            return None


FOLDER_EVENTS = ("folder_created", "folder_updated", "folder_deleted")
CHARACTER_EVENTS = ("character_created", "character_updated", "character_deleted")
