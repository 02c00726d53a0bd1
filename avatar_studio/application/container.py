"""Composition root: builds the process-wide services from settings."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from avatar_studio.core.config import Settings
from avatar_studio.infrastructure import (
    AblyTransport,
    EventBusClient,
    InMemoryJobRepository,
    InMemoryLibraryRepository,
    InMemoryTransport,
    JobRepository,
    LibraryRepository,
    LocalArtifactStore,
    PubSubTransport,
)

from .jobs import JobRegistry
from .library import LibraryService
from .reaper import JobReaper
from .webhooks import WebhookIngress

log = logging.getLogger(__name__)


@dataclass(slots=True)
class StudioServices:
    settings: Settings
    jobs_repository: JobRepository
    library_repository: LibraryRepository
    store: LocalArtifactStore
    bus: EventBusClient
    registry: JobRegistry
    ingress: WebhookIngress
    library: LibraryService
    reaper: JobReaper

    def resolve_owner(self, api_key: str | None) -> str | None:
        if not api_key:
            return None
        return self.settings.api_keys.get(api_key)


def build_transport(settings: Settings) -> PubSubTransport | None:
    kind = settings.realtime_transport
    if kind == "memory":
        return InMemoryTransport()
    if kind == "ably":
        if not settings.ably_api_key:
            log.warning("REALTIME_TRANSPORT=ably but ABLY_API_KEY is missing; realtime disabled")
            return None
        return AblyTransport(
            settings.ably_api_key,
            rest_host=settings.ably_rest_host,
            realtime_host=settings.ably_realtime_host,
        )
    return None


def build_services(settings: Settings, transport: PubSubTransport | None = None) -> StudioServices:
    bus = EventBusClient(transport if transport is not None else build_transport(settings))
    jobs_repository = InMemoryJobRepository()
    library_repository = InMemoryLibraryRepository()
    store = LocalArtifactStore(settings.artifacts_root, settings.artifacts_public_base)
    return StudioServices(
        settings=settings,
        jobs_repository=jobs_repository,
        library_repository=library_repository,
        store=store,
        bus=bus,
        registry=JobRegistry(jobs_repository),
        ingress=WebhookIngress(jobs_repository, library_repository, store, bus),
        library=LibraryService(library_repository, store, bus),
        reaper=JobReaper(jobs_repository, bus, settings.job_ttl_seconds),
    )
