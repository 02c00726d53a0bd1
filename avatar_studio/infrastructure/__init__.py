"""Infrastructure layer exports."""

from .bus import EventBusClient
from .jobs import InMemoryJobRepository, JobRepository
from .library import InMemoryLibraryRepository, LibraryRepository
from .storage import ArtifactStore, LocalArtifactStore, StoredArtifact
from .transports import AblyTransport, InMemoryTransport, PubSubTransport

__all__ = [
    "AblyTransport",
    "ArtifactStore",
    "EventBusClient",
    "InMemoryJobRepository",
    "InMemoryLibraryRepository",
    "InMemoryTransport",
    "JobRepository",
    "LibraryRepository",
    "LocalArtifactStore",
    "PubSubTransport",
    "StoredArtifact",
]
