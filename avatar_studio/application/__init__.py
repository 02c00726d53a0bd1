"""Application services."""

from .container import StudioServices, build_services, build_transport
from .jobs import JobRegistry
from .library import LibraryService
from .reaper import JobReaper
from .webhooks import WebhookIngress

__all__ = [
    "JobReaper",
    "JobRegistry",
    "LibraryService",
    "StudioServices",
    "WebhookIngress",
    "build_services",
    "build_transport",
]
