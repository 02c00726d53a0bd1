"""Client-side realtime synchronisation."""

from .api import StudioAPIClient, StudioAPIError
from .reconcile import (
    CollectionRefresher,
    CollectionReloaded,
    DetailClosed,
    ImageReconciler,
    Inserted,
    Patched,
    Reloaded,
    Removed,
    Replaced,
    ViewState,
    reduce,
)
from .session import SyncSession

__all__ = [
    "CollectionRefresher",
    "CollectionReloaded",
    "DetailClosed",
    "ImageReconciler",
    "Inserted",
    "Patched",
    "Reloaded",
    "Removed",
    "Replaced",
    "StudioAPIClient",
    "StudioAPIError",
    "SyncSession",
    "ViewState",
    "reduce",
]
