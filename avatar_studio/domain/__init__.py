"""Domain layer definitions."""

from .events import (
    CHANNELS,
    CharacterCreated,
    CharacterDeleted,
    CharacterUpdated,
    DomainEvent,
    FolderCreated,
    FolderDeleted,
    FolderUpdated,
    ImageCreated,
    ImageDeleted,
    ImageMoved,
    ImageUpdated,
    JobFailed,
    parse_event,
)
from .jobs import Job, JobStatus
from .library import CharacterRecord, FolderRecord, ImageRecord

__all__ = [
    "CHANNELS",
    "CharacterCreated",
    "CharacterDeleted",
    "CharacterRecord",
    "CharacterUpdated",
    "DomainEvent",
    "FolderCreated",
    "FolderDeleted",
    "FolderRecord",
    "FolderUpdated",
    "ImageCreated",
    "ImageDeleted",
    "ImageMoved",
    "ImageRecord",
    "ImageUpdated",
    "Job",
    "JobFailed",
    "JobStatus",
    "parse_event",
]
