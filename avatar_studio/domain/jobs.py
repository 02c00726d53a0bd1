"""Domain entities for externally delegated generation jobs."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


class JobStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = frozenset({PENDING, COMPLETED, FAILED})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Job:
    """A unit of image generation handed to an external worker by token.

    ``webhook_token`` is the only credential a completion callback is checked
    against; ``external_id`` is the worker's own identifier and only narrows
    the match once it is known.
    """

    id: str
    owner: str
    webhook_token: str
    payload: dict[str, Any] = field(default_factory=dict)
    status: str = JobStatus.PENDING
    external_id: str | None = None
    result_ref: str | None = None
    image_ids: list[str] = field(default_factory=list)
    error: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    claimed_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == JobStatus.PENDING

    def to_public(self) -> dict[str, Any]:
        """Serialise for API responses; the token and claim marker stay private."""

        return {
            "id": self.id,
            "status": self.status,
            "external_id": self.external_id,
            "payload": dict(self.payload),
            "result_ref": self.result_ref,
            "image_ids": list(self.image_ids),
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
