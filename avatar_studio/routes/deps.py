from __future__ import annotations

from fastapi import Depends, Header, Request

from avatar_studio.application import StudioServices
from avatar_studio.core.errors import Unauthorized


def get_services(request: Request) -> StudioServices:
    return request.app.state.services


def get_owner(
    authorization: str | None = Header(default=None),
    services: StudioServices = Depends(get_services),
) -> str:
    """Resolve the calling principal from ``Authorization: Bearer <key>``."""

    scheme, _, credential = (authorization or "").partition(" ")
    if scheme.lower() != "bearer":
        raise Unauthorized()
    owner = services.resolve_owner(credential.strip())
    if not owner:
        raise Unauthorized()
    return owner
