"""Async REST client used by connected clients to fetch full representations."""
from __future__ import annotations

from typing import Any

import httpx

from avatar_studio.core.view_filter import ViewFilter


class StudioAPIError(RuntimeError):
    """Raised when the studio API answers with an unexpected status."""


class StudioAPIClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        return await self._client.get(f"{self._base_url}{path}", params=params, headers=self._headers)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if response.status_code >= 400:
            raise StudioAPIError(f"{response.request.method} {response.request.url.path} -> {response.status_code}")
        return response.json()

    async def get_image(self, image_id: str) -> dict[str, Any] | None:
        response = await self._get(f"/api/images/{image_id}")
        if response.status_code == 404:
            return None
        return self._json(response)

    async def list_images(self, view: ViewFilter, *, limit: int = 50, offset: int = 0) -> tuple[list[dict[str, Any]], int]:
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if view.character:
            params["character_id"] = view.character
        if view.folder:
            params["folder_id"] = view.folder
        if view.favorites_only:
            params["favorites_only"] = "true"
        data = self._json(await self._get("/api/images", params))
        return list(data.get("items") or []), int(data.get("total") or 0)

    async def list_folders(self) -> list[dict[str, Any]]:
        data = self._json(await self._get("/api/folders"))
        return list(data.get("items") or [])

    async def list_characters(self) -> list[dict[str, Any]]:
        data = self._json(await self._get("/api/characters"))
        return list(data.get("items") or [])

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
