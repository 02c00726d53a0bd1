"""Publish/subscribe transports behind the event bus client."""
from __future__ import annotations

import asyncio
import copy
import json
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Protocol
from urllib.parse import quote

import httpx

log = logging.getLogger(__name__)

MessageCallback = Callable[[str, str, dict[str, Any]], Awaitable[None]]
Unsubscribe = Callable[[], None]


class PubSubTransport(Protocol):
    """Contract for realtime transports: publish and subscribe by channel + name."""

    async def connect(self) -> None: ...

    async def publish(self, channel: str, name: str, data: dict[str, Any]) -> None: ...

    def subscribe(self, channel: str, name: str, callback: MessageCallback) -> Unsubscribe: ...

    async def close(self) -> None: ...


class _Subscriptions:
    def __init__(self) -> None:
        self._callbacks: dict[tuple[str, str], list[MessageCallback]] = defaultdict(list)

    def add(self, channel: str, name: str, callback: MessageCallback) -> Unsubscribe:
        key = (channel, name)
        self._callbacks[key].append(callback)

        def unsubscribe() -> None:
            callbacks = self._callbacks.get(key)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)
                if not callbacks:
                    del self._callbacks[key]

        return unsubscribe

    def for_message(self, channel: str, name: str) -> list[MessageCallback]:
        return list(self._callbacks.get((channel, name), ()))

    def channels(self) -> set[str]:
        return {channel for channel, _ in self._callbacks}


class InMemoryTransport:
    """Process-local fan-out.

    Delivery is synchronous with ``publish``: every subscriber has run by the
    time ``publish`` returns, which keeps single-process deployments and tests
    deterministic.  ``history`` records every published message.
    """

    def __init__(self) -> None:
        self._subscriptions = _Subscriptions()
        self.history: list[tuple[str, str, dict[str, Any]]] = []
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def publish(self, channel: str, name: str, data: dict[str, Any]) -> None:
        self.history.append((channel, name, copy.deepcopy(data)))
        for callback in self._subscriptions.for_message(channel, name):
            await callback(channel, name, copy.deepcopy(data))

    def subscribe(self, channel: str, name: str, callback: MessageCallback) -> Unsubscribe:
        return self._subscriptions.add(channel, name, callback)

    async def close(self) -> None:
        self.connected = False

    def published(self, channel: str | None = None, name: str | None = None) -> list[dict[str, Any]]:
        return [
            data
            for msg_channel, msg_name, data in self.history
            if (channel is None or msg_channel == channel) and (name is None or msg_name == name)
        ]


class AblyTransport:
    """Ably over plain HTTP: REST publish and server-sent-events subscribe."""

    def __init__(
        self,
        api_key: str,
        *,
        rest_host: str = "https://rest.ably.io",
        realtime_host: str = "https://realtime.ably.io",
        timeout: float = 10.0,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        key_name, sep, secret = api_key.partition(":")
        if not sep or not key_name or not secret:
            raise ValueError("api_key must look like '<app>.<key>:<secret>'")

        self._api_key = api_key
        self._auth = (key_name, secret)
        self._rest_host = rest_host.rstrip("/")
        self._realtime_host = realtime_host.rstrip("/")
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_delay = max_reconnect_delay
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, read=None))
        self._owns_client = http_client is None
        self._subscriptions = _Subscriptions()
        self._listeners: dict[str, asyncio.Task[None]] = {}
        self._connected = False

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    async def connect(self) -> None:
        self._connected = True
        for channel in self._subscriptions.channels():
            self._ensure_listener(channel)

    async def close(self) -> None:
        self._connected = False
        tasks = list(self._listeners.values())
        self._listeners.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # publish
    # ------------------------------------------------------------------
    async def publish(self, channel: str, name: str, data: dict[str, Any]) -> None:
        response = await self._client.post(
            f"{self._rest_host}/channels/{quote(channel, safe='')}/messages",
            json={"name": name, "data": data},
            auth=self._auth,
        )
        response.raise_for_status()

    # ------------------------------------------------------------------
    # subscribe
    # ------------------------------------------------------------------
    def subscribe(self, channel: str, name: str, callback: MessageCallback) -> Unsubscribe:
        remove = self._subscriptions.add(channel, name, callback)
        if self._connected:
            self._ensure_listener(channel)

        def unsubscribe() -> None:
            remove()
            if channel not in self._subscriptions.channels():
                task = self._listeners.pop(channel, None)
                if task is not None:
                    task.cancel()

        return unsubscribe

    def _ensure_listener(self, channel: str) -> None:
        task = self._listeners.get(channel)
        if task is None or task.done():
            self._listeners[channel] = asyncio.get_running_loop().create_task(self._listen(channel))

    async def _listen(self, channel: str) -> None:
        delay = self._reconnect_delay
        params = {"channels": channel, "v": "1.2", "key": self._api_key, "enveloped": "true"}
        while True:
            try:
                async with self._client.stream(
                    "GET", f"{self._realtime_host}/event-stream", params=params
                ) as response:
                    response.raise_for_status()
                    log.info("Realtime stream open for channel %s", channel)
                    delay = self._reconnect_delay
                    async for line in response.aiter_lines():
                        if line.startswith("data:"):
                            await self._dispatch(channel, line[5:].strip())
            except asyncio.CancelledError:
                raise
            except httpx.HTTPError as exc:
                log.warning("Realtime stream for %s dropped: %s", channel, exc)
            await asyncio.sleep(delay)
            delay = min(delay * 2, self._max_reconnect_delay)

    async def _dispatch(self, channel: str, raw: str) -> None:
        try:
            message = json.loads(raw)
            data = message.get("data")
            if isinstance(data, str) and "json" in str(message.get("encoding") or "json"):
                data = json.loads(data)
        except (ValueError, AttributeError):
            log.warning("Ignoring undecodable realtime message on %s", channel)
            return
        name = str(message.get("name") or "")
        if not isinstance(data, dict):
            data = {}
        for callback in self._subscriptions.for_message(channel, name):
            try:
                await callback(channel, name, data)
            except Exception:
                log.exception("Realtime callback failed for %s:%s", channel, name)
