"""Event bus client used to announce mutations and to receive them.

Publishing is best effort: a realtime failure is logged and never rolls back
the mutation that triggered it.  Without a configured transport the client is
disabled and every call is a silent no-op.
"""
from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Union

from avatar_studio.core.errors import TransportUnavailable
from avatar_studio.domain import DomainEvent, parse_event
from avatar_studio.domain.events import now_ms

from .transports import PubSubTransport, Unsubscribe

log = logging.getLogger(__name__)

EventHandler = Callable[[Any], Union[Awaitable[None], None]]


def _noop() -> None:
    return None


class EventBusClient:
    def __init__(self, transport: PubSubTransport | None = None) -> None:
        self._transport = transport
        self._connected = False

    @property
    def enabled(self) -> bool:
        return self._transport is not None

    @property
    def connected(self) -> bool:
        return self._connected

    def require_transport(self) -> PubSubTransport:
        if self._transport is None:
            raise TransportUnavailable()
        return self._transport

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    async def connect(self) -> None:
        if self._transport is None:
            log.info("Realtime transport not configured; running without realtime updates")
            return
        if self._connected:
            return
        try:
            await self._transport.connect()
        except Exception:
            log.exception("Realtime transport failed to connect")
            return
        self._connected = True

    async def close(self) -> None:
        if self._transport is None or not self._connected:
            return
        self._connected = False
        try:
            await self._transport.close()
        except Exception:
            log.exception("Realtime transport failed to close cleanly")

    # ------------------------------------------------------------------
    # publish
    # ------------------------------------------------------------------
    async def publish(self, channel: str, name: str, data: dict[str, Any]) -> bool:
        """Hand a message to the transport; return whether it was accepted."""

        if self._transport is None:
            log.debug("Skipping publish %s:%s, realtime disabled", channel, name)
            return False
        body = dict(data)
        body.setdefault("timestamp", now_ms())
        try:
            await self._transport.publish(channel, name, body)
        except Exception as exc:
            log.warning("Failed to publish %s:%s: %s", channel, name, exc)
            return False
        log.debug("Published %s:%s id=%s", channel, name, body.get("id"))
        return True

    async def publish_event(self, event: DomainEvent) -> bool:
        return await self.publish(event.channel, event.name, event.payload())

    # ------------------------------------------------------------------
    # subscribe
    # ------------------------------------------------------------------
    def subscribe(self, channel: str, name: str, handler: EventHandler) -> Unsubscribe:
        """Register ``handler`` for typed events; returns an unsubscribe callable.

        Handler failures are logged and the subscription stays active.
        """

        if self._transport is None:
            return _noop

        async def deliver(msg_channel: str, msg_name: str, data: dict[str, Any]) -> None:
            try:
                event = parse_event(msg_channel, msg_name, data)
            except ValueError as exc:
                log.warning("Dropping malformed %s:%s event: %s", msg_channel, msg_name, exc)
                return
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                log.exception("Handler for %s:%s failed on id=%s", msg_channel, msg_name, event.id)

        return self._transport.subscribe(channel, name, deliver)
