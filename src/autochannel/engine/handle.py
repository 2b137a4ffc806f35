"""
Engine handle — how the rest of the process talks to a running engine.

Callers never touch the query connection. They hold an AutoChannelHandle and
push events through it. A handle created before any engine exists is unbound:
every send returns False and nothing happens, so callers can use handles
uniformly whether or not a connection is up.
"""

from __future__ import annotations

import asyncio
import logging

from autochannel.engine.events import (
    AutoChannelEvent,
    DeleteChannel,
    ShouldRefresh,
    Terminate,
    Update,
)
from autochannel.query.types import ClientBasicInfo

logger = logging.getLogger(__name__)


class EngineClosedError(RuntimeError):
    """The engine behind a bound handle has stopped consuming events."""


class EventChannel:
    """asyncio.Queue with an explicit closed state, owned by the engine."""

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue[AutoChannelEvent] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    async def put(self, event: AutoChannelEvent) -> None:
        if self._closed:
            raise EngineClosedError("Got error while send event to auto channel engine")
        await self._queue.put(event)

    def put_nowait(self, event: AutoChannelEvent) -> None:
        """Used by the engine itself; events after close are dropped."""
        if self._closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Event channel full, dropping %r", event)

    async def get(self) -> AutoChannelEvent:
        return await self._queue.get()

    def empty(self) -> bool:
        return self._queue.empty()


class AutoChannelHandle:
    """Caller-facing proxy for a (possibly absent) auto-channel engine."""

    def __init__(
        self,
        channel_ids: list[int] | tuple[int, ...],
        channel: EventChannel | None = None,
    ) -> None:
        self._channel_ids = frozenset(channel_ids)
        self._channel = channel

    @classmethod
    def unbound(cls, channel_ids: list[int] | tuple[int, ...] = ()) -> AutoChannelHandle:
        return cls(channel_ids, None)

    @property
    def valid(self) -> bool:
        """True iff wired to an engine."""
        return self._channel is not None

    @property
    def channel_ids(self) -> frozenset[int]:
        return self._channel_ids

    async def _send_signal(self, event: AutoChannelEvent) -> bool:
        if self._channel is None:
            return False
        await self._channel.put(event)
        return True

    async def send_terminate(self) -> bool:
        return await self._send_signal(Terminate())

    async def send_delete_channel(self, requester: int, unique_id: str) -> bool:
        return await self._send_signal(DeleteChannel(requester, unique_id))

    async def send_refresh(self) -> bool:
        return await self._send_signal(ShouldRefresh())

    async def send(self, info: ClientBasicInfo) -> bool:
        """Forward client activity.

        Activity in a monitored channel becomes an Update. Anything else only
        asks the engine to refresh, and reports False.
        """
        if self._channel is None:
            return False
        if info.channel_id not in self._channel_ids:
            await self._send_signal(ShouldRefresh())
            return False
        return await self._send_signal(Update(info))
