"""
Private message queue — outbound text messages to individual clients.

The engine only enqueues; delivery happens elsewhere so a slow or failing
sendtextmessage never stalls a scan. MessageDispatcher is the stock consumer:
it drains the queue over its own QuerySession.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from autochannel.core.metrics import metrics
from autochannel.query.errors import QueryError

if TYPE_CHECKING:
    from autochannel.query.session import QuerySession

logger = logging.getLogger(__name__)

# Sentinel that stops the dispatcher
_QUEUE_END = object()


@dataclass(frozen=True)
class PrivateMessageRequest:
    client_id: int
    text: str


class PrivateMessageQueue:
    """Bounded queue of PrivateMessageRequest. Never blocks the producer."""

    def __init__(self, maxsize: int = 256) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    async def enqueue(self, client_id: int, text: str) -> bool:
        """Queue a message. Returns False (and logs) when the queue is full."""
        try:
            self._queue.put_nowait(PrivateMessageRequest(client_id, text))
        except asyncio.QueueFull:
            logger.warning("Message queue full, dropping message to %d", client_id)
            metrics.inc("messaging.dropped")
            return False
        return True

    def close(self) -> None:
        try:
            self._queue.put_nowait(_QUEUE_END)
        except asyncio.QueueFull:
            logger.warning("Message queue full while closing")

    def qsize(self) -> int:
        return self._queue.qsize()

    async def get(self) -> PrivateMessageRequest | None:
        """Next request, or None once the queue was closed."""
        item = await self._queue.get()
        if item is _QUEUE_END:
            return None
        return item


class MessageDispatcher:
    """Delivers queued private messages through a dedicated session."""

    def __init__(self, session: "QuerySession", queue: PrivateMessageQueue) -> None:
        self._session = session
        self._queue = queue

    async def run(self) -> None:
        while True:
            request = await self._queue.get()
            if request is None:
                break
            try:
                await self._session.send_text_message(request.client_id, request.text)
                metrics.inc("messaging.sent")
            except QueryError as e:
                logger.warning(
                    "Unable to send message: %s",
                    e,
                    extra={"client_id": request.client_id, "code": e.code},
                )
                metrics.inc("messaging.failed")
        logger.debug("Message dispatcher stopped")
