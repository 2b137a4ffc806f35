"""
Query transport — one live TCP stream to the ServerQuery port.

Owns framing and the half-duplex discipline:
- write() sends one terminated command line
- read() returns what has arrived so far (up to a short read or a full
  response); None when nothing arrives within the read timeout
- request() writes under a lock, so at most one exchange is in flight, and
  buffers reads until the text ends with a status line

A read that timed out leaves the exchange unresolved: the server may still
answer. The next request() drains that late answer before writing.

Lines starting with ``notify`` are server events, not part of any response.
They are split off and handed to the optional notification callback.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from typing import Callable

from autochannel.query import codec
from autochannel.query.errors import ResponseTimeout, TransportError

logger = logging.getLogger(__name__)

BUFFER_SIZE = 512
DEFAULT_READ_TIMEOUT = 2.0
BANNER_LINES = 2

NotificationCallback = Callable[[str], None]


class QueryTransport:
    """Byte-stream connection speaking the ServerQuery line protocol."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._read_timeout = read_timeout
        self._lock = asyncio.Lock()
        self._stale = False
        self._closed = False
        self._on_notification: NotificationCallback | None = None
        # Persists across reads so a multi-byte character split between
        # segments decodes correctly.
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @classmethod
    async def connect(
        cls,
        host: str,
        port: int,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
    ) -> QueryTransport:
        """Open the stream and consume the greeting banner."""
        try:
            reader, writer = await asyncio.open_connection(host, port)
        except OSError as e:
            raise TransportError(f"Unable to connect to {host}:{port}: {e}") from e

        transport = cls(reader, writer, read_timeout=read_timeout)
        banner = await transport._read_banner()
        if banner is None:
            logger.warning("No greeting received from %s:%d", host, port)
        else:
            logger.debug("Connected to %s:%d", host, port)
        return transport

    def set_notification_callback(self, callback: NotificationCallback | None) -> None:
        self._on_notification = callback

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, command: str) -> None:
        """Send one command line. The terminator is appended if missing."""
        if self._closed:
            raise TransportError("Connection already closed")
        payload = codec.frame(command)
        try:
            self._writer.write(payload)
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            self._closed = True
            raise TransportError(f"Got error while send data: {e}") from e

    async def read(self) -> str | None:
        """Read whatever the server has sent so far.

        Stops on a short read or once a whole response is buffered, so the
        result may be only part of a response. Returns None when no bytes
        arrive within the read timeout. Raises TransportError when the peer
        closed the stream.
        """
        buffer = ""
        while True:
            try:
                data = await asyncio.wait_for(
                    self._reader.read(BUFFER_SIZE), timeout=self._read_timeout
                )
            except asyncio.TimeoutError:
                return None
            except (ConnectionError, OSError) as e:
                self._closed = True
                raise TransportError(f"Got error while read data: {e}") from e

            if not data:
                self._closed = True
                raise TransportError("Connection closed by server")

            buffer += self._decoder.decode(data)
            if len(data) < BUFFER_SIZE or codec.is_complete(buffer):
                return buffer

    async def request(self, command: str) -> str:
        """Write a command and read until its status line arrives.

        Raises:
            ResponseTimeout: the server did not answer in time
            TransportError: the stream broke
        """
        async with self._lock:
            if self._stale:
                await self._drain()
            await self.write(command)
            buffer = await self._read_response()
            if buffer is None:
                self._stale = True
                raise ResponseTimeout(command.split(" ", 1)[0])
            response, notifications = codec.split_notifications(buffer)
            self._dispatch(notifications)
            return response

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug("Error while closing query connection: %s", e)

    async def _read_banner(self) -> str | None:
        """The greeting is two lines (protocol tag, welcome text)."""
        buffer = ""
        while buffer.count(codec.TERMINATOR) < BANNER_LINES:
            content = await self.read()
            if content is None:
                return buffer or None
            buffer += content
        return buffer

    async def _read_response(self) -> str | None:
        """Accumulate raw text until it ends with a status line.

        Segment boundaries may fall anywhere, even inside a row or the status
        line itself, so nothing is split until the buffer is complete.
        None if the server went quiet first.
        """
        buffer = ""
        while not codec.is_complete(buffer):
            content = await self.read()
            if content is None:
                return None
            buffer += content
        return buffer

    async def _drain(self) -> None:
        """Discard the late answer of an abandoned exchange."""
        self._stale = False
        content = await self._read_response()
        if content is None:
            return
        _, notifications = codec.split_notifications(content)
        self._dispatch(notifications)
        logger.debug("Drained stale response (%d chars)", len(content))

    def _dispatch(self, notifications: list[str]) -> None:
        if not notifications:
            return
        if self._on_notification is None:
            logger.debug("Dropping %d server notification(s)", len(notifications))
            return
        for line in notifications:
            try:
                self._on_notification(line)
            except Exception as e:
                logger.error("Notification callback failed: %s", e)
