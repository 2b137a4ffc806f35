"""
Query session — typed operations over one QueryTransport.

One method per ServerQuery command the automation needs. Every method either
returns a typed record/collection or raises:

- ProtocolError (nonzero status; callers branch on .code)
- ResponseTimeout / EmptyResponseError / RowParseError (recoverable)
- TransportError (stream broke; fatal)
"""

from __future__ import annotations

import logging
from typing import Iterable, TypeVar

from autochannel.core.metrics import metrics
from autochannel.query import codec
from autochannel.query.errors import EmptyResponseError, ProtocolError
from autochannel.query.transport import QueryTransport
from autochannel.query.types import (
    Channel,
    Client,
    ClientInfo,
    CreatedChannel,
    DatabaseId,
    QueryRecord,
    ServerInfo,
    WhoAmI,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=QueryRecord)


class QuerySession:
    """Typed API for one authenticated ServerQuery connection."""

    def __init__(self, transport: QueryTransport) -> None:
        self._transport = transport

    @property
    def transport(self) -> QueryTransport:
        return self._transport

    @classmethod
    async def open(
        cls,
        host: str,
        port: int,
        user: str,
        password: str,
        server_id: int,
        read_timeout: float = 2.0,
    ) -> QuerySession:
        """Connect, authenticate and select the virtual server."""
        transport = await QueryTransport.connect(host, port, read_timeout=read_timeout)
        session = cls(transport)
        try:
            await session.login(user, password)
            await session.select_server(server_id)
        except BaseException:
            await transport.close()
            raise
        return session

    # ─── Exchange helpers ─────────────────────────────────────

    async def _basic(self, command: str) -> None:
        content = await self._transport.request(command)
        self._decode(content, command)

    async def _query(self, command: str, record_type: type[T]) -> list[T] | None:
        content = await self._transport.request(command)
        body = self._decode(content, command)
        return codec.parse_records(body, record_type)

    async def _query_all(self, command: str, record_type: type[T]) -> list[T]:
        """Like _query, but an empty body is an error."""
        records = await self._query(command, record_type)
        if records is None:
            raise EmptyResponseError(f"no result line for {command.split(' ', 1)[0]}")
        return records

    async def _query_one(self, command: str, record_type: type[T]) -> T | None:
        records = await self._query(command, record_type)
        return records[0] if records else None

    @staticmethod
    def _decode(content: str, command: str) -> str:
        try:
            return codec.decode_status(content)
        except ProtocolError as e:
            metrics.inc("query.protocol_error", labels={"code": e.code})
            logger.debug("%s failed: %s", command.split(" ", 1)[0], e)
            raise

    # ─── Session lifecycle ────────────────────────────────────

    async def login(self, user: str, password: str) -> None:
        await self._basic(f"login {codec.escape(user)} {codec.escape(password)}")

    async def select_server(self, server_id: int) -> None:
        await self._basic(f"use {server_id}")

    async def logout(self) -> None:
        await self._basic("quit")

    async def close(self) -> None:
        await self._transport.close()

    async def keepalive(self) -> None:
        """Lightweight round trip that keeps the idle connection alive."""
        await self.who_am_i()

    async def register_observer_events(self) -> None:
        await self._basic("servernotifyregister event=server")
        await self._basic("servernotifyregister event=textprivate")

    async def register_channel_events(self) -> None:
        # Only the first channel subscription per connection counts, so
        # subscribe to channel 0 (everything) once.
        await self._basic("servernotifyregister event=channel id=0")

    # ─── Identity ─────────────────────────────────────────────

    async def who_am_i(self) -> WhoAmI:
        return (await self._query_all("whoami", WhoAmI))[0]

    async def server_info(self) -> ServerInfo:
        return (await self._query_all("serverinfo", ServerInfo))[0]

    async def change_nickname(self, nickname: str) -> None:
        await self._basic(f"clientupdate client_nickname={codec.escape(nickname)}")

    async def database_id_from_uid(self, unique_id: str) -> DatabaseId:
        command = f"clientgetdbidfromuid cluid={codec.escape(unique_id)}"
        return (await self._query_all(command, DatabaseId))[0]

    # ─── Clients & channels ───────────────────────────────────

    async def list_clients(self) -> list[Client]:
        return await self._query_all("clientlist", Client)

    async def list_channels(self) -> list[Channel]:
        return await self._query_all("channellist", Channel)

    async def client_info(self, client_id: int) -> ClientInfo | None:
        return await self._query_one(f"clientinfo clid={client_id}", ClientInfo)

    async def create_channel(self, name: str, parent_id: int) -> CreatedChannel:
        command = (
            f"channelcreate channel_name={codec.escape(name)} "
            f"cpid={parent_id} channel_codec_quality=10"
        )
        return (await self._query_all(command, CreatedChannel))[0]

    async def move_client(self, client_id: int, channel_id: int) -> None:
        await self._basic(f"clientmove clid={client_id} cid={channel_id}")

    async def set_client_channel_group(
        self, client_database_id: int, channel_id: int, group_id: int
    ) -> None:
        await self._basic(
            f"setclientchannelgroup cgid={group_id} cid={channel_id} "
            f"cldbid={client_database_id}"
        )

    async def add_channel_permissions(
        self, channel_id: int, permissions: Iterable[tuple[int, int]]
    ) -> None:
        await self._basic(
            f"channeladdperm cid={channel_id} {codec.join_permissions(permissions)}"
        )

    # ─── Misc ─────────────────────────────────────────────────

    async def send_text_message(self, client_id: int, text: str) -> None:
        await self._basic(
            f"sendtextmessage targetmode=1 target={client_id} msg={codec.escape(text)}"
        )

    async def delete_ban(self, ban_id: int) -> None:
        await self._basic(f"bandel banid={ban_id}")
