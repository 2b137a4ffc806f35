"""
Auto-channel engine — gives every user in a monitored channel a private one.

Lifecycle:
  BOOTSTRAPPING  nickname, whoami, serverinfo, optional event registration
  POLLING        wait (event or poll interval) → scan, repeated
  TERMINATED     logout attempted on every exit path

Wait phase outcomes:
  Terminate          → leave the loop
  Update (self)      → ignored
  Update (other)     → scan now
  DeleteChannel      → forget the requester's cache entries, ack, scan now
  ShouldRefresh      → remember to scan on the next timer tick
  timer tick         → keepalive, mute porter, scan only if a refresh is due

Scan phase, per candidate client:
  cache hit  → move into the cached channel
  cache miss → create "<nick>'s channel" under the client's channel, grant
               group + permissions (best effort), move the client, move the
               engine back out, remember the channel
  move fails with "invalid channel" → drop the cache entry, rescan at once

The loop owns the QuerySession exclusively. Everything else reaches it
through an AutoChannelHandle.
"""

from __future__ import annotations

import asyncio
import uuid
from enum import Enum
from typing import TYPE_CHECKING

from autochannel.core.config import DEFAULT_CHANNEL_PERMISSIONS
from autochannel.core.logging import context_logger
from autochannel.core.metrics import metrics
from autochannel.engine.events import (
    AutoChannelEvent,
    DeleteChannel,
    EngineState,
    ShouldRefresh,
    Terminate,
    Update,
)
from autochannel.engine.handle import AutoChannelHandle, EventChannel
from autochannel.engine.mute_porter import run_mute_porter
from autochannel.query import codec
from autochannel.query.errors import (
    CHANNEL_NAME_IN_USE,
    INVALID_CHANNEL_ID,
    ProtocolError,
    QueryError,
    TransportError,
)
from autochannel.query.types import ClientBasicInfo

if TYPE_CHECKING:
    from autochannel.core.config import AutoChannelConfig
    from autochannel.messaging.queue import PrivateMessageQueue
    from autochannel.query.session import QuerySession
    from autochannel.query.types import Client, ServerInfo, WhoAmI
    from autochannel.state.snapshot import SnapshotStore
    from autochannel.storage.kv import KVMap


DELETE_ACK_MESSAGE = "Received."


class EngineFatalError(RuntimeError):
    """The session cannot continue safely."""


class SessionBootstrapError(EngineFatalError):
    """Identity or server information could not be established."""


class _Wait(Enum):
    STOP = "stop"
    SKIP = "skip"
    SCAN = "scan"


def build_cache_key(client_database_id: int, server_id: str, channel_id: int) -> str:
    return f"ts_autochannel_{client_database_id}_{server_id}_{channel_id}"


class AutoChannelEngine:
    """Event loop driving private channel provisioning for one session."""

    def __init__(
        self,
        session: "QuerySession",
        kv_map: "KVMap",
        messages: "PrivateMessageQueue",
        config: "AutoChannelConfig",
        thread_id: str = "auto-channel",
        snapshot: "SnapshotStore | None" = None,
    ) -> None:
        self._session = session
        self._kv = kv_map
        self._messages = messages
        self._thread_id = thread_id
        self._log = context_logger(__name__, thread_id=thread_id)
        self._snapshot = snapshot

        server = config.server
        self._monitor_channels: tuple[int, ...] = tuple(server.channels)
        self._privilege_group = server.privilege_group_id
        self._channel_permissions = server.channel_permissions
        self._nickname = server.nickname
        self._poll_interval = server.poll_interval
        self._max_name_attempts = max(1, server.max_name_attempts)
        self._register_events = server.register_events
        self._moved_message = config.message.move_to_channel
        self._mute_porter = config.mute_porter

        self._events = EventChannel()
        self._state = EngineState.BOOTSTRAPPING
        self._who_am_i: WhoAmI | None = None
        self._server_info: ServerInfo | None = None

        # Loop control: set by ShouldRefresh, honoured on the next timer tick.
        self._should_refresh = False
        # Loop control: skip the next wait and scan immediately.
        self._rescan_now = True

    # ─── Public API ───────────────────────────────────────────

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def monitor_channels(self) -> tuple[int, ...]:
        return self._monitor_channels

    def handle(self) -> AutoChannelHandle:
        return AutoChannelHandle(self._monitor_channels, self._events)

    async def run(self) -> None:
        """Run until Terminate or a fatal error. Always attempts a logout."""
        try:
            await self._bootstrap()
            self._state = EngineState.POLLING
            await self._poll_loop()
        finally:
            self._events.close()
            self._state = EngineState.TERMINATED
            await self._logout()

    # ─── Bootstrapping ────────────────────────────────────────

    async def _bootstrap(self) -> None:
        try:
            await self._session.change_nickname(self._nickname)
            self._who_am_i = await self._session.who_am_i()
            self._server_info = await self._session.server_info()
            if self._register_events:
                await self._session.register_observer_events()
                await self._session.register_channel_events()
                self._session.transport.set_notification_callback(self._on_notification)
        except QueryError as e:
            raise SessionBootstrapError(f"Bootstrap failed: {e}") from e

        self._log.info(
            "Connected", extra={"client_id": self._who_am_i.client_id}
        )
        self._log.debug("Monitor: %d", len(self._monitor_channels))

    # ─── Poll loop ────────────────────────────────────────────

    async def _poll_loop(self) -> None:
        while True:
            if self._rescan_now:
                self._rescan_now = False
            else:
                outcome = await self._wait()
                if outcome is _Wait.STOP:
                    break
                if outcome is _Wait.SKIP:
                    continue
            await self._scan()

    async def _wait(self) -> _Wait:
        try:
            event = await asyncio.wait_for(
                self._events.get(), timeout=self._poll_interval
            )
        except asyncio.TimeoutError:
            return await self._on_tick()
        return await self._dispatch(event)

    async def _dispatch(self, event: AutoChannelEvent) -> _Wait:
        if isinstance(event, Terminate):
            self._log.info("Terminate requested")
            return _Wait.STOP
        if isinstance(event, Update):
            if event.info.client_id == self._who_am_i.client_id:
                return _Wait.SKIP
            return _Wait.SCAN
        if isinstance(event, DeleteChannel):
            await self._forget_channels(event.requester, event.unique_id)
            return _Wait.SCAN
        if isinstance(event, ShouldRefresh):
            self._should_refresh = True
            return _Wait.SKIP
        raise TypeError(f"Unknown auto channel event: {event!r}")

    async def _on_tick(self) -> _Wait:
        try:
            await self._session.keepalive()
        except QueryError as e:
            self._log.error(
                "Got error while doing keep alive: %s", e, extra=_error_context(e)
            )

        if self._mute_porter.enable:
            await run_mute_porter(self._session, self._mute_porter, self._thread_id)

        return _Wait.SCAN if self._should_refresh else _Wait.SKIP

    async def _forget_channels(self, requester: int, unique_id: str) -> None:
        try:
            result = await self._session.database_id_from_uid(unique_id)
        except QueryError as e:
            raise EngineFatalError(f"Got error while query {unique_id}: {e}") from e

        for channel_id in self._monitor_channels:
            key = build_cache_key(
                result.client_database_id,
                self._server_info.virtual_server_unique_identifier,
                channel_id,
            )
            try:
                await self._kv.delete(key)
                self._log.debug("Deleted %s", key, extra={"channel_id": channel_id})
            except Exception as e:
                self._log.error(
                    "Got error while delete from cache: %s",
                    e,
                    extra={"channel_id": channel_id},
                )

        if not await self._messages.enqueue(requester, DELETE_ACK_MESSAGE):
            self._log.error(
                "Got error in request send message", extra={"client_id": requester}
            )

    # ─── Scan ─────────────────────────────────────────────────

    async def _scan(self) -> None:
        try:
            clients = await self._session.list_clients()
        except QueryError as e:
            self._log.error(
                "Got error while query clients: %s", e, extra=_error_context(e)
            )
            return

        metrics.gauge_set("engine.clients.seen", len(clients))
        for client in clients:
            if not self._is_candidate(client):
                continue
            await self._process_client(client)

        if self._snapshot is not None and self._snapshot.enabled():
            try:
                channels = await self._session.list_channels()
            except QueryError as e:
                self._log.warning(
                    "Got error while query channels: %s", e, extra=_error_context(e)
                )
            else:
                self._snapshot.update(channels, clients)

        self._should_refresh = False

    def _is_candidate(self, client: "Client") -> bool:
        if client.client_id == self._who_am_i.client_id:
            return False
        if client.client_database_id == self._who_am_i.client_database_id:
            return False
        if client.channel_id not in self._monitor_channels:
            return False
        return client.client_is_user()

    async def _lookup(self, key: str) -> int | None:
        raw = await self._kv.get(key)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            self._log.error("Unable to parse result: %r", raw)
            return None

    async def _process_client(self, client: "Client") -> None:
        key = build_cache_key(
            client.client_database_id,
            self._server_info.virtual_server_unique_identifier,
            client.channel_id,
        )
        context = {"client_id": client.client_id}

        cached = await self._lookup(key)
        create_new = cached is None
        if create_new:
            metrics.inc("engine.cache.miss")
            target_channel = await self._provision(client)
            if target_channel is None:
                return
        else:
            metrics.inc("engine.cache.hit")
            target_channel = cached
        context["channel_id"] = target_channel

        try:
            await self._session.move_client(client.client_id, target_channel)
        except ProtocolError as e:
            if e.code == INVALID_CHANNEL_ID:
                self._log.info(
                    "Channel is gone, dropping %s", key, extra={**context, "code": e.code}
                )
                await self._kv.delete(key)
                metrics.inc("engine.cache.stale")
                self._rescan_now = True
                return
            self._log.error(
                "Got error while move client: %s", e, extra={**context, "code": e.code}
            )
            return
        except QueryError as e:
            self._log.error("Got error while move client: %s", e, extra=context)
            return

        metrics.inc("engine.client.moved")
        if not await self._messages.enqueue(client.client_id, self._moved_message):
            self._log.warning("Send message request fail", extra=context)

        if create_new:
            try:
                await self._session.move_client(
                    self._who_am_i.client_id, client.channel_id
                )
            except QueryError as e:
                raise EngineFatalError(f"Unable move self out of channel: {e}") from e
            await self._kv.set(key, str(target_channel))

        self._log.info("Move %s", client.client_nickname, extra=context)

    # ─── Provisioning ─────────────────────────────────────────

    async def _provision(self, client: "Client") -> int | None:
        """Create and configure a private channel. None if creation failed."""
        base_name = f"{client.client_nickname}'s channel"
        channel_id = await self._create_channel(base_name, client.channel_id)
        if channel_id is None:
            return None
        metrics.inc("engine.channel.created")
        context = {"client_id": client.client_id, "channel_id": channel_id}

        try:
            await self._session.set_client_channel_group(
                client.client_database_id, channel_id, self._privilege_group
            )
        except QueryError as e:
            self._log.error(
                "Got error while set client channel group: %s",
                e,
                extra={**context, **_error_context(e)},
            )

        try:
            await self._session.add_channel_permissions(
                channel_id, DEFAULT_CHANNEL_PERMISSIONS
            )
        except QueryError as e:
            self._log.error(
                "Got error while set default channel permissions: %s",
                e,
                extra={**context, **_error_context(e)},
            )

        permissions = self._channel_permissions.get(client.channel_id)
        if permissions:
            try:
                await self._session.add_channel_permissions(channel_id, permissions)
            except QueryError as e:
                self._log.error(
                    "Got error while set channel permissions: %s",
                    e,
                    extra={**context, **_error_context(e)},
                )

        return channel_id

    async def _create_channel(self, base_name: str, parent_id: int) -> int | None:
        """Create a channel, appending "1" while the name is taken.

        After max_name_attempts collisions a random suffix is tried once.
        """
        name = base_name
        for _ in range(self._max_name_attempts):
            try:
                created = await self._session.create_channel(name, parent_id)
            except QueryError as e:
                if isinstance(e, ProtocolError) and e.code == CHANNEL_NAME_IN_USE:
                    self._log.debug("Name %r taken", name)
                    name += "1"
                    continue
                self._log.error(
                    "Got error while create %r channel: %s",
                    name,
                    e,
                    extra={"channel_id": parent_id, **_error_context(e)},
                )
                return None
            self._log.debug(
                "Created %r", name, extra={"channel_id": created.channel_id}
            )
            return created.channel_id

        name = f"{base_name} {uuid.uuid4().hex[:8]}"
        try:
            created = await self._session.create_channel(name, parent_id)
        except QueryError as e:
            self._log.error(
                "Giving up on channel for %r: %s",
                base_name,
                e,
                extra={"channel_id": parent_id, **_error_context(e)},
            )
            return None
        return created.channel_id

    # ─── Server notifications ─────────────────────────────────

    def _on_notification(self, line: str) -> None:
        """Turn client enter/move notifications into engine events."""
        name, _, rest = line.partition(" ")
        if name not in ("notifycliententerview", "notifyclientmoved"):
            return
        fields = codec.parse_fields(rest)
        try:
            info = ClientBasicInfo(
                client_id=int(fields["clid"]),
                channel_id=int(fields["ctid"]),
                client_database_id=int(fields.get("client_database_id", "0")),
                client_nickname=fields.get("client_nickname", ""),
            )
        except (KeyError, ValueError):
            self._log.debug("Ignoring malformed %s", name)
            return

        if info.channel_id in self._monitor_channels:
            self._events.put_nowait(Update(info))
        else:
            self._events.put_nowait(ShouldRefresh())

    # ─── Shutdown ─────────────────────────────────────────────

    async def _logout(self) -> None:
        try:
            await self._session.logout()
        except (QueryError, TransportError) as e:
            self._log.warning("Logout failed: %s", e)
        else:
            self._log.info("Logged out")


def _error_context(error: QueryError) -> dict[str, int]:
    return {"code": error.code} if error.code >= 0 else {}
