"""
Shared fixtures for autochannel tests.

Provides a mock QuerySession with sane defaults (identity, server info,
successful moves) and config builders. No real ServerQuery server needed.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from autochannel.core.config import (
    AutoChannelConfig,
    MessageConfig,
    MutePorterConfig,
    ServerConfig,
)
from autochannel.query.types import Client, CreatedChannel, ServerInfo, WhoAmI

SELF_CLIENT_ID = 99
SELF_DATABASE_ID = 50
SERVER_UID = "srv-uid"


def make_client(
    client_id: int,
    channel_id: int,
    database_id: int,
    nickname: str,
    client_type: int = 0,
) -> Client:
    return Client(
        client_id=client_id,
        channel_id=channel_id,
        client_database_id=database_id,
        client_nickname=nickname,
        client_type=client_type,
    )


def make_session(clients: list[Client] | None = None) -> AsyncMock:
    """Mock QuerySession: bootstrap succeeds, every write succeeds."""
    session = AsyncMock()
    session.transport = MagicMock()
    session.who_am_i = AsyncMock(
        return_value=WhoAmI(client_id=SELF_CLIENT_ID, client_database_id=SELF_DATABASE_ID)
    )
    session.server_info = AsyncMock(
        return_value=ServerInfo(virtual_server_unique_identifier=SERVER_UID)
    )
    session.list_clients = AsyncMock(return_value=list(clients or []))
    session.list_channels = AsyncMock(return_value=[])
    session.create_channel = AsyncMock(return_value=CreatedChannel(channel_id=42))
    session.move_client = AsyncMock(return_value=None)
    session.client_info = AsyncMock(return_value=None)
    return session


def make_config(
    channels: tuple[int, ...] = (10,),
    channel_permissions: dict | None = None,
    poll_interval: float = 0.01,
    max_name_attempts: int = 16,
    mute_porter: MutePorterConfig | None = None,
) -> AutoChannelConfig:
    return AutoChannelConfig(
        server=ServerConfig(
            channels=channels,
            privilege_group_id=5,
            channel_permissions=channel_permissions or {},
            nickname="auto channel",
            poll_interval=poll_interval,
            max_name_attempts=max_name_attempts,
        ),
        message=MessageConfig(move_to_channel="Moved."),
        mute_porter=mute_porter or MutePorterConfig(),
    )


@pytest.fixture
def messages() -> AsyncMock:
    queue = AsyncMock()
    queue.enqueue = AsyncMock(return_value=True)
    return queue
