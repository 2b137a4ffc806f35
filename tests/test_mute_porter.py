"""Tests for the mute porter pass."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, call

import pytest

from autochannel.core.config import MutePorterConfig
from autochannel.engine.auto_channel import AutoChannelEngine
from autochannel.engine.mute_porter import run_mute_porter
from autochannel.query.errors import ProtocolError
from autochannel.query.types import ClientInfo
from autochannel.storage.kv import MemoryKVMap

from conftest import make_client, make_config, make_session

PORTER = MutePorterConfig(enable=True, monitor_channel=30, target_channel=31, whitelist=(9,))


def _info(muted: bool) -> ClientInfo:
    return ClientInfo(channel_id=30, client_database_id=1, output_muted=muted)


@pytest.mark.asyncio
async def test_moves_only_muted_users():
    muted = make_client(1, 30, 5, "Muted")
    talking = make_client(2, 30, 6, "Talking")
    session = make_session([muted, talking])
    session.client_info = AsyncMock(side_effect=[_info(True), _info(False)])

    moved = await run_mute_porter(session, PORTER, "t")

    assert moved == 1
    session.move_client.assert_awaited_once_with(1, 31)


@pytest.mark.asyncio
async def test_skips_whitelist_other_channels_and_query_clients():
    whitelisted = make_client(1, 30, 9, "Admin")
    elsewhere = make_client(2, 40, 6, "Elsewhere")
    query = make_client(3, 30, 7, "Bot", client_type=1)
    session = make_session([whitelisted, elsewhere, query])
    session.client_info = AsyncMock(return_value=_info(True))

    moved = await run_mute_porter(session, PORTER, "t")

    assert moved == 0
    session.client_info.assert_not_awaited()
    session.move_client.assert_not_awaited()


@pytest.mark.asyncio
async def test_failures_are_isolated_per_client():
    first = make_client(1, 30, 5, "A")
    second = make_client(2, 30, 6, "B")
    third = make_client(3, 30, 7, "C")
    session = make_session([first, second, third])
    session.client_info = AsyncMock(
        side_effect=[ProtocolError(512, "invalid clientID"), _info(True), _info(True)]
    )
    session.move_client = AsyncMock(side_effect=[ProtocolError(768, "gone"), None])

    moved = await run_mute_porter(session, PORTER, "t")

    assert moved == 1
    assert session.move_client.await_args_list == [call(2, 31), call(3, 31)]


@pytest.mark.asyncio
async def test_list_failure_is_not_fatal():
    session = make_session([])
    session.list_clients = AsyncMock(side_effect=ProtocolError(1, "boom"))

    assert await run_mute_porter(session, PORTER, "t") == 0


@pytest.mark.asyncio
async def test_engine_runs_porter_on_timer_ticks(messages):
    muted = make_client(1, 30, 5, "Muted")
    session = make_session([muted])
    session.client_info = AsyncMock(return_value=_info(True))
    engine = AutoChannelEngine(
        session, MemoryKVMap(), messages, make_config(mute_porter=PORTER)
    )

    task = asyncio.create_task(engine.run())
    for _ in range(400):
        if session.move_client.await_count:
            break
        await asyncio.sleep(0.005)
    await engine.handle().send_terminate()
    await asyncio.wait_for(task, timeout=5)

    assert call(1, 31) in session.move_client.await_args_list
