"""
Auto-channel runner — wires config, cache, query sessions and the engine.

Run: uv run autochannel   (or: python -m autochannel.main)

Two query connections are opened: one owned by the engine, one used by the
message dispatcher so private messages never interleave with engine requests.
A fatal session error exits with status 1; whatever supervises the process
decides whether to restart it.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import uvicorn
from fastapi import FastAPI

from autochannel.core.config import AutoChannelConfig
from autochannel.core.logging import setup_logging
from autochannel.engine.auto_channel import AutoChannelEngine, EngineFatalError
from autochannel.engine.handle import AutoChannelHandle, EngineClosedError
from autochannel.http.control import create_control_router
from autochannel.messaging.queue import MessageDispatcher, PrivateMessageQueue
from autochannel.query.errors import QueryError, TransportError
from autochannel.query.session import QuerySession
from autochannel.state.snapshot import SnapshotStore
from autochannel.storage.kv import create_kv_map

logger = logging.getLogger("autochannel")


async def _open_session(config: AutoChannelConfig) -> QuerySession:
    q = config.query
    return await QuerySession.open(
        q.host,
        q.port,
        q.user,
        q.password,
        q.server_id,
        read_timeout=q.read_timeout,
    )


async def _request_terminate(handle: AutoChannelHandle) -> None:
    try:
        await handle.send_terminate()
    except EngineClosedError:
        logger.debug("Engine already stopped, ignoring signal")


def _on_signal(handle: AutoChannelHandle, pending: set[asyncio.Task]) -> None:
    """Signal handlers cannot await; the task is held until it finishes."""
    task = asyncio.ensure_future(_request_terminate(handle))
    pending.add(task)
    task.add_done_callback(pending.discard)


async def run(config: AutoChannelConfig) -> int:
    """Run one session to completion. Returns the process exit code."""
    if not config.server.channels:
        logger.error("No monitored channels configured (AUTOCHANNEL_CHANNELS)")
        return 2

    kv_map = create_kv_map(config.storage.backend, config.storage.path)
    await kv_map.start()

    messages = PrivateMessageQueue()
    snapshot = SnapshotStore(enabled=config.control.enabled)
    session: QuerySession | None = None
    message_session: QuerySession | None = None
    server: uvicorn.Server | None = None
    background: list[asyncio.Task] = []
    signal_tasks: set[asyncio.Task] = set()

    try:
        try:
            session = await _open_session(config)
            message_session = await _open_session(config)
        except (QueryError, TransportError) as e:
            logger.error("Unable to open query session: %s", e)
            return 1

        engine = AutoChannelEngine(
            session, kv_map, messages, config, snapshot=snapshot
        )
        handle = engine.handle()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _on_signal, handle, signal_tasks)
            except NotImplementedError:
                pass  # Windows

        dispatcher = MessageDispatcher(message_session, messages)
        background.append(asyncio.create_task(dispatcher.run()))

        if config.control.enabled:
            app = FastAPI(title="autochannel")
            app.include_router(
                create_control_router(handle, lambda: engine.state, snapshot)
            )
            server = uvicorn.Server(
                uvicorn.Config(
                    app,
                    host=config.control.host,
                    port=config.control.port,
                    log_config=None,
                )
            )
            background.append(asyncio.create_task(server.serve()))

        try:
            await engine.run()
        except (EngineFatalError, TransportError) as e:
            logger.error("Auto channel session ended: %s", e)
            return 1
        return 0
    finally:
        messages.close()
        if signal_tasks:
            await asyncio.gather(*signal_tasks)
        if server is not None:
            server.should_exit = True
        for task in background:
            try:
                await asyncio.wait_for(task, timeout=5.0)
            except asyncio.TimeoutError:
                task.cancel()
            except (QueryError, TransportError) as e:
                logger.warning("Background task failed: %s", e)
        for s in (session, message_session):
            if s is not None:
                await s.close()
        await kv_map.stop()


def main() -> None:
    setup_logging()
    config = AutoChannelConfig.from_env()
    sys.exit(asyncio.run(run(config)))


if __name__ == "__main__":
    main()
