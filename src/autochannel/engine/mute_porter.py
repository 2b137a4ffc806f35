"""
Mute porter — moves muted clients out of a monitored channel.

Runs on the engine's timer ticks. Each client is handled in isolation: a
failed clientinfo or clientmove is logged and the pass continues.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from autochannel.core.logging import context_logger
from autochannel.core.metrics import metrics
from autochannel.query.errors import QueryError

if TYPE_CHECKING:
    from autochannel.core.config import MutePorterConfig
    from autochannel.query.session import QuerySession


async def run_mute_porter(
    session: "QuerySession",
    config: "MutePorterConfig",
    thread_id: str,
) -> int:
    """Move every muted, non-whitelisted user out of the monitor channel.

    Returns the number of clients moved.
    """
    log = context_logger(__name__, thread_id=thread_id)
    try:
        clients = await session.list_clients()
    except QueryError as e:
        log.error("Unable query clients: %s", e)
        return 0

    moved = 0
    for client in clients:
        if (
            not client.client_is_user()
            or client.channel_id != config.monitor_channel
            or config.check_whitelist(client.client_database_id)
        ):
            continue

        context = {"client_id": client.client_id}
        try:
            info = await session.client_info(client.client_id)
        except QueryError as e:
            log.error(
                "Unable query client information: %s",
                e,
                extra={**context, "code": e.code},
            )
            continue
        if info is None or not info.is_client_muted():
            continue

        context["channel_id"] = config.target_channel
        try:
            await session.move_client(client.client_id, config.target_channel)
        except QueryError as e:
            log.error("Unable move client: %s", e, extra={**context, "code": e.code})
            continue

        moved += 1
        metrics.inc("mute_porter.moved")
        log.info("Moved muted client", extra=context)
    return moved
