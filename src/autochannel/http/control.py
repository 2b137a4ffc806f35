"""
Control API — health and event injection for a running engine.

Endpoints:
    GET  /health                           → engine state, handle binding, metrics
    GET  /v1/channels/{id}/clients         → clients seen in a channel on the last scan
    POST /v1/channels/delete               → DeleteChannel(requester, unique_id)
    POST /v1/refresh                       → ShouldRefresh
    POST /v1/terminate                     → Terminate

Event endpoints answer 202 when the event was queued and 409 when the handle
is not bound to a live engine.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from autochannel.core.metrics import metrics
from autochannel.engine.handle import EngineClosedError

if TYPE_CHECKING:
    from autochannel.engine.events import EngineState
    from autochannel.engine.handle import AutoChannelHandle
    from autochannel.state.snapshot import SnapshotStore

logger = logging.getLogger(__name__)


def _delivery(delivered: bool) -> JSONResponse:
    return JSONResponse(
        {"delivered": delivered}, status_code=202 if delivered else 409
    )


def create_control_router(
    handle: "AutoChannelHandle",
    state: "Callable[[], EngineState | None]",
    snapshot: "SnapshotStore | None" = None,
) -> APIRouter:
    """Create the control router around one engine handle."""

    router = APIRouter(tags=["control"])

    @router.get("/health")
    async def health() -> JSONResponse:
        current = state()
        return JSONResponse(
            {
                "status": "ok" if handle.valid else "unbound",
                "engine": current.value if current is not None else None,
                "monitored_channels": sorted(handle.channel_ids),
                "snapshot": snapshot.summary() if snapshot else None,
                "metrics": metrics.snapshot(),
            }
        )

    @router.get("/v1/channels/{channel_id}/clients")
    async def channel_clients(channel_id: int) -> JSONResponse:
        if snapshot is None or not snapshot.enabled():
            return JSONResponse({"error": "snapshot disabled"}, status_code=404)
        clients = snapshot.current.clients_in(channel_id)
        return JSONResponse(
            {
                "channel_id": channel_id,
                "clients": [
                    {
                        "client_id": c.client_id,
                        "client_database_id": c.client_database_id,
                        "client_nickname": c.client_nickname,
                    }
                    for c in clients
                ],
            }
        )

    @router.post("/v1/channels/delete")
    async def delete_channel(request: Request) -> JSONResponse:
        body = await request.json()
        try:
            requester = int(body["requester"])
            unique_id = str(body["unique_id"])
        except (KeyError, TypeError, ValueError):
            return JSONResponse(
                {"error": "requester and unique_id are required"}, status_code=400
            )
        try:
            delivered = await handle.send_delete_channel(requester, unique_id)
        except EngineClosedError:
            delivered = False
        logger.info("Delete channel request for %s (delivered=%s)", unique_id, delivered)
        return _delivery(delivered)

    @router.post("/v1/refresh")
    async def refresh() -> JSONResponse:
        try:
            return _delivery(await handle.send_refresh())
        except EngineClosedError:
            return _delivery(False)

    @router.post("/v1/terminate")
    async def terminate() -> JSONResponse:
        try:
            return _delivery(await handle.send_terminate())
        except EngineClosedError:
            return _delivery(False)

    return router
