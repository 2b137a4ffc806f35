"""
Client/channel snapshot — the latest view of the server after each scan.

Downstream consumers (the /health endpoint, anything that wants "who is
where" without its own query connection) read from here. The engine only
pays for the extra channellist call when the snapshot is enabled.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from autochannel.query.types import Channel, Client


@dataclass
class ServerSnapshot:
    channels: list[Channel] = field(default_factory=list)
    clients: list[Client] = field(default_factory=list)
    updated_at: float = 0.0

    def clients_in(self, channel_id: int) -> list[Client]:
        return [c for c in self.clients if c.channel_id == channel_id]


class SnapshotStore:
    def __init__(self, enabled: bool = True) -> None:
        self._enabled = enabled
        self._current = ServerSnapshot()

    def enabled(self) -> bool:
        return self._enabled

    def update(self, channels: list[Channel], clients: list[Client]) -> None:
        self._current = ServerSnapshot(
            channels=list(channels), clients=list(clients), updated_at=time.time()
        )

    @property
    def current(self) -> ServerSnapshot:
        return self._current

    def summary(self) -> dict:
        snap = self._current
        return {
            "channels": len(snap.channels),
            "clients": len(snap.clients),
            "updated_at": snap.updated_at,
        }
