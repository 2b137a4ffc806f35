"""
Engine events — the closed set of messages the auto-channel loop consumes.

All events are immutable. The loop dispatches on type in one place;
adding a variant means extending AutoChannelEvent and that dispatch.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from autochannel.query.types import ClientBasicInfo


class EngineState(str, Enum):
    BOOTSTRAPPING = "bootstrapping"
    POLLING = "polling"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class Update:
    """A client joined or moved into a monitored channel."""

    info: ClientBasicInfo


@dataclass(frozen=True)
class DeleteChannel:
    """A client asked to forget its private channels."""

    requester: int  # client id that gets the acknowledgement
    unique_id: str  # client unique identifier whose cache entries go


@dataclass(frozen=True)
class ShouldRefresh:
    """Something changed outside the monitored set; rescan on the next tick."""


@dataclass(frozen=True)
class Terminate:
    """Stop the loop and log out."""


AutoChannelEvent = Union[Update, DeleteChannel, ShouldRefresh, Terminate]
