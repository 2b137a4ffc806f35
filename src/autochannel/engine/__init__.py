"""
Engine Package — the auto-channel event loop and its caller-facing handle.

Architecture:
  AutoChannelHandle → EventChannel → AutoChannelEngine → QuerySession
"""

from autochannel.engine.auto_channel import (
    AutoChannelEngine,
    EngineFatalError,
    SessionBootstrapError,
    build_cache_key,
)
from autochannel.engine.events import (
    AutoChannelEvent,
    DeleteChannel,
    EngineState,
    ShouldRefresh,
    Terminate,
    Update,
)
from autochannel.engine.handle import AutoChannelHandle, EngineClosedError, EventChannel

__all__ = [
    # Engine
    "AutoChannelEngine",
    "EngineFatalError",
    "SessionBootstrapError",
    "build_cache_key",
    # Events
    "AutoChannelEvent",
    "DeleteChannel",
    "EngineState",
    "ShouldRefresh",
    "Terminate",
    "Update",
    # Handle
    "AutoChannelHandle",
    "EngineClosedError",
    "EventChannel",
]
