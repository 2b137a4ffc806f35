"""
Query Package — ServerQuery transport, codec and typed session operations.

Layering:
  QuerySession (typed commands) → QueryTransport (framing, timeouts) → TCP
"""

from autochannel.query.errors import (
    CHANNEL_NAME_IN_USE,
    INVALID_CHANNEL_ID,
    EmptyResponseError,
    ProtocolError,
    QueryError,
    ResponseTimeout,
    RowParseError,
    TransportError,
)
from autochannel.query.session import QuerySession
from autochannel.query.transport import QueryTransport
from autochannel.query.types import (
    Channel,
    Client,
    ClientBasicInfo,
    ClientInfo,
    CreatedChannel,
    DatabaseId,
    ServerInfo,
    WhoAmI,
)

__all__ = [
    # Errors
    "QueryError",
    "ProtocolError",
    "EmptyResponseError",
    "ResponseTimeout",
    "RowParseError",
    "TransportError",
    "CHANNEL_NAME_IN_USE",
    "INVALID_CHANNEL_ID",
    # Connection
    "QuerySession",
    "QueryTransport",
    # Records
    "Channel",
    "Client",
    "ClientBasicInfo",
    "ClientInfo",
    "CreatedChannel",
    "DatabaseId",
    "ServerInfo",
    "WhoAmI",
]
