"""
Query error taxonomy.

QueryError and its subclasses are recoverable: call sites decide whether to
log and skip or to treat them as fatal. TransportError is not a QueryError;
a broken stream always ends the session.
"""

from __future__ import annotations

# Application error codes the engine branches on.
INVALID_CHANNEL_ID = 768
CHANNEL_NAME_IN_USE = 771


class QueryError(Exception):
    """Base for every recoverable query failure."""

    code: int = -1

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ProtocolError(QueryError):
    """Server answered with a nonzero status line."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code

    def __str__(self) -> str:
        return f"error id={self.code} msg={self.message}"

    def __repr__(self) -> str:
        return f"ProtocolError(code={self.code}, message={self.message!r})"


class EmptyResponseError(QueryError):
    """Response contained no status line."""

    def __init__(self, message: str = "empty response") -> None:
        super().__init__(message)


class ResponseTimeout(QueryError):
    """No bytes arrived within the read timeout; the exchange is incomplete."""

    def __init__(self, command: str = "") -> None:
        super().__init__(f"no response for {command!r}" if command else "no response")
        self.command = command


class RowParseError(QueryError):
    """A data row lacked a required key or held an uncoercible value."""


class TransportError(ConnectionError):
    """The underlying stream failed or closed. Fatal to the session."""
