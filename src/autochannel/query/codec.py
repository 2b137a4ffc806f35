"""
ServerQuery wire codec — framing, escaping, status decoding and row parsing.

Pure functions only; nothing here touches a socket. The transport feeds raw
response text in, session operations get typed records out.

Wire shape:
    command line:   ``clientmove clid=5 cid=10\\n\\r``
    response:       zero or more data lines, then ``error id=<code> msg=<text>``
    data line:      records separated by ``|``, fields by spaces, ``key=value``
"""

from __future__ import annotations

from typing import Iterable, TypeVar

from autochannel.query.errors import EmptyResponseError, ProtocolError
from autochannel.query.types import QueryRecord, QueryStatus

TERMINATOR = "\n\r"
STATUS_PREFIX = "error "
STATUS_MARKER = "error id="
NOTIFY_PREFIX = "notify"

T = TypeVar("T", bound=QueryRecord)

_UNESCAPE = {
    "\\": "\\",
    "s": " ",
    "/": "/",
    "p": "|",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}


def escape(text: str) -> str:
    """Escape free text for embedding in a command.

    Backslash goes first so the backslashes introduced for spaces and
    slashes are not escaped a second time.
    """
    return text.replace("\\", "\\\\").replace(" ", "\\s").replace("/", "\\/")


def unescape(text: str) -> str:
    """Inverse of escape(); also decodes the pipe/control escapes servers send."""
    if "\\" not in text:
        return text
    out: list[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text) and text[i + 1] in _UNESCAPE:
            out.append(_UNESCAPE[text[i + 1]])
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def frame(command: str) -> bytes:
    """Terminate a command line and encode it for the wire."""
    if command.endswith(TERMINATOR):
        return command.encode("utf-8")
    return f"{command}{TERMINATOR}".encode("utf-8")


def is_complete(buffer: str) -> bool:
    """True once the accumulated buffer holds a whole response."""
    return STATUS_MARKER in buffer and buffer.endswith(TERMINATOR)


def split_lines(content: str) -> list[str]:
    """Split response text on any line break, dropping empty lines."""
    return [line for line in content.splitlines() if line.strip()]


def split_notifications(content: str) -> tuple[str, list[str]]:
    """Separate asynchronous ``notify*`` lines from a command response."""
    response: list[str] = []
    notifications: list[str] = []
    for line in split_lines(content):
        if line.lstrip().startswith(NOTIFY_PREFIX):
            notifications.append(line.strip())
        else:
            response.append(line)
    return "\n".join(response), notifications


def parse_fields(record: str) -> dict[str, str]:
    """``"clid=5 client_nickname=A\\sB"`` → ``{"clid": "5", "client_nickname": "A B"}``."""
    fields: dict[str, str] = {}
    for token in record.strip().split(" "):
        if not token:
            continue
        key, sep, value = token.partition("=")
        fields[key] = unescape(value) if sep else ""
    return fields


def parse_status(line: str) -> QueryStatus:
    return QueryStatus.from_fields(parse_fields(line.strip()[len(STATUS_PREFIX) :]))


def decode_status(content: str) -> str:
    """Return the response body without its status line.

    Raises:
        ProtocolError: status code is nonzero
        EmptyResponseError: no status line at all
    """
    lines = split_lines(content)
    for index, line in enumerate(lines):
        if line.strip().startswith(STATUS_PREFIX):
            status = parse_status(line)
            if status.code != 0:
                raise ProtocolError(status.code, status.message)
            body = lines[:index] + lines[index + 1 :]
            return "\n".join(body)
    raise EmptyResponseError()


def parse_records(body: str, record_type: type[T]) -> list[T] | None:
    """Parse the first data line of a decoded body into typed records.

    Returns None when the body holds no data line.
    """
    for line in split_lines(body):
        if line.startswith(STATUS_PREFIX):
            continue
        return [record_type.from_fields(parse_fields(rec)) for rec in line.split("|")]
    return None


def decode_records(content: str, record_type: type[T]) -> list[T] | None:
    return parse_records(decode_status(content), record_type)


def join_permissions(permissions: Iterable[tuple[int, int]]) -> str:
    """``[(133, 75), (134, 50)]`` → ``permid=133 permvalue=75|permid=134 permvalue=50``."""
    return "|".join(f"permid={k} permvalue={v}" for k, v in permissions)
