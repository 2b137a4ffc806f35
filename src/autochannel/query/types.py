"""
Typed ServerQuery records.

Each record is a frozen dataclass that declares which wire keys it reads
and how to coerce them. Unknown keys are ignored; a missing key without a
default raises RowParseError.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, ClassVar

from autochannel.query.errors import RowParseError

_MISSING = object()


def _flag(value: str) -> bool:
    return value.strip() not in ("", "0")


@dataclass(frozen=True)
class WireField:
    """Maps one wire key onto a dataclass attribute."""

    key: str
    coerce: Callable[[str], Any] = str
    default: Any = _MISSING


class QueryRecord:
    """Base for records parsed from a ``key=value`` row."""

    WIRE: ClassVar[dict[str, WireField]] = {}

    @classmethod
    def from_fields(cls, fields: dict[str, str]):
        kwargs: dict[str, Any] = {}
        for attr, wire in cls.WIRE.items():
            raw = fields.get(wire.key)
            if raw is None:
                if wire.default is _MISSING:
                    raise RowParseError(
                        f"{cls.__name__}: missing required key {wire.key!r}"
                    )
                kwargs[attr] = wire.default
                continue
            try:
                kwargs[attr] = wire.coerce(raw)
            except ValueError as e:
                raise RowParseError(
                    f"{cls.__name__}: bad value for {wire.key!r}: {raw!r}"
                ) from e
        return cls(**kwargs)


@dataclass(frozen=True)
class QueryStatus:
    """Terminal ``error id=<code> msg=<text>`` line of every response."""

    code: int
    message: str

    @classmethod
    def from_fields(cls, fields: dict[str, str]) -> QueryStatus:
        try:
            code = int(fields.get("id", ""))
        except ValueError as e:
            raise RowParseError(f"malformed status line: {fields!r}") from e
        return cls(code=code, message=fields.get("msg", ""))

    @property
    def ok(self) -> bool:
        return self.code == 0


@dataclass(frozen=True)
class WhoAmI(QueryRecord):
    client_id: int
    client_database_id: int

    WIRE: ClassVar[dict[str, WireField]] = {
        "client_id": WireField("client_id", int),
        "client_database_id": WireField("client_database_id", int),
    }


@dataclass(frozen=True)
class ServerInfo(QueryRecord):
    virtual_server_unique_identifier: str
    virtual_server_name: str = ""

    WIRE: ClassVar[dict[str, WireField]] = {
        "virtual_server_unique_identifier": WireField(
            "virtualserver_unique_identifier"
        ),
        "virtual_server_name": WireField("virtualserver_name", str, ""),
    }


@dataclass(frozen=True)
class Client(QueryRecord):
    client_id: int
    channel_id: int
    client_database_id: int
    client_nickname: str
    client_type: int

    WIRE: ClassVar[dict[str, WireField]] = {
        "client_id": WireField("clid", int),
        "channel_id": WireField("cid", int),
        "client_database_id": WireField("client_database_id", int),
        "client_nickname": WireField("client_nickname"),
        "client_type": WireField("client_type", int),
    }

    def client_is_user(self) -> bool:
        return self.client_type == 0


@dataclass(frozen=True)
class Channel(QueryRecord):
    channel_id: int
    parent_id: int
    channel_name: str = ""

    WIRE: ClassVar[dict[str, WireField]] = {
        "channel_id": WireField("cid", int),
        "parent_id": WireField("pid", int),
        "channel_name": WireField("channel_name", str, ""),
    }


@dataclass(frozen=True)
class ClientInfo(QueryRecord):
    """Subset of ``clientinfo`` the mute porter needs."""

    channel_id: int
    client_database_id: int
    input_muted: bool = False
    output_muted: bool = False
    client_nickname: str = ""

    WIRE: ClassVar[dict[str, WireField]] = {
        "channel_id": WireField("cid", int),
        "client_database_id": WireField("client_database_id", int),
        "input_muted": WireField("client_input_muted", _flag, False),
        "output_muted": WireField("client_output_muted", _flag, False),
        "client_nickname": WireField("client_nickname", str, ""),
    }

    def is_client_muted(self) -> bool:
        return self.input_muted or self.output_muted


@dataclass(frozen=True)
class CreatedChannel(QueryRecord):
    channel_id: int

    WIRE: ClassVar[dict[str, WireField]] = {
        "channel_id": WireField("cid", int),
    }


@dataclass(frozen=True)
class DatabaseId(QueryRecord):
    client_unique_identifier: str
    client_database_id: int

    WIRE: ClassVar[dict[str, WireField]] = {
        "client_unique_identifier": WireField("cluid"),
        "client_database_id": WireField("cldbid", int),
    }


@dataclass(frozen=True)
class ClientBasicInfo:
    """What event producers know about a client when it moves or joins."""

    client_id: int
    channel_id: int
    client_database_id: int = 0
    client_nickname: str = ""
