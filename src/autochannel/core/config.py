"""
Auto-channel configuration — single source of truth for all settings.

Reads from environment variables (and a local .env) with sensible defaults.
Every section is a frozen dataclass so the engine can hold it without
worrying about anyone mutating it mid-session.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

DEFAULT_NICKNAME = "auto channel"
DEFAULT_MOVED_MESSAGE = "You have been moved into your channel."

# Default channel permission granted to every freshly provisioned channel
# (permid, permvalue).
DEFAULT_CHANNEL_PERMISSIONS: tuple[tuple[int, int], ...] = ((133, 75),)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int_list(name: str) -> tuple[int, ...]:
    raw = os.getenv(name, "")
    return tuple(int(part) for part in raw.split(",") if part.strip())


def parse_channel_permissions(raw: str) -> dict[int, tuple[tuple[int, int], ...]]:
    """Parse ``{"<channel id>": [[permid, value], ...]}`` into a typed mapping."""
    if not raw.strip():
        return {}
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("channel permissions must be a JSON object")
    result: dict[int, tuple[tuple[int, int], ...]] = {}
    for channel_id, pairs in data.items():
        result[int(channel_id)] = tuple((int(k), int(v)) for k, v in pairs)
    return result


@dataclass(frozen=True)
class QueryConfig:
    """ServerQuery connection settings."""

    host: str = "127.0.0.1"
    port: int = 10011
    user: str = "serveradmin"
    password: str = ""
    server_id: int = 1
    read_timeout: float = 2.0  # seconds without bytes before a read gives up

    @classmethod
    def from_env(cls) -> QueryConfig:
        return cls(
            host=os.getenv("AUTOCHANNEL_HOST", "127.0.0.1"),
            port=int(os.getenv("AUTOCHANNEL_PORT", "10011")),
            user=os.getenv("AUTOCHANNEL_USER", "serveradmin"),
            password=os.getenv("AUTOCHANNEL_PASSWORD", ""),
            server_id=int(os.getenv("AUTOCHANNEL_SERVER_ID", "1")),
            read_timeout=float(os.getenv("AUTOCHANNEL_READ_TIMEOUT", "2.0")),
        )


@dataclass(frozen=True)
class ServerConfig:
    """Auto-channel behaviour on the virtual server."""

    channels: tuple[int, ...] = ()
    privilege_group_id: int = 5
    channel_permissions: dict[int, tuple[tuple[int, int], ...]] = field(
        default_factory=dict
    )
    nickname: str = DEFAULT_NICKNAME
    poll_interval: float = 30.0
    max_name_attempts: int = 16
    # Notifications are only read while another request is in flight, so
    # enter/move events surface at the next scan or keepalive at the latest.
    # This does not shorten the poll interval.
    register_events: bool = False

    @classmethod
    def from_env(cls) -> ServerConfig:
        return cls(
            channels=_env_int_list("AUTOCHANNEL_CHANNELS"),
            privilege_group_id=int(os.getenv("AUTOCHANNEL_PRIVILEGE_GROUP", "5")),
            channel_permissions=parse_channel_permissions(
                os.getenv("AUTOCHANNEL_CHANNEL_PERMISSIONS", "")
            ),
            nickname=os.getenv("AUTOCHANNEL_NICKNAME", "") or DEFAULT_NICKNAME,
            poll_interval=float(os.getenv("AUTOCHANNEL_POLL_INTERVAL", "30.0")),
            max_name_attempts=int(os.getenv("AUTOCHANNEL_MAX_NAME_ATTEMPTS", "16")),
            register_events=_env_bool("AUTOCHANNEL_REGISTER_EVENTS", False),
        )


@dataclass(frozen=True)
class MessageConfig:
    """Private message templates."""

    move_to_channel: str = DEFAULT_MOVED_MESSAGE

    @classmethod
    def from_env(cls) -> MessageConfig:
        return cls(
            move_to_channel=os.getenv("AUTOCHANNEL_MSG_MOVED", DEFAULT_MOVED_MESSAGE),
        )


@dataclass(frozen=True)
class MutePorterConfig:
    """Moves muted clients out of one channel into another."""

    enable: bool = False
    monitor_channel: int = 0
    target_channel: int = 0
    whitelist: tuple[int, ...] = ()

    def check_whitelist(self, client_database_id: int) -> bool:
        return client_database_id in self.whitelist

    @classmethod
    def from_env(cls) -> MutePorterConfig:
        return cls(
            enable=_env_bool("AUTOCHANNEL_MUTE_PORTER", False),
            monitor_channel=int(os.getenv("AUTOCHANNEL_MUTE_PORTER_MONITOR", "0")),
            target_channel=int(os.getenv("AUTOCHANNEL_MUTE_PORTER_TARGET", "0")),
            whitelist=_env_int_list("AUTOCHANNEL_MUTE_PORTER_WHITELIST"),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Idempotency cache backend."""

    backend: str = "sqlite"  # sqlite | memory
    path: str = "autochannel_cache.db"

    @classmethod
    def from_env(cls) -> StorageConfig:
        return cls(
            backend=os.getenv("AUTOCHANNEL_KV_BACKEND", "sqlite").lower(),
            path=os.getenv("AUTOCHANNEL_KV_PATH", "autochannel_cache.db"),
        )


@dataclass(frozen=True)
class ControlConfig:
    """Local HTTP control endpoint."""

    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8080

    @classmethod
    def from_env(cls) -> ControlConfig:
        return cls(
            enabled=_env_bool("AUTOCHANNEL_CONTROL_ENABLED", False),
            host=os.getenv("AUTOCHANNEL_CONTROL_HOST", "127.0.0.1"),
            port=int(os.getenv("AUTOCHANNEL_CONTROL_PORT", "8080")),
        )


@dataclass(frozen=True)
class AutoChannelConfig:
    """Root configuration handed to the runner and the engine."""

    query: QueryConfig = field(default_factory=QueryConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    message: MessageConfig = field(default_factory=MessageConfig)
    mute_porter: MutePorterConfig = field(default_factory=MutePorterConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    control: ControlConfig = field(default_factory=ControlConfig)

    @classmethod
    def from_env(cls) -> AutoChannelConfig:
        return cls(
            query=QueryConfig.from_env(),
            server=ServerConfig.from_env(),
            message=MessageConfig.from_env(),
            mute_porter=MutePorterConfig.from_env(),
            storage=StorageConfig.from_env(),
            control=ControlConfig.from_env(),
        )
