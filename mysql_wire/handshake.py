from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Tuple

from mysql_wire.config import ConnectionConfig, SslMode
from mysql_wire.constants import (
    ALWAYS_REQUESTED,
    FABRIC_SUFFIX,
    MIN_SERVER_VERSION,
    REQUESTED_IF_ADVERTISED,
)
from mysql_wire.errors import UnsupportedServerError
from mysql_wire.types import Capabilities

VERSION_PATTERN = re.compile(r"(\d+)\.(\d+)\.(\d+)")


@dataclass(frozen=True)
class ServerVersion:
    """Version string from the server greeting, e.g. `8.0.36-log`"""

    raw: str
    major: int = 0
    minor: int = 0
    patch: int = 0

    @classmethod
    def parse(cls, raw: str) -> ServerVersion:
        match = VERSION_PATTERN.search(raw)
        if not match:
            return cls(raw)
        major, minor, patch = (int(g) for g in match.groups())
        return cls(raw, major, minor, patch)

    @property
    def is_fabric(self) -> bool:
        return self.raw.lower().endswith(FABRIC_SUFFIX)

    def as_tuple(self) -> Tuple[int, int, int]:
        return self.major, self.minor, self.patch

    def at_least(self, major: int, minor: int = 0, patch: int = 0) -> bool:
        return self.as_tuple() >= (major, minor, patch)

    def __str__(self) -> str:
        return self.raw


def check_server_version(version: ServerVersion) -> None:
    if version.is_fabric:
        return
    if not version.at_least(*MIN_SERVER_VERSION):
        raise UnsupportedServerError(
            f"Server version {version.raw} is not supported. "
            f"The minimum is {'.'.join(str(v) for v in MIN_SERVER_VERSION)}"
        )


def negotiate_capabilities(
    server_capabilities: Capabilities, config: ConnectionConfig
) -> Capabilities:
    """Pick the client capabilities from what the server advertises and the client config"""
    capabilities = ALWAYS_REQUESTED | (server_capabilities & REQUESTED_IF_ADVERTISED)

    if not config.use_affected_rows:
        capabilities |= Capabilities.CLIENT_FOUND_ROWS

    if config.allow_batch:
        capabilities |= Capabilities.CLIENT_MULTI_STATEMENTS

    if config.interactive:
        capabilities |= Capabilities.CLIENT_INTERACTIVE

    if Capabilities.CLIENT_COMPRESS in server_capabilities and config.use_compression:
        capabilities |= Capabilities.CLIENT_COMPRESS

    if Capabilities.CLIENT_CONNECT_WITH_DB in server_capabilities and config.database:
        capabilities |= Capabilities.CLIENT_CONNECT_WITH_DB

    if (
        Capabilities.CLIENT_SSL in server_capabilities
        and config.ssl_mode is not SslMode.NONE
    ):
        capabilities |= Capabilities.CLIENT_SSL

    return capabilities
