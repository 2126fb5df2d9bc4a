import random

import pytest

from mysql_wire.config import ConnectionConfig, SslMode
from mysql_wire.constants import ALWAYS_REQUESTED, REQUESTED_IF_ADVERTISED
from mysql_wire.errors import UnsupportedServerError
from mysql_wire.handshake import (
    ServerVersion,
    check_server_version,
    negotiate_capabilities,
)
from mysql_wire.types import Capabilities


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("8.0.36", (8, 0, 36)),
        ("5.7.44-log", (5, 7, 44)),
        ("5.5.5-10.11.6-MariaDB", (5, 5, 5)),
        ("garbage", (0, 0, 0)),
    ],
)
def test_parse_version(raw: str, expected: tuple) -> None:
    version = ServerVersion.parse(raw)
    assert version.as_tuple() == expected
    assert str(version) == raw


def test_version_comparison() -> None:
    version = ServerVersion.parse("5.1.0")
    assert version.at_least(5)
    assert version.at_least(5, 1)
    assert not version.at_least(5, 1, 1)


def test_check_server_version() -> None:
    check_server_version(ServerVersion.parse("5.0.0"))
    with pytest.raises(UnsupportedServerError):
        check_server_version(ServerVersion.parse("4.1.22"))


def test_fabric_skips_version_check() -> None:
    version = ServerVersion.parse("1.5.6-fabric")
    assert version.is_fabric
    check_server_version(version)


def expected_capabilities(
    server: Capabilities, config: ConnectionConfig
) -> Capabilities:
    expected = Capabilities(0)
    for flag in Capabilities:
        advertised = flag in server
        if flag in ALWAYS_REQUESTED:
            wanted = True
        elif flag in REQUESTED_IF_ADVERTISED:
            wanted = advertised
        elif flag == Capabilities.CLIENT_FOUND_ROWS:
            wanted = not config.use_affected_rows
        elif flag == Capabilities.CLIENT_MULTI_STATEMENTS:
            wanted = config.allow_batch
        elif flag == Capabilities.CLIENT_INTERACTIVE:
            wanted = config.interactive
        elif flag == Capabilities.CLIENT_COMPRESS:
            wanted = advertised and config.use_compression
        elif flag == Capabilities.CLIENT_CONNECT_WITH_DB:
            wanted = advertised and bool(config.database)
        elif flag == Capabilities.CLIENT_SSL:
            wanted = advertised and config.ssl_mode is not SslMode.NONE
        else:
            wanted = False
        if wanted:
            expected |= flag
    return expected


def test_negotiate_capabilities_table() -> None:
    rng = random.Random(1045)
    for _ in range(500):
        server = Capabilities(rng.getrandbits(32))
        config = ConnectionConfig(
            database=rng.choice([None, "", "db"]),
            ssl_mode=rng.choice(list(SslMode)),
            use_compression=rng.random() < 0.5,
            allow_batch=rng.random() < 0.5,
            interactive=rng.random() < 0.5,
            use_affected_rows=rng.random() < 0.5,
        )
        assert negotiate_capabilities(server, config) == expected_capabilities(
            server, config
        )


def test_negotiate_never_requests_unadvertised_optional_flags() -> None:
    caps = negotiate_capabilities(
        Capabilities(0), ConnectionConfig(use_compression=True, database="db")
    )
    assert Capabilities.CLIENT_COMPRESS not in caps
    assert Capabilities.CLIENT_SSL not in caps
    assert Capabilities.CLIENT_CONNECT_WITH_DB not in caps
    assert Capabilities.CLIENT_PLUGIN_AUTH not in caps
    assert Capabilities.CLIENT_PROTOCOL_41 in caps
    assert Capabilities.CLIENT_LOCAL_FILES in caps
