from __future__ import annotations
import asyncio
from typing import (
    Optional,
    List,
    Dict,
    Any,
    Callable,
    Awaitable,
    Sequence,
    AsyncGenerator,
    Tuple,
)

import pytest
import pytest_asyncio
from sqlglot import expressions as exp

from mysql_mimic import MysqlServer, Session
from mysql_mimic.auth import User, AuthPlugin, IdentityProvider
from mysql_mimic.results import AllowedResult

from mysql_wire.config import ConnectionConfig, SslMode
from mysql_wire.connection import Connection, ConnectionState
from mysql_wire.handshake import ServerVersion
from mysql_wire.stream import MysqlStream
from mysql_wire.types import (
    Capabilities,
    ColumnType,
    ServerStatus,
    str_len,
    str_null,
    uint_1,
    uint_2,
    uint_3,
    uint_4,
    uint_len,
)

SEED = b"abcdefghijklmnopqrst"

SERVER_CAPABILITIES = (
    Capabilities.CLIENT_LONG_PASSWORD
    | Capabilities.CLIENT_FOUND_ROWS
    | Capabilities.CLIENT_LONG_FLAG
    | Capabilities.CLIENT_CONNECT_WITH_DB
    | Capabilities.CLIENT_LOCAL_FILES
    | Capabilities.CLIENT_PROTOCOL_41
    | Capabilities.CLIENT_TRANSACTIONS
    | Capabilities.CLIENT_SECURE_CONNECTION
    | Capabilities.CLIENT_MULTI_STATEMENTS
    | Capabilities.CLIENT_MULTI_RESULTS
    | Capabilities.CLIENT_PS_MULTI_RESULTS
    | Capabilities.CLIENT_PLUGIN_AUTH
    | Capabilities.CLIENT_CONNECT_ATTRS
)

CLIENT_CAPABILITIES = (
    Capabilities.CLIENT_LONG_PASSWORD
    | Capabilities.CLIENT_FOUND_ROWS
    | Capabilities.CLIENT_LONG_FLAG
    | Capabilities.CLIENT_LOCAL_FILES
    | Capabilities.CLIENT_PROTOCOL_41
    | Capabilities.CLIENT_TRANSACTIONS
    | Capabilities.CLIENT_SECURE_CONNECTION
    | Capabilities.CLIENT_MULTI_STATEMENTS
    | Capabilities.CLIENT_MULTI_RESULTS
    | Capabilities.CLIENT_PS_MULTI_RESULTS
    | Capabilities.CLIENT_PLUGIN_AUTH
)


class MockReader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    async def readexactly(self, n: int) -> bytes:
        start = self.pos
        end = self.pos + n
        self.pos = min(end, len(self.data))
        data = self.data[start:end]
        if len(data) < n:
            raise asyncio.IncompleteReadError(data, n)
        return data

    read = readexactly

    @property
    def exhausted(self) -> bool:
        return self.pos >= len(self.data)


class MockWriter:
    def __init__(self) -> None:
        self.data = b""
        self.closed = False

    def write(self, data: bytes) -> None:
        self.data += data

    async def drain(self) -> None:
        return

    def close(self) -> None:
        self.closed = True


class HangingReader:
    """A server that never answers"""

    async def readexactly(self, n: int) -> bytes:
        await asyncio.sleep(3600)
        return b""


def frame(payload: bytes, seq: int) -> bytes:
    return uint_3(len(payload)) + uint_1(seq) + payload


def frames(*payloads: bytes, start: int = 1) -> bytes:
    """Frame consecutive server packets, numbering them from `start`"""
    data = []
    sequence_id = start
    for payload in payloads:
        while True:
            chunk, payload = payload[:0xFFFFFF], payload[0xFFFFFF:]
            data.append(frame(chunk, sequence_id % 256))
            sequence_id += 1
            if len(chunk) < 0xFFFFFF:
                break
    return b"".join(data)


def unframe(data: bytes) -> List[Tuple[int, bytes]]:
    """Split what the client wrote back into (seq, payload) pairs"""
    packets = []
    while data:
        length = int.from_bytes(data[:3], "little")
        packets.append((data[3], data[4 : 4 + length]))
        data = data[4 + length :]
    return packets


def make_greeting(
    version: str = "8.0.36",
    capabilities: Capabilities = SERVER_CAPABILITIES,
    auth_data: bytes = SEED,
    plugin: str = "mysql_native_password",
    status: ServerStatus = ServerStatus.SERVER_STATUS_AUTOCOMMIT,
    thread_id: int = 7,
) -> bytes:
    parts = [
        uint_1(10),
        str_null(version.encode()),
        uint_4(thread_id),
        str_null(auth_data[:8]),
        uint_2(capabilities & 0xFFFF),
        uint_1(45),
        uint_2(status),
        uint_2(capabilities >> 16),
        uint_1(len(auth_data) + 1),
        bytes(10),
        str_null(auth_data[8:]),
    ]
    if Capabilities.CLIENT_PLUGIN_AUTH in capabilities:
        parts.append(str_null(plugin.encode()))
    return b"".join(parts)


def make_ok(
    affected_rows: int = 0,
    last_insert_id: int = 0,
    status: int = ServerStatus.SERVER_STATUS_AUTOCOMMIT,
    warnings: int = 0,
    message: bytes = b"",
) -> bytes:
    return (
        uint_1(0)
        + uint_len(affected_rows)
        + uint_len(last_insert_id)
        + uint_2(status)
        + uint_2(warnings)
        + message
    )


def make_eof(warnings: int = 0, status: int = ServerStatus.SERVER_STATUS_AUTOCOMMIT) -> bytes:
    return uint_1(0xFE) + uint_2(warnings) + uint_2(status)


def make_err(code: int = 1064, msg: bytes = b"Syntax error", sqlstate: bytes = b"42000") -> bytes:
    return uint_1(0xFF) + uint_2(code) + b"#" + sqlstate + msg


def make_column(
    name: str,
    column_type: ColumnType = ColumnType.VAR_STRING,
    flags: int = 0,
    collation: int = 45,
    length: int = 256,
    decimals: int = 0,
) -> bytes:
    return b"".join(
        [
            str_len(b"def"),
            str_len(b"db"),
            str_len(b"t"),
            str_len(b"t"),
            str_len(name.encode()),
            str_len(name.encode()),
            uint_len(0x0C),
            uint_2(collation),
            uint_4(length),
            uint_1(column_type),
            uint_2(flags),
            uint_1(decimals),
            uint_2(0),
        ]
    )


def text_row(*values: Optional[bytes]) -> bytes:
    return b"".join(b"\xfb" if v is None else str_len(v) for v in values)


def make_connection(
    data: bytes,
    config: Optional[ConnectionConfig] = None,
    capabilities: Capabilities = CLIENT_CAPABILITIES,
    **state: Any,
) -> Tuple[Connection, MockWriter]:
    """A connection that has finished its handshake, talking to canned server bytes"""
    writer = MockWriter()
    conn = Connection(config or ConnectionConfig(ssl_mode=SslMode.NONE))
    conn.stream = MysqlStream(reader=MockReader(data), writer=writer)  # type: ignore
    conn._closed = False  # pylint: disable=protected-access
    conn.state = ConnectionState(
        thread_id=7,
        version=ServerVersion.parse("8.0.36"),
        capabilities=capabilities,
        seed=SEED,
        **state,
    )
    return conn, writer


class MockSession(Session):
    def __init__(self) -> None:
        super().__init__()
        self.return_value: Any = None
        self.echo = False

    async def query(
        self, expression: exp.Expression, sql: str, attrs: Dict[str, str]
    ) -> AllowedResult:
        if self.echo:
            return [(sql,)], ["sql"]
        if isinstance(self.return_value, Exception):
            raise self.return_value
        return self.return_value


class MockIdentityProvider(IdentityProvider):
    def __init__(self, auth_plugins: List[AuthPlugin], users: Dict[str, User]):
        self.auth_plugins = auth_plugins
        self.users = users

    def get_plugins(self) -> Sequence[AuthPlugin]:
        return self.auth_plugins

    async def get_user(self, username: str) -> Optional[User]:
        return self.users.get(username)


@pytest.fixture
def session() -> MockSession:
    return MockSession()


@pytest.fixture
def auth_plugins() -> Optional[List[AuthPlugin]]:
    return None


@pytest.fixture
def users() -> Dict[str, User]:
    return {}


@pytest.fixture
def identity_provider(
    auth_plugins: Optional[List[AuthPlugin]], users: Dict[str, User]
) -> Optional[MockIdentityProvider]:
    if auth_plugins:
        return MockIdentityProvider(auth_plugins, users)
    return None


@pytest_asyncio.fixture
async def server(
    session: MockSession,
    identity_provider: Optional[MockIdentityProvider],
) -> AsyncGenerator[MysqlServer, None]:
    srv = MysqlServer(
        session_factory=lambda: session,
        identity_provider=identity_provider,
    )
    await srv.start_server(host="127.0.0.1", port=0)
    asyncio.create_task(srv.serve_forever())
    try:
        yield srv
    finally:
        srv.close()
        await srv.wait_closed()


@pytest.fixture
def port(server: MysqlServer) -> int:
    return server.sockets()[0].getsockname()[1]


ConnectFixture = Callable[..., Awaitable[Connection]]


@pytest.fixture
def connect(port: int) -> ConnectFixture:
    async def conn(**kwargs: Any) -> Connection:
        kwargs.setdefault("ssl_mode", SslMode.NONE)
        kwargs.setdefault("user", "levon_helm")
        connection = Connection(ConnectionConfig(host="127.0.0.1", port=port, **kwargs))
        await connection.open()
        return connection

    return conn


async def query(conn: Connection, sql: str) -> List[Dict[str, Any]]:
    """Run a query and collect the rows of every result set"""
    await conn.send_query(sql)
    rows = []
    while True:
        header = await conn.get_result()
        if header.has_result_set:
            fields = await conn.get_columns_data(header.field_count)
            while True:
                row = await conn.fetch_row(0, fields)
                if row is None:
                    break
                rows.append(row.as_dict())
        if ServerStatus.SERVER_MORE_RESULTS_EXISTS not in conn.server_status:
            return rows
