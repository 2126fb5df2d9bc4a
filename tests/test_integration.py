from datetime import date, datetime, timedelta

import pytest

from mysql_mimic.errors import ErrorCode as MimicErrorCode, MysqlError as MimicError
from mysql_mimic.results import ResultColumn, ResultSet
from mysql_mimic.types import ColumnType as MimicColumnType

from mysql_wire.config import ConnectionConfig, SslMode
from mysql_wire.connection import Connection
from mysql_wire.errors import ServerError
from mysql_wire.types import ColumnType
from tests.conftest import ConnectFixture, MockSession, query


@pytest.mark.asyncio
async def test_typed_result(session: MockSession, connect: ConnectFixture) -> None:
    session.return_value = ResultSet(
        rows=[
            (1, 1.5, "hello", date(2023, 1, 2), datetime(2023, 1, 2, 3, 4, 5)),
            (None, -2.25, "", date(1999, 12, 31), datetime(2000, 1, 1)),
        ],
        columns=[
            ResultColumn("a", MimicColumnType.LONGLONG),
            ResultColumn("b", MimicColumnType.DOUBLE),
            ResultColumn("c", MimicColumnType.STRING),
            ResultColumn("d", MimicColumnType.DATE),
            ResultColumn("e", MimicColumnType.DATETIME),
        ],
    )
    conn = await connect()
    try:
        await conn.send_query("SELECT * FROM x")
        header = await conn.get_result()
        assert header.field_count == 5
        fields = await conn.get_columns_data(header.field_count)
        assert [f.name for f in fields] == ["a", "b", "c", "d", "e"]
        assert fields[0].type == ColumnType.LONGLONG

        rows = []
        while True:
            row = await conn.fetch_row(0, fields)
            if row is None:
                break
            rows.append(tuple(row))
        assert rows == [
            (1, 1.5, "hello", date(2023, 1, 2), datetime(2023, 1, 2, 3, 4, 5)),
            (None, -2.25, "", date(1999, 12, 31), datetime(2000, 1, 1)),
        ]
    finally:
        await conn.close()


@pytest.mark.asyncio
async def test_time_result(session: MockSession, connect: ConnectFixture) -> None:
    session.return_value = ResultSet(
        rows=[(timedelta(hours=2, minutes=3, seconds=4),)],
        columns=[ResultColumn("t", MimicColumnType.TIME)],
    )
    conn = await connect()
    try:
        assert await query(conn, "SELECT t") == [
            {"t": timedelta(hours=2, minutes=3, seconds=4)}
        ]
    finally:
        await conn.close()


@pytest.mark.asyncio
async def test_unicode_echo(session: MockSession, connect: ConnectFixture) -> None:
    session.echo = True
    conn = await connect()
    try:
        assert await query(conn, "SELECT 'café ☃'") == [{"sql": "SELECT 'café ☃'"}]
    finally:
        await conn.close()


@pytest.mark.asyncio
async def test_no_result_set(session: MockSession, connect: ConnectFixture) -> None:
    session.return_value = None
    conn = await connect()
    try:
        await conn.send_query("SET x = 1")
        header = await conn.get_result()
        assert not header.has_result_set
        assert conn.is_open
    finally:
        await conn.close()


@pytest.mark.asyncio
async def test_connection_id(connect: ConnectFixture) -> None:
    conn = await connect()
    try:
        assert await query(conn, "SELECT CONNECTION_ID() AS a") == [
            {"a": conn.thread_id}
        ]
    finally:
        await conn.close()


@pytest.mark.asyncio
async def test_connect_attrs(session: MockSession, connect: ConnectFixture) -> None:
    conn = await connect(connect_attrs={"program_name": "tests"})
    try:
        attrs = session.connection.client_connect_attrs
        assert attrs["_client_name"] == "mysql-wire"
        assert attrs["program_name"] == "tests"
    finally:
        await conn.close()


@pytest.mark.asyncio
async def test_database(session: MockSession, connect: ConnectFixture) -> None:
    conn = await connect(database="db")
    try:
        assert session.database == "db"
        await conn.set_database("other")
        assert session.database == "other"
    finally:
        await conn.close()


@pytest.mark.asyncio
async def test_server_error(session: MockSession, connect: ConnectFixture) -> None:
    session.return_value = MimicError("Nope", MimicErrorCode.PARSE_ERROR)
    conn = await connect()
    try:
        with pytest.raises(ServerError) as ctx:
            await query(conn, "SELECT bad")
        assert ctx.value.code == MimicErrorCode.PARSE_ERROR
        assert "Nope" in str(ctx.value)

        # The connection stays usable after an ERR packet
        assert conn.is_open
        session.return_value = None
        session.echo = True
        assert await query(conn, "SELECT 1") == [{"sql": "SELECT 1"}]
    finally:
        await conn.close()


@pytest.mark.asyncio
async def test_ping(connect: ConnectFixture) -> None:
    conn = await connect()
    try:
        assert await conn.ping()
        assert await conn.ping()
    finally:
        await conn.close()


@pytest.mark.asyncio
async def test_close(connect: ConnectFixture) -> None:
    conn = await connect()
    assert conn.is_open
    await conn.close()
    assert not conn.is_open
    # Closing twice is harmless
    await conn.close()


@pytest.mark.asyncio
async def test_context_manager(session: MockSession, port: int) -> None:
    session.echo = True
    config = ConnectionConfig(
        host="127.0.0.1", port=port, user="levon_helm", ssl_mode=SslMode.NONE
    )
    async with Connection(config) as conn:
        assert conn.is_open
        assert conn.version.major >= 5
        assert await query(conn, "SELECT 2") == [{"sql": "SELECT 2"}]
    assert not conn.is_open
