import io
import struct

import pytest

from mysql_wire import types


def test_column_definition() -> None:
    assert types.ColumnDefinition.NOT_NULL_FLAG == 1
    assert types.ColumnDefinition.UNSIGNED_FLAG == 32
    assert types.ColumnDefinition.NUM_FLAG == 1 << 15
    assert (
        types.ColumnDefinition.NOT_NULL_FLAG | types.ColumnDefinition.PRI_KEY_FLAG == 3
    )


def test_capabilities() -> None:
    assert types.Capabilities.CLIENT_LONG_PASSWORD == 1
    assert types.Capabilities.CLIENT_FOUND_ROWS == 2
    assert types.Capabilities.CLIENT_PROTOCOL_41 == 512
    assert types.Capabilities.CLIENT_SSL == 2048
    assert types.Capabilities.CLIENT_CAN_HANDLE_EXPIRED_PASSWORDS == 1 << 22


def test_server_status() -> None:
    assert types.ServerStatus.SERVER_STATUS_IN_TRANS == 1
    assert types.ServerStatus.SERVER_STATUS_AUTOCOMMIT == 2
    assert types.ServerStatus.SERVER_STATUS_MORE_RESULTS == 4
    assert types.ServerStatus.SERVER_MORE_RESULTS_EXISTS == 8
    assert types.ServerStatus.SERVER_STATUS_CURSOR_EXISTS == 64


def test_unknown_column_type() -> None:
    assert types.ColumnType(0x42) is types.ColumnType.INVALID


def test_int_1() -> None:
    assert types.uint_1(0) == b"\x00"
    assert types.uint_1(255) == b"\xff"
    pytest.raises(struct.error, types.uint_1, 256)


def test_int_3() -> None:
    assert types.uint_3(1) == b"\x01\x00\x00"
    assert types.uint_3(2**16) == b"\x00\x00\x01"
    pytest.raises(struct.error, types.uint_3, 2**24)


def test_int_len() -> None:
    assert types.uint_len(0) == b"\x00"
    assert types.uint_len(250) == b"\xfa"
    assert types.uint_len(251) == b"\xfc\xfb\x00"
    assert types.uint_len(2**16) == b"\xfd\x00\x00\x01"
    assert types.uint_len(2**24) == b"\xfe\x00\x00\x00\x01\x00\x00\x00\x00"


@pytest.mark.parametrize(
    "value, width",
    [
        (0, 1),
        (250, 1),
        (251, 3),
        (2**16 - 1, 3),
        (2**16, 4),
        (2**24 - 1, 4),
        (2**24, 9),
        (2**63 - 1, 9),
    ],
)
def test_int_len_round_trip(value: int, width: int) -> None:
    data = types.uint_len(value)
    # Always the narrowest form that fits
    assert len(data) == width
    reader = io.BytesIO(data)
    assert types.read_uint_len(reader) == value
    assert reader.read() == b""


def test_str_null() -> None:
    assert types.str_null(b"") == b"\x00"
    assert types.str_null(b"levon") == b"levon\x00"


def test_str_len() -> None:
    assert types.str_len(b"") == b"\x00"
    big_str = bytes(256)
    assert types.str_len(big_str) == b"\xfc\x00\x01" + big_str


def test_read_uint_len() -> None:
    assert types.read_uint_len(io.BytesIO(b"\xfa")) == 250
    assert types.read_uint_len(io.BytesIO(b"\xfc\x00\x01")) == 256
    assert types.read_uint_len(io.BytesIO(b"\xfd\x00\x00\x01")) == 2**16
    reader = io.BytesIO(b"\xfe\x00\x00\x00\x00\x00\x00\x00\x01")
    assert types.read_uint_len(reader) == 2**56


def test_read_field_length() -> None:
    reader = io.BytesIO(b"\xfb\x03abc")
    assert types.read_field_length(reader) == -1
    assert types.read_field_length(reader) == 3
    assert reader.read() == b"abc"


def test_read_str_fixed() -> None:
    reader = io.BytesIO(b"levon")
    assert types.read_str_fixed(reader, 2) == b"le"
    with pytest.raises(struct.error):
        types.read_str_fixed(reader, 5)


def test_read_str_null() -> None:
    assert types.read_str_null(io.BytesIO(b"\x00")) == b""
    assert types.read_str_null(io.BytesIO(b"levon\x00foo")) == b"levon"
    # Missing terminator reads to the end
    assert types.read_str_null(io.BytesIO(b"levon")) == b"levon"


def test_read_str_len() -> None:
    big_str = bytes(256)
    reader = io.BytesIO(b"\xfc\x00\x01" + big_str)
    assert types.read_str_len(reader) == big_str


def test_peek() -> None:
    reader = io.BytesIO(b"ab")
    assert types.peek(reader) == b"a"
    assert reader.read() == b"ab"
