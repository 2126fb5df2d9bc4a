from __future__ import annotations
import io
import struct

from enum import IntEnum, IntFlag


class ColumnType(IntEnum):
    DECIMAL = 0x00
    TINY = 0x01
    SHORT = 0x02
    LONG = 0x03
    FLOAT = 0x04
    DOUBLE = 0x05
    NULL = 0x06
    TIMESTAMP = 0x07
    LONGLONG = 0x08
    INT24 = 0x09
    DATE = 0x0A
    TIME = 0x0B
    DATETIME = 0x0C
    YEAR = 0x0D
    NEWDATE = 0x0E
    VARCHAR = 0x0F
    BIT = 0x10
    TIMESTAMP2 = 0x11
    DATETIME2 = 0x12
    TIME2 = 0x13
    TYPED_ARRAY = 0x14
    INVALID = 0xF3
    BOOL = 0xF4
    JSON = 0xF5
    NEWDECIMAL = 0xF6
    ENUM = 0xF7
    SET = 0xF8
    TINY_BLOB = 0xF9
    MEDIUM_BLOB = 0xFA
    LONG_BLOB = 0xFB
    BLOB = 0xFC
    VAR_STRING = 0xFD
    STRING = 0xFE
    GEOMETRY = 0xFF

    @classmethod
    def _missing_(cls, value: object) -> ColumnType:
        return cls.INVALID


class Commands(IntEnum):
    COM_QUIT = 0x01
    COM_INIT_DB = 0x02
    COM_QUERY = 0x03
    COM_PING = 0x0E
    COM_CHANGE_USER = 0x11
    COM_STMT_PREPARE = 0x16
    COM_STMT_EXECUTE = 0x17
    COM_STMT_CLOSE = 0x19
    COM_STMT_RESET = 0x1A
    COM_STMT_FETCH = 0x1C


class ColumnDefinition(IntFlag):
    NOT_NULL_FLAG = 0x0001
    PRI_KEY_FLAG = 0x0002
    UNIQUE_KEY_FLAG = 0x0004
    MULTIPLE_KEY_FLAG = 0x0008
    BLOB_FLAG = 0x0010
    UNSIGNED_FLAG = 0x0020
    ZEROFILL_FLAG = 0x0040
    BINARY_FLAG = 0x0080
    ENUM_FLAG = 0x0100
    AUTO_INCREMENT_FLAG = 0x0200
    TIMESTAMP_FLAG = 0x0400
    SET_FLAG = 0x0800
    NO_DEFAULT_VALUE_FLAG = 0x1000
    ON_UPDATE_NOW_FLAG = 0x2000
    NUM_FLAG = 0x8000


class Capabilities(IntFlag):
    CLIENT_LONG_PASSWORD = 1 << 0
    CLIENT_FOUND_ROWS = 1 << 1
    CLIENT_LONG_FLAG = 1 << 2
    CLIENT_CONNECT_WITH_DB = 1 << 3
    CLIENT_NO_SCHEMA = 1 << 4
    CLIENT_COMPRESS = 1 << 5
    CLIENT_ODBC = 1 << 6
    CLIENT_LOCAL_FILES = 1 << 7
    CLIENT_IGNORE_SPACE = 1 << 8
    CLIENT_PROTOCOL_41 = 1 << 9
    CLIENT_INTERACTIVE = 1 << 10
    CLIENT_SSL = 1 << 11
    CLIENT_IGNORE_SIGPIPE = 1 << 12
    CLIENT_TRANSACTIONS = 1 << 13
    CLIENT_RESERVED = 1 << 14
    CLIENT_SECURE_CONNECTION = 1 << 15
    CLIENT_MULTI_STATEMENTS = 1 << 16
    CLIENT_MULTI_RESULTS = 1 << 17
    CLIENT_PS_MULTI_RESULTS = 1 << 18
    CLIENT_PLUGIN_AUTH = 1 << 19
    CLIENT_CONNECT_ATTRS = 1 << 20
    CLIENT_PLUGIN_AUTH_LENENC_CLIENT_DATA = 1 << 21
    CLIENT_CAN_HANDLE_EXPIRED_PASSWORDS = 1 << 22
    CLIENT_SESSION_TRACK = 1 << 23
    CLIENT_DEPRECATE_EOF = 1 << 24
    CLIENT_OPTIONAL_RESULTSET_METADATA = 1 << 25
    CLIENT_ZSTD_COMPRESSION_ALGORITHM = 1 << 26
    CLIENT_QUERY_ATTRIBUTES = 1 << 27
    MULTI_FACTOR_AUTHENTICATION = 1 << 28
    CLIENT_CAPABILITY_EXTENSION = 1 << 29
    CLIENT_SSL_VERIFY_SERVER_CERT = 1 << 30
    CLIENT_REMEMBER_OPTIONS = 1 << 31


class ServerStatus(IntFlag):
    SERVER_STATUS_IN_TRANS = 0x0001
    SERVER_STATUS_AUTOCOMMIT = 0x0002
    # Pre-4.1 "more results" bit, still reserved
    SERVER_STATUS_MORE_RESULTS = 0x0004
    SERVER_MORE_RESULTS_EXISTS = 0x0008
    SERVER_STATUS_NO_GOOD_INDEX_USED = 0x0010
    SERVER_STATUS_NO_INDEX_USED = 0x0020
    SERVER_STATUS_CURSOR_EXISTS = 0x0040
    SERVER_STATUS_LAST_ROW_SENT = 0x0080
    SERVER_STATUS_DB_DROPPED = 0x0100
    SERVER_STATUS_NO_BACKSLASH_ESCAPES = 0x0200
    SERVER_STATUS_METADATA_CHANGED = 0x0400
    SERVER_QUERY_WAS_SLOW = 0x0800
    SERVER_PS_OUT_PARAMS = 0x1000
    SERVER_STATUS_IN_TRANS_READONLY = 0x2000
    SERVER_SESSION_STATE_CHANGED = 0x4000


class ComStmtExecuteFlags(IntFlag):
    CURSOR_TYPE_NO_CURSOR = 0x00
    CURSOR_TYPE_READ_ONLY = 0x01
    CURSOR_TYPE_FOR_UPDATE = 0x02
    CURSOR_TYPE_SCROLLABLE = 0x04


# Leading bytes of a length-encoded integer
LENENC_NULL = 0xFB
LENENC_2 = 0xFC
LENENC_3 = 0xFD
LENENC_8 = 0xFE


def uint_len(i: int) -> bytes:
    if i < 251:
        return struct.pack("<B", i)
    if i < 2**16:
        return struct.pack("<BH", LENENC_2, i)
    if i < 2**24:
        return struct.pack("<BL", LENENC_3, i)[:-1]

    return struct.pack("<BQ", LENENC_8, i)


def uint_1(i: int) -> bytes:
    return struct.pack("<B", i)


def uint_2(i: int) -> bytes:
    return struct.pack("<H", i)


def uint_3(i: int) -> bytes:
    return struct.pack("<HB", i & 0xFFFF, i >> 16)


def uint_4(i: int) -> bytes:
    return struct.pack("<I", i)


def uint_8(i: int) -> bytes:
    return struct.pack("<Q", i)


def str_fixed(l: int, s: bytes) -> bytes:
    return struct.pack(f"<{l}s", s)


def str_null(s: bytes) -> bytes:
    l = len(s)
    return struct.pack(f"<{l}sB", s, 0)


def str_len(s: bytes) -> bytes:
    l = len(s)
    return uint_len(l) + str_fixed(l, s)


def read_int_1(reader: io.BytesIO) -> int:
    data = reader.read(1)
    return struct.unpack("<b", data)[0]


def read_uint_1(reader: io.BytesIO) -> int:
    data = reader.read(1)
    return struct.unpack("<B", data)[0]


def read_int_2(reader: io.BytesIO) -> int:
    data = reader.read(2)
    return struct.unpack("<h", data)[0]


def read_uint_2(reader: io.BytesIO) -> int:
    data = reader.read(2)
    return struct.unpack("<H", data)[0]


def read_uint_3(reader: io.BytesIO) -> int:
    data = reader.read(3)
    t = struct.unpack("<HB", data)
    return t[0] + (t[1] << 16)


def read_int_4(reader: io.BytesIO) -> int:
    data = reader.read(4)
    return struct.unpack("<i", data)[0]


def read_uint_4(reader: io.BytesIO) -> int:
    data = reader.read(4)
    return struct.unpack("<I", data)[0]


def read_int_8(reader: io.BytesIO) -> int:
    data = reader.read(8)
    return struct.unpack("<q", data)[0]


def read_uint_8(reader: io.BytesIO) -> int:
    data = reader.read(8)
    return struct.unpack("<Q", data)[0]


def read_float(reader: io.BytesIO) -> float:
    data = reader.read(4)
    return struct.unpack("<f", data)[0]


def read_double(reader: io.BytesIO) -> float:
    data = reader.read(8)
    return struct.unpack("<d", data)[0]


def read_uint_len(reader: io.BytesIO) -> int:
    i = read_uint_1(reader)

    if i == LENENC_8:
        return read_uint_8(reader)

    if i == LENENC_3:
        return read_uint_3(reader)

    if i == LENENC_2:
        return read_uint_2(reader)

    return i


def read_field_length(reader: io.BytesIO) -> int:
    """
    Read a length-encoded integer where 0xFB means NULL.

    Returns:
        -1 for NULL, otherwise the decoded length
    """
    if peek(reader) == uint_1(LENENC_NULL):
        reader.read(1)
        return -1
    return read_uint_len(reader)


def read_str_fixed(reader: io.BytesIO, l: int) -> bytes:
    data = reader.read(l)
    if len(data) != l:
        raise struct.error(f"Expected {l} bytes, got {len(data)}")
    return data


def read_str_null(reader: io.BytesIO) -> bytes:
    """Read up to a NUL byte, or to the end of the buffer if there isn't one"""
    data = b""
    while True:
        b = reader.read(1)
        if b in (b"\x00", b""):
            return data
        data += b


def read_str_len(reader: io.BytesIO) -> bytes:
    l = read_uint_len(reader)
    return read_str_fixed(reader, l)


def read_str_rest(reader: io.BytesIO) -> bytes:
    return reader.read()


def peek(reader: io.BytesIO, num_bytes: int = 1) -> bytes:
    pos = reader.tell()
    val = reader.read(num_bytes)
    reader.seek(pos)
    return val
