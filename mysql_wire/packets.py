from __future__ import annotations

import functools
import io
import struct
from dataclasses import dataclass
from typing import Optional, Dict, Any, Sequence, Callable, Tuple, TypeVar, cast

from mysql_wire.charset import CharacterSet, charset_for_collation
from mysql_wire.constants import CLIENT_MAX_PACKET_SIZE, NATIVE_PASSWORD_PLUGIN
from mysql_wire.errors import MysqlError, ProtocolDesyncError, ServerError
from mysql_wire.results import Field, NullBitmap
from mysql_wire.types import (
    Capabilities,
    ColumnDefinition,
    ColumnType,
    Commands,
    ComStmtExecuteFlags,
    ServerStatus,
    uint_1,
    uint_2,
    uint_4,
    str_null,
    str_len,
    peek,
    read_uint_1,
    read_uint_2,
    read_uint_4,
    read_uint_len,
    read_str_fixed,
    read_str_len,
    read_str_null,
    read_str_rest,
)
from mysql_wire import values

F = TypeVar("F", bound=Callable[..., Any])

EOF_MARKER = 0xFE
ERR_MARKER = 0xFF
OK_MARKER = 0x00
MORE_DATA_MARKER = 0x01
AUTH_SWITCH_MARKER = 0xFE

Version = Tuple[int, int, int]


class Packet(io.BytesIO):
    """
    A single logical packet read from the server.

    The packet owns its buffer. Whoever reads from it advances the cursor, so pass it along
    instead of sharing it.

    Args:
        data: packet payload
        charset: character set used to decode strings in the payload
        version: server version, for layouts that depend on it
    """

    def __init__(
        self,
        data: bytes,
        charset: CharacterSet = CharacterSet.utf8mb4,
        version: Version = (0, 0, 0),
    ):
        super().__init__(data)
        self.charset = charset
        self.version = version
        self.length = len(data)
        self._first = data[0] if data else None

    @property
    def is_last_packet(self) -> bool:
        """
        EOF packets start with 0xFE and are shorter than 9 bytes.

        A data row starting with a 0xFE length prefix is at least 9 bytes, so this is how the
        protocol tells them apart.
        """
        return self._first == EOF_MARKER and self.length < 9

    @property
    def is_error(self) -> bool:
        return self._first == ERR_MARKER

    @property
    def is_ok(self) -> bool:
        return self._first == OK_MARKER

    @property
    def has_more_data(self) -> bool:
        return self.tell() < self.length

    @property
    def first_byte(self) -> Optional[int]:
        return self._first

    def read_str(self) -> str:
        """Read a length encoded string in the packet's character set"""
        return self.charset.decode(read_str_len(self))

    def __repr__(self) -> str:
        return f"Packet(length={self.length}, pos={self.tell()})"


def parser(func: F) -> F:
    """Turn structural decoding failures into ProtocolDesyncError"""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (struct.error, IndexError, UnicodeDecodeError) as e:
            raise ProtocolDesyncError(
                f"Malformed packet in {func.__name__}: {e}"
            ) from e

    return cast(F, wrapper)


@dataclass
class HandshakeV10:
    protocol_version: int
    server_version: str
    thread_id: int
    auth_data: bytes
    capabilities: Capabilities
    server_collation: int
    status_flags: ServerStatus
    auth_plugin_name: str


@dataclass
class OkPacket:
    affected_rows: int
    last_insert_id: int
    status_flags: Optional[ServerStatus]
    warnings: int
    message: str = ""


@dataclass
class EofPacket:
    warnings: int
    status_flags: Optional[ServerStatus]


@dataclass
class StmtPrepareOk:
    stmt_id: int
    num_columns: int
    num_params: int
    warnings: int = 0


@parser
def parse_error(packet: Packet) -> ServerError:
    packet.seek(0)
    read_uint_1(packet)  # status tag
    code = read_uint_2(packet)
    sqlstate = None
    if peek(packet) == b"#":
        packet.read(1)
        sqlstate = read_str_fixed(packet, 5).decode("ascii")
    msg = packet.charset.decode(read_str_rest(packet))
    return ServerError(msg, code, sqlstate)


@parser
def parse_handshake_v10(packet: Packet) -> HandshakeV10:
    protocol_version = read_uint_1(packet)
    server_version = read_str_null(packet).decode("latin1")
    thread_id = read_uint_4(packet)
    auth_data = read_str_null(packet)

    capabilities = Capabilities(0)
    server_collation = 0
    status_flags = ServerStatus(0)

    if packet.has_more_data:
        capabilities = Capabilities(read_uint_2(packet))

    if packet.has_more_data:
        server_collation = read_uint_1(packet)
        status_flags = ServerStatus(read_uint_2(packet))
        capabilities |= Capabilities(read_uint_2(packet) << 16)
        read_str_fixed(packet, 11)  # auth data length and reserved
        auth_data += read_str_null(packet)

    auth_plugin_name = ""
    if Capabilities.CLIENT_PLUGIN_AUTH in capabilities:
        auth_plugin_name = read_str_null(packet).decode("ascii")

    return HandshakeV10(
        protocol_version=protocol_version,
        server_version=server_version,
        thread_id=thread_id,
        auth_data=auth_data,
        capabilities=capabilities,
        server_collation=server_collation,
        status_flags=status_flags,
        auth_plugin_name=auth_plugin_name or NATIVE_PASSWORD_PLUGIN,
    )


@parser
def parse_ok(packet: Packet) -> OkPacket:
    """Parse the rest of an OK packet. The 0x00 tag has already been read."""
    affected_rows = read_uint_len(packet)
    last_insert_id = read_uint_len(packet)
    status_flags = None
    warnings = 0
    message = ""
    if packet.has_more_data:
        status_flags = ServerStatus(read_uint_2(packet))
    if packet.has_more_data:
        warnings = read_uint_2(packet)
    if packet.has_more_data:
        message = packet.charset.decode(read_str_rest(packet))
    return OkPacket(
        affected_rows=affected_rows,
        last_insert_id=last_insert_id,
        status_flags=status_flags,
        warnings=warnings,
        message=message,
    )


@parser
def parse_eof(packet: Packet) -> EofPacket:
    read_uint_1(packet)  # 0xFE
    warnings = 0
    status_flags = None
    if packet.has_more_data:
        warnings = read_uint_2(packet)
        status_flags = ServerStatus(read_uint_2(packet))
    return EofPacket(warnings=warnings, status_flags=status_flags)


@parser
def parse_column_definition_41(
    packet: Packet, capabilities: Capabilities, default_charset: CharacterSet
) -> Field:
    catalog = packet.read_str()
    schema = packet.read_str()
    table = packet.read_str()
    org_table = packet.read_str()
    name = packet.read_str()
    org_name = packet.read_str()
    read_uint_len(packet)  # Length of the following fields
    collation = read_uint_2(packet)
    column_length = read_uint_4(packet)
    column_type = ColumnType(read_uint_1(packet))
    if Capabilities.CLIENT_LONG_FLAG in capabilities:
        flags = read_uint_2(packet)
    else:
        flags = read_uint_1(packet)
    decimals = read_uint_1(packet)
    # Anything left is filler

    return Field(
        catalog=catalog,
        schema=schema,
        table=table,
        org_table=org_table,
        name=name,
        org_name=org_name,
        collation=collation,
        character_set=charset_for_collation(collation, default_charset),
        column_length=column_length,
        type=column_type,
        flags=ColumnDefinition(flags),
        decimals=decimals,
    )


@parser
def parse_auth_switch_request(packet: Packet) -> Tuple[str, bytes]:
    read_uint_1(packet)  # status tag
    plugin_name = read_str_null(packet).decode("ascii")
    plugin_provided_data = read_str_rest(packet)
    return plugin_name, plugin_provided_data


@parser
def parse_auth_more_data(packet: Packet) -> bytes:
    read_uint_1(packet)  # status tag
    return read_str_rest(packet)


@parser
def parse_com_stmt_prepare_ok(packet: Packet) -> StmtPrepareOk:
    status = read_uint_1(packet)
    if status != OK_MARKER:
        raise ProtocolDesyncError(
            f"Expected COM_STMT_PREPARE_OK, got status {status:#04x}"
        )
    stmt_id = read_uint_4(packet)
    num_columns = read_uint_2(packet)
    num_params = read_uint_2(packet)
    warnings = 0
    if packet.has_more_data:
        read_uint_1(packet)  # filler
        warnings = read_uint_2(packet)
    return StmtPrepareOk(
        stmt_id=stmt_id,
        num_columns=num_columns,
        num_params=num_params,
        warnings=warnings,
    )


@parser
def parse_local_infile_request(packet: Packet) -> str:
    """Parse the file name. The 0xFB tag has already been read."""
    return packet.charset.decode(read_str_null(packet))


def make_handshake_response_header(
    capabilities: Capabilities, client_charset: CharacterSet
) -> bytes:
    """The fixed part of the handshake response. On its own, this is an SSLRequest."""
    return _concat(
        uint_4(capabilities),
        uint_4(CLIENT_MAX_PACKET_SIZE),
        uint_1(client_charset.default_collation),
        bytes(23),  # reserved
    )


# pylint: disable=too-many-arguments
def make_handshake_response_41(
    capabilities: Capabilities,
    client_charset: CharacterSet,
    username: str,
    auth_response: bytes,
    database: Optional[str] = None,
    client_plugin: Optional[str] = None,
    connect_attrs: Optional[Dict[str, str]] = None,
) -> bytes:
    parts = [
        make_handshake_response_header(capabilities, client_charset),
        str_null(client_charset.encode(username)),
        _auth_response(capabilities, auth_response),
    ]

    if Capabilities.CLIENT_CONNECT_WITH_DB in capabilities:
        parts.append(str_null(client_charset.encode(database or "")))

    if Capabilities.CLIENT_PLUGIN_AUTH in capabilities:
        parts.append(str_null(client_charset.encode(client_plugin or "")))

    if Capabilities.CLIENT_CONNECT_ATTRS in capabilities:
        parts.append(make_connect_attrs(client_charset, connect_attrs or {}))

    return _concat(*parts)


# pylint: disable=too-many-arguments
def make_com_change_user(
    capabilities: Capabilities,
    client_charset: CharacterSet,
    username: str,
    auth_response: bytes,
    database: Optional[str] = None,
    client_plugin: Optional[str] = None,
    connect_attrs: Optional[Dict[str, str]] = None,
) -> bytes:
    parts = [
        uint_1(Commands.COM_CHANGE_USER),
        str_null(client_charset.encode(username)),
        _auth_response(capabilities, auth_response),
        str_null(client_charset.encode(database or "")),
        uint_2(client_charset.default_collation),
    ]

    if Capabilities.CLIENT_PLUGIN_AUTH in capabilities:
        parts.append(str_null(client_charset.encode(client_plugin or "")))

    if Capabilities.CLIENT_CONNECT_ATTRS in capabilities:
        parts.append(make_connect_attrs(client_charset, connect_attrs or {}))

    return _concat(*parts)


def make_connect_attrs(client_charset: CharacterSet, attrs: Dict[str, str]) -> bytes:
    """
    Encode connection attributes.

    Names and values are prefixed with a single length byte, so anything longer than 250 bytes
    is truncated. The whole blob is length encoded.
    """
    parts = []
    for key, value in attrs.items():
        parts.append(_short_str(client_charset.encode(key)))
        parts.append(_short_str(client_charset.encode(str(value))))
    return str_len(_concat(*parts))


def make_command(command: Commands, payload: bytes = b"") -> bytes:
    return _concat(uint_1(command), payload)


def make_com_query(client_charset: CharacterSet, sql: str) -> bytes:
    return make_command(Commands.COM_QUERY, client_charset.encode(sql))


def make_com_init_db(client_charset: CharacterSet, database: str) -> bytes:
    return make_command(Commands.COM_INIT_DB, client_charset.encode(database))


def make_com_stmt_prepare(client_charset: CharacterSet, sql: str) -> bytes:
    return make_command(Commands.COM_STMT_PREPARE, client_charset.encode(sql))


def make_com_stmt_close(stmt_id: int) -> bytes:
    return make_command(Commands.COM_STMT_CLOSE, uint_4(stmt_id))


def make_com_stmt_fetch(stmt_id: int, num_rows: int) -> bytes:
    return make_command(Commands.COM_STMT_FETCH, uint_4(stmt_id) + uint_4(num_rows))


def make_com_stmt_execute(
    client_charset: CharacterSet,
    stmt_id: int,
    params: Sequence[Any] = (),
    flags: ComStmtExecuteFlags = ComStmtExecuteFlags.CURSOR_TYPE_NO_CURSOR,
) -> bytes:
    parts = [
        uint_1(Commands.COM_STMT_EXECUTE),
        uint_4(stmt_id),
        uint_1(flags),
        uint_4(1),  # iteration count. Always 1.
    ]

    if params:
        null_bitmap = NullBitmap.new(len(params))
        param_types = []
        param_values = []

        for i, param in enumerate(params):
            if param is None:
                null_bitmap.flip(i)
                param_types.append(uint_1(ColumnType.NULL) + uint_1(0))
                continue
            param_type, unsigned, data = values.encode_param(client_charset, param)
            param_types.append(uint_1(param_type) + uint_1(0x80 if unsigned else 0))
            param_values.append(data)

        parts.append(bytes(null_bitmap))
        parts.append(uint_1(1))  # new-params-bound-flag
        parts.extend(param_types)
        parts.extend(param_values)

    return _concat(*parts)


def _auth_response(capabilities: Capabilities, auth_response: bytes) -> bytes:
    if Capabilities.CLIENT_SECURE_CONNECTION in capabilities:
        if len(auth_response) > 255:
            raise MysqlError(
                f"Authentication response is too long ({len(auth_response)} bytes)"
            )
        return uint_1(len(auth_response)) + auth_response
    return str_null(auth_response)


def _short_str(s: bytes) -> bytes:
    s = s[:250]
    return uint_1(len(s)) + s


def _concat(*parts: bytes) -> bytes:
    return b"".join(parts)
