from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import os
import platform
import struct
from dataclasses import dataclass, field, replace
from enum import Enum, auto
from types import TracebackType
from typing import Optional, Dict, Any, List, Tuple, Callable, TypeVar, Type, cast

from mysql_wire import packets
from mysql_wire.auth import AuthInfo, AuthState, PluginRegistry
from mysql_wire.charset import CharacterSet
from mysql_wire.config import ConnectionConfig, SslMode
from mysql_wire.constants import KERBEROS_PLUGIN, NATIVE_PASSWORD_PLUGIN
from mysql_wire.errors import (
    CommandsOutOfSyncError,
    ErrorCode,
    MysqlError,
    ProtocolDesyncError,
    ReadTimeout,
    Recovery,
    RemoteFileError,
    ServerError,
    SslRequiredButUnsupportedError,
    TransportError,
    UnsupportedAuthMethodError,
)
from mysql_wire.handshake import (
    ServerVersion,
    check_server_version,
    negotiate_capabilities,
)
from mysql_wire.infile import is_allowed, send_file
from mysql_wire.packets import Packet
from mysql_wire.results import Field, NullBitmap, ResultHeader, Row
from mysql_wire.stream import MysqlStream
from mysql_wire.tls import create_ssl_context
from mysql_wire.types import (
    Capabilities,
    Commands,
    ServerStatus,
    read_field_length,
    read_uint_1,
)
from mysql_wire.values import DecoderRegistry
from mysql_wire.version import __version__

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# Set while another result, or another statement of a batch, is still to come
PENDING_RESULTS = (
    ServerStatus.SERVER_MORE_RESULTS_EXISTS | ServerStatus.SERVER_STATUS_MORE_RESULTS
)


class CommandState(Enum):
    """Where the connection is in the reply stream of the current command"""

    IDLE = auto()
    COMMAND_SENT = auto()
    COLUMN_DEFINITIONS = auto()
    READING_ROWS = auto()


@dataclass(frozen=True)
class ConnectionState:
    """
    Everything the server has told us about the session.

    Protocol operations don't mutate this. They compute the next state and the connection
    swaps it in.
    """

    thread_id: int = -1
    version: ServerVersion = field(default_factory=lambda: ServerVersion(""))
    status_flags: ServerStatus = ServerStatus(0)
    capabilities: Capabilities = Capabilities(0)
    warning_count: int = 0
    seed: bytes = b""
    server_collation: int = 0
    auth_plugin_name: str = NATIVE_PASSWORD_PLUGIN
    command: CommandState = CommandState.IDLE

    def command_sent(self) -> ConnectionState:
        return replace(
            self,
            warning_count=0,
            status_flags=self.status_flags | ServerStatus.SERVER_MORE_RESULTS_EXISTS,
            command=CommandState.COMMAND_SENT,
        )

    def apply_ok(self, ok: packets.OkPacket) -> ConnectionState:
        status_flags = self.status_flags & ~PENDING_RESULTS
        if ok.status_flags is not None:
            status_flags = ok.status_flags
        return replace(
            self,
            status_flags=status_flags,
            warning_count=self.warning_count + ok.warnings,
        ).result_done()

    def apply_eof(self, eof: packets.EofPacket) -> ConnectionState:
        status_flags = self.status_flags
        if eof.status_flags is not None:
            status_flags = eof.status_flags
        return replace(
            self,
            status_flags=status_flags,
            warning_count=self.warning_count + eof.warnings,
        )

    def result_done(self) -> ConnectionState:
        """Either another result follows, or the command is complete"""
        if ServerStatus.SERVER_MORE_RESULTS_EXISTS in self.status_flags:
            return replace(self, command=CommandState.COMMAND_SENT)
        return replace(self, command=CommandState.IDLE)

    def failed(self) -> ConnectionState:
        """An ERR packet ends the command, including the rest of a batch"""
        return replace(
            self,
            status_flags=self.status_flags & ~PENDING_RESULTS,
            command=CommandState.IDLE,
        )


def fatal_guard(func: F) -> F:
    """Close the connection when an error says so, then re-raise it"""
    if inspect.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(self: Connection, *args: Any, **kwargs: Any) -> Any:
            try:
                return await func(self, *args, **kwargs)
            except MysqlError as e:
                self.handle_error(e)
                raise

        return cast(F, async_wrapper)

    @functools.wraps(func)
    def wrapper(self: Connection, *args: Any, **kwargs: Any) -> Any:
        try:
            return func(self, *args, **kwargs)
        except MysqlError as e:
            self.handle_error(e)
            raise

    return cast(F, wrapper)


def default_connect_attrs() -> Dict[str, str]:
    return {
        "_client_name": "mysql-wire",
        "_client_version": __version__,
        "_os": platform.system(),
        "_platform": platform.machine(),
        "_pid": str(os.getpid()),
    }


class Connection:
    """
    Client side of a single mysql protocol connection.

    Only one command may be in flight at a time. After sending a command, read its
    replies with `get_result`, `get_columns_data` and `fetch_data_row` until the
    connection is idle again.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        plugins: Optional[PluginRegistry] = None,
        decoders: Optional[DecoderRegistry] = None,
    ):
        self.config = config
        self.plugins = plugins or PluginRegistry()
        self.decoders = decoders or DecoderRegistry()

        self.stream: Optional[MysqlStream] = None
        self.state = ConnectionState()

        # The current row is owned by the connection until the next fetch
        self.null_bitmap: Optional[NullBitmap] = None
        self._row: Optional[Packet] = None

        self._last_query: Optional[str] = None
        self._secure = False
        self._closed = True

    @property
    def thread_id(self) -> int:
        return self.state.thread_id

    @property
    def version(self) -> ServerVersion:
        return self.state.version

    @property
    def server_status(self) -> ServerStatus:
        return self.state.status_flags

    @property
    def warning_count(self) -> int:
        return self.state.warning_count

    @property
    def capabilities(self) -> Capabilities:
        return self.state.capabilities

    @property
    def charset(self) -> CharacterSet:
        return self.config.charset

    @property
    def is_open(self) -> bool:
        return not self._closed

    @property
    def is_secure(self) -> bool:
        return self._secure

    async def __aenter__(self) -> Connection:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.close(was_open=self.is_open)

    def handle_error(self, e: MysqlError) -> None:
        if e.recovery is Recovery.CLOSE:
            logger.debug("Closing connection after fatal error: %s", e)
            self.abort()

    def reset_timeout(self, milliseconds: float) -> None:
        if self.stream is not None:
            self.stream.reset_timeout(milliseconds)

    def set_compression(self, enabled: bool) -> None:
        stream = self._stream()
        self.stream = (
            stream.with_compression() if enabled else stream.without_compression()
        )

    async def open(self) -> None:
        """Connect, negotiate capabilities, optionally upgrade to TLS and authenticate"""
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.config.host, self.config.port),
                timeout=self.config.connect_timeout or None,
            )
        except asyncio.TimeoutError:
            raise TransportError(
                f"Timed out connecting to {self.config.host}:{self.config.port}",
                ErrorCode.CONN_HOST_ERROR,
            ) from None
        except OSError as e:
            raise TransportError(
                f"Can't connect to {self.config.host}:{self.config.port} ({e})",
                ErrorCode.CONN_HOST_ERROR,
            ) from e

        self.stream = MysqlStream(
            reader, writer, max_packet_size=self.config.max_packet_size
        )
        self._closed = False
        self.reset_timeout(self.config.connect_timeout * 1000)
        try:
            await self.handshake()
        except BaseException:
            # A connection that didn't finish the handshake can't be used for anything
            self.abort()
            raise

        logger.info(
            "Connected to %s:%s (thread %s, server %s)",
            self.config.host,
            self.config.port,
            self.thread_id,
            self.version,
        )

    @fatal_guard
    async def handshake(self) -> None:
        stream = self._stream()
        greeting = packets.parse_handshake_v10(await self._read_packet())
        version = ServerVersion.parse(greeting.server_version)
        check_server_version(version)

        capabilities = negotiate_capabilities(greeting.capabilities, self.config)
        self.state = ConnectionState(
            thread_id=greeting.thread_id,
            version=version,
            status_flags=greeting.status_flags,
            capabilities=capabilities,
            seed=greeting.auth_data,
            server_collation=greeting.server_collation,
            auth_plugin_name=greeting.auth_plugin_name,
        )

        if Capabilities.CLIENT_SSL not in capabilities:
            if self.config.ssl_mode not in (SslMode.NONE, SslMode.PREFERRED):
                raise SslRequiredButUnsupportedError(self.config.host)
        else:
            await stream.write(
                packets.make_handshake_response_header(capabilities, self.charset)
            )
            await stream.start_tls(
                create_ssl_context(self.config, version),
                server_hostname=self.config.host,
            )
            self._secure = True
            # The greeting and the SSL request used 0 and 1
            stream.reset_seq(2)
            logger.info("Upgraded connection to %s to TLS", self.config.host)

        await self.authenticate(greeting.auth_plugin_name)

        if Capabilities.CLIENT_COMPRESS in capabilities:
            self.set_compression(True)
            logger.info("Switched to compressed protocol")

        self._stream().reset_seq()

    @fatal_guard
    async def authenticate(
        self, plugin_name: Optional[str] = None, reset: bool = False
    ) -> None:
        """
        Run the authentication exchange.

        Args:
            plugin_name: plugin the server asked for. Defaults to the one used last.
            reset: authenticate again as part of COM_CHANGE_USER, reusing the seed
                from the handshake.
        """
        stream = self._stream()
        plugin_name = plugin_name or self.state.auth_plugin_name
        if self.config.integrated_security:
            plugin_name = KERBEROS_PLUGIN
        plugin = self.plugins.get(plugin_name)

        data, auth_state = await plugin.start(self._auth_info(self.state.seed))
        kwargs: Dict[str, Any] = dict(
            capabilities=self.capabilities,
            client_charset=self.charset,
            username=self.config.user,
            auth_response=data or b"",
            database=self.config.database,
            client_plugin=plugin.name,
            connect_attrs={**default_connect_attrs(), **self.config.connect_attrs},
        )

        if reset:
            self.state = replace(self.state, warning_count=0)
            stream.reset_seq()
            payload = packets.make_com_change_user(**kwargs)
        else:
            payload = packets.make_handshake_response_41(**kwargs)

        self.state = replace(self.state, auth_plugin_name=plugin.name)
        await stream.write(payload)
        await self._auth_exchange(auth_state)

    async def _auth_exchange(self, auth_state: AuthState) -> None:
        stream = self._stream()
        try:
            while True:
                packet = await self._read_packet()

                if packet.is_ok:
                    read_uint_1(packet)
                    self.state = self.state.apply_ok(packets.parse_ok(packet))
                    return

                if packet.first_byte == packets.AUTH_SWITCH_MARKER:
                    if packet.length == 1:
                        raise UnsupportedAuthMethodError("mysql_old_password")
                    name, seed = packets.parse_auth_switch_request(packet)
                    logger.debug("Server switched authentication to %s", name)
                    plugin = self.plugins.get(name)
                    seed = seed[:-1] if seed.endswith(b"\x00") else seed
                    self.state = replace(self.state, seed=seed, auth_plugin_name=name)

                    await auth_state.aclose()
                    data, auth_state = await plugin.start(self._auth_info(seed))
                    await stream.write(data or b"")
                    continue

                if packet.first_byte == packets.MORE_DATA_MARKER:
                    more_data = packets.parse_auth_more_data(packet)
                    try:
                        data = await auth_state.asend(more_data)
                    except StopAsyncIteration:
                        raise ProtocolDesyncError(
                            "Server sent more authentication data than the plugin expects"
                        ) from None
                    if data is not None:
                        await stream.write(data)
                    continue

                raise ProtocolDesyncError(
                    f"Unexpected packet during authentication: {packet.first_byte}"
                )
        finally:
            await auth_state.aclose()

    def _auth_info(self, seed: bytes) -> AuthInfo:
        return AuthInfo(
            username=self.config.user,
            password=self.config.password,
            seed=seed,
            secure=self._secure,
        )

    @fatal_guard
    async def set_database(self, name: str) -> None:
        self._begin_command()
        logger.debug("COM_INIT_DB")
        await self._stream().write(packets.make_com_init_db(self.charset, name))
        await self._expect_ok()

    @fatal_guard
    async def send_query(self, sql: str) -> None:
        self._begin_command()
        logger.debug("COM_QUERY")
        await self._stream().write(packets.make_com_query(self.charset, sql))
        self._last_query = sql
        self.state = self.state.command_sent()

    @fatal_guard
    async def execute_statement(self, payload: bytes) -> None:
        """Send a COM_STMT_EXECUTE built with `packets.make_com_stmt_execute`"""
        self._begin_command()
        logger.debug("COM_STMT_EXECUTE")
        await self._stream().write(payload)
        self.state = self.state.command_sent()

    @fatal_guard
    async def get_result(self) -> ResultHeader:
        """
        Read the header of the next result.

        Returns:
            field_count 0 for an OK packet, otherwise the number of columns that follow
        """
        if self.state.command is not CommandState.COMMAND_SENT:
            raise CommandsOutOfSyncError()

        try:
            return await self._get_result()
        except (ReadTimeout, RemoteFileError):
            # The state already reflects whatever the server sent last
            raise
        except MysqlError:
            self.state = replace(
                self.state, status_flags=ServerStatus(0), command=CommandState.IDLE
            )
            raise

    async def _get_result(self) -> ResultHeader:
        packet = await self._read_packet()
        field_count = packets.parser(read_field_length)(packet)

        if field_count == -1:
            filename = packets.parse_local_infile_request(packet)
            await self._send_local_file(filename)
            return await self._get_result()

        if field_count == 0:
            ok = packets.parse_ok(packet)
            self.state = self.state.apply_ok(ok)
            return ResultHeader(
                field_count=0,
                affected_rows=ok.affected_rows,
                last_insert_id=ok.last_insert_id,
                message=ok.message,
            )

        self.state = replace(self.state, command=CommandState.COLUMN_DEFINITIONS)
        return ResultHeader(field_count=field_count)

    async def _send_local_file(self, filename: str) -> None:
        stream = self._stream()
        if not is_allowed(self.config.local_infile, filename, self._last_query):
            logger.warning("Refused server request for local file %s", filename)
            await stream.write_empty()
            await self._drain_after_infile()
            raise RemoteFileError(f"Refused to send local file {filename}")

        logger.debug("Sending local file %s", filename)
        try:
            await send_file(stream, filename)
        except OSError as e:
            logger.warning("Can't send local file %s: %s", filename, e)
            await stream.write_empty()
            await self._drain_after_infile()
            raise RemoteFileError(f"Can't read local file {filename}: {e}") from e

    async def _drain_after_infile(self) -> None:
        # The server answers the empty packet with its own result. Swallow it.
        try:
            packet = await self._read_packet()
        except ServerError:
            return
        if packet.is_ok:
            read_uint_1(packet)
            self.state = self.state.apply_ok(packets.parse_ok(packet))

    @fatal_guard
    async def get_columns_data(self, count: int) -> List[Field]:
        if self.state.command is not CommandState.COLUMN_DEFINITIONS:
            raise CommandsOutOfSyncError()

        fields = [await self._read_column() for _ in range(count)]
        self.check_eof(await self._read_packet())

        if ServerStatus.SERVER_STATUS_CURSOR_EXISTS in self.server_status:
            # Rows only come in response to COM_STMT_FETCH
            self.state = replace(self.state, command=CommandState.IDLE)
        else:
            self.state = replace(self.state, command=CommandState.READING_ROWS)
        return fields

    async def _read_column(self) -> Field:
        return packets.parse_column_definition_41(
            await self._read_packet(), self.capabilities, self.charset
        )

    @fatal_guard
    def check_eof(self, packet: Packet) -> None:
        """Consume a terminator packet, picking up its warnings and status flags"""
        if not packet.is_last_packet:
            raise ProtocolDesyncError(
                f"Expected EOF packet, got first byte {packet.first_byte}"
            )
        self.state = self.state.apply_eof(packets.parse_eof(packet))

    @fatal_guard
    async def fetch_data_row(self, stmt_id: int, column_count: int) -> bool:
        """
        Read the next row of the current result set.

        Args:
            stmt_id: statement id for binary protocol rows, or 0 for text protocol rows
        Returns:
            False if the result set is exhausted
        """
        if self.state.command is not CommandState.READING_ROWS:
            raise CommandsOutOfSyncError()

        packet = await self._read_packet()
        self.null_bitmap = None
        self._row = None

        if packet.is_last_packet:
            self.check_eof(packet)
            self.state = self.state.result_done()
            return False

        if stmt_id > 0:
            packets.parser(read_uint_1)(packet)  # packet header
            self.null_bitmap = NullBitmap.from_buffer(packet, column_count, offset=2)

        self._row = packet
        return True

    @fatal_guard
    def read_column_value(self, i: int, field: Field) -> Any:
        """Decode the next value of the current row. Columns must be read in order."""
        packet = self._current_row()
        decoder = self.decoders.get(field.type, field.flags, field.character_set)
        try:
            if self.null_bitmap is None:
                length = read_field_length(packet)
                return decoder.read_value(packet, length, length < 0)
            return decoder.read_value(packet, -1, self.null_bitmap.is_flipped(i))
        except (struct.error, ValueError, IndexError, ArithmeticError) as e:
            raise ProtocolDesyncError(
                f"Can't decode value of column {field.name}: {e}"
            ) from e

    @fatal_guard
    def skip_column_value(self, i: int, field: Field) -> None:
        packet = self._current_row()
        try:
            if self.null_bitmap is None:
                length = read_field_length(packet)
                if length > 0:
                    packet.seek(length, 1)
            elif not self.null_bitmap.is_flipped(i):
                decoder = self.decoders.get(field.type, field.flags, field.character_set)
                decoder.skip_value(packet)
        except (struct.error, ValueError, IndexError, ArithmeticError) as e:
            raise ProtocolDesyncError(
                f"Can't skip value of column {field.name}: {e}"
            ) from e

    async def fetch_row(self, stmt_id: int, fields: List[Field]) -> Optional[Row]:
        if not await self.fetch_data_row(stmt_id, len(fields)):
            return None
        values = [self.read_column_value(i, f) for i, f in enumerate(fields)]
        return Row(values, fields)

    @fatal_guard
    async def prepare_statement(self, sql: str) -> Tuple[int, List[Field]]:
        """
        Prepare a statement.

        Returns:
            The statement id and the descriptions of its parameters
        """
        self._begin_command()
        await self._stream().write(packets.make_com_stmt_prepare(self.charset, sql))
        self.state = replace(self.state, command=CommandState.COMMAND_SENT)
        self._last_query = sql

        prepare_ok = packets.parse_com_stmt_prepare_ok(await self._read_packet())
        logger.debug("COM_STMT_PREPARE -> statement %s", prepare_ok.stmt_id)
        self.state = replace(
            self.state, warning_count=self.warning_count + prepare_ok.warnings
        )

        params = []
        if prepare_ok.num_params > 0:
            params = [await self._read_column() for _ in range(prepare_ok.num_params)]
            self.check_eof(await self._read_packet())

        if prepare_ok.num_columns > 0:
            for _ in range(prepare_ok.num_columns):
                await self._read_packet()
            self.check_eof(await self._read_packet())

        self.state = replace(self.state, command=CommandState.IDLE)
        return prepare_ok.stmt_id, params

    @fatal_guard
    async def fetch_statement(self, stmt_id: int, num_rows: int) -> None:
        """Ask for more rows from a statement executed with a cursor"""
        self._begin_command()
        logger.debug("COM_STMT_FETCH statement %s", stmt_id)
        await self._stream().write(packets.make_com_stmt_fetch(stmt_id, num_rows))
        self.state = replace(self.state, command=CommandState.READING_ROWS)

    @fatal_guard
    async def close_statement(self, stmt_id: int) -> None:
        # The server doesn't reply to COM_STMT_CLOSE
        self._begin_command()
        logger.debug("COM_STMT_CLOSE statement %s", stmt_id)
        await self._stream().write(packets.make_com_stmt_close(stmt_id))

    async def ping(self) -> bool:
        """Check the server is alive. A failed ping closes the connection."""
        try:
            self._begin_command()
            await self._stream().write(packets.make_command(Commands.COM_PING))
            await self._expect_ok()
            return True
        except Exception:  # pylint: disable=broad-except
            logger.warning("Ping failed, closing connection", exc_info=True)
            self.abort()
            return False

    @fatal_guard
    async def reset(self) -> None:
        """Reset the session with COM_CHANGE_USER"""
        self._begin_command()
        logger.info("Resetting session of thread %s", self.thread_id)
        self.state = replace(self.state, command=CommandState.COMMAND_SENT)
        try:
            await self.authenticate(reset=True)
        except ServerError:
            self.state = self.state.failed()
            raise
        self._stream().reset_seq()

    async def close(self, was_open: bool = True) -> None:
        """Say goodbye to the server if we can. This never raises."""
        if self.stream is None:
            return

        if was_open and not self._closed:
            try:
                self.stream.reset_seq()
                await self.stream.write(packets.make_command(Commands.COM_QUIT))
            except Exception:  # pylint: disable=broad-except
                logger.debug("Failed to send COM_QUIT", exc_info=True)

        self.abort()

    def abort(self) -> None:
        """Close the transport without talking to the server"""
        self._closed = True
        self._row = None
        self.null_bitmap = None
        self.state = replace(self.state, command=CommandState.IDLE)
        if self.stream is None:
            return
        try:
            self.stream.close()
        except Exception:  # pylint: disable=broad-except
            logger.debug("Failed to close transport", exc_info=True)

    async def _expect_ok(self) -> None:
        self.state = replace(self.state, command=CommandState.COMMAND_SENT)
        packet = await self._read_packet()
        if not packet.is_ok:
            raise ProtocolDesyncError(
                f"Expected OK packet, got first byte {packet.first_byte}"
            )
        read_uint_1(packet)
        self.state = self.state.apply_ok(packets.parse_ok(packet))

    def _begin_command(self) -> None:
        stream = self._stream()
        if self._closed:
            raise TransportError(
                "MySQL server has gone away", ErrorCode.SERVER_GONE_ERROR
            )
        if self.state.command is not CommandState.IDLE:
            raise CommandsOutOfSyncError()
        stream.reset_seq()
        stream.reset_timeout(self.config.command_timeout * 1000)
        self.state = replace(self.state, warning_count=0)

    async def _read_packet(self) -> Packet:
        data = await self._stream().read()
        packet = Packet(data, self.charset, self.version.as_tuple())
        if packet.is_error:
            self.state = self.state.failed()
            raise packets.parse_error(packet)
        return packet

    def _current_row(self) -> Packet:
        if self._row is None:
            raise CommandsOutOfSyncError("No current row")
        return self._row

    def _stream(self) -> MysqlStream:
        if self.stream is None:
            raise TransportError(
                "Connection is not open", ErrorCode.SERVER_GONE_ERROR
            )
        return self.stream
