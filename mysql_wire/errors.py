from enum import Enum, IntEnum, auto
from typing import Dict, Optional


class ErrorCode(IntEnum):
    """https://dev.mysql.com/doc/mysql-errors/8.0/en/client-error-reference.html"""

    UNKNOWN_ERROR = 2000
    CONN_HOST_ERROR = 2003
    SERVER_GONE_ERROR = 2006
    VERSION_ERROR = 2007
    SERVER_LOST = 2013
    COMMANDS_OUT_OF_SYNC = 2014
    NET_PACKET_TOO_LARGE = 2020
    SSL_CONNECTION_ERROR = 2026
    MALFORMED_PACKET = 2027
    AUTH_PLUGIN_CANNOT_LOAD = 2059
    CERTIFICATE_NOT_FOUND = 2061
    LOAD_DATA_LOCAL_INFILE_REJECTED = 2068
    READ_TIMEOUT = 4031


SQLSTATES: Dict[int, bytes] = {
    ErrorCode.CONN_HOST_ERROR: b"08001",
    ErrorCode.SERVER_GONE_ERROR: b"08S01",
    ErrorCode.SERVER_LOST: b"08S01",
    ErrorCode.MALFORMED_PACKET: b"08S01",
    ErrorCode.SSL_CONNECTION_ERROR: b"08001",
}


def get_sqlstate(code: int) -> bytes:
    return SQLSTATES.get(code, b"HY000")


class Recovery(Enum):
    """What happens to the connection once an error is raised"""

    NONE = auto()
    # Nothing was mutated, but the stream may be mid-packet. The caller decides.
    ABANDON = auto()
    CLOSE = auto()


class MysqlError(Exception):
    fatal = False

    def __init__(self, msg: str, code: int = ErrorCode.UNKNOWN_ERROR):
        super().__init__(f"{code}: {msg}")
        self.msg = msg
        self.code = code

    @property
    def sqlstate(self) -> str:
        return get_sqlstate(self.code).decode()

    @property
    def recovery(self) -> Recovery:
        return Recovery.CLOSE if self.fatal else Recovery.NONE


class ServerError(MysqlError):
    """An ERR packet sent by the server"""

    def __init__(self, msg: str, code: int, sqlstate: Optional[str] = None):
        super().__init__(msg, code)
        self._sqlstate = sqlstate

    @property
    def sqlstate(self) -> str:
        return self._sqlstate or super().sqlstate


class TransportError(MysqlError):
    fatal = True

    def __init__(self, msg: str, code: int = ErrorCode.SERVER_LOST):
        super().__init__(msg, code)


class ConnectionClosed(TransportError):
    def __init__(self, msg: str = "Lost connection to MySQL server during query"):
        super().__init__(msg, ErrorCode.SERVER_LOST)


class ReadTimeout(MysqlError):
    def __init__(self, msg: str = "Timeout expired while reading from the server"):
        super().__init__(msg, ErrorCode.READ_TIMEOUT)

    @property
    def recovery(self) -> Recovery:
        return Recovery.ABANDON


class ProtocolDesyncError(MysqlError):
    fatal = True

    def __init__(self, msg: str):
        super().__init__(msg, ErrorCode.MALFORMED_PACKET)


class CommandsOutOfSyncError(MysqlError):
    def __init__(
        self, msg: str = "Commands out of sync; you can't run this command now"
    ):
        super().__init__(msg, ErrorCode.COMMANDS_OUT_OF_SYNC)


class PacketTooLargeError(MysqlError):
    def __init__(self, size: int, limit: int):
        super().__init__(
            f"Packet of {size} bytes is larger than max_packet_size ({limit})",
            ErrorCode.NET_PACKET_TOO_LARGE,
        )


class UnsupportedServerError(MysqlError):
    def __init__(self, msg: str):
        super().__init__(msg, ErrorCode.VERSION_ERROR)


class UnsupportedAuthMethodError(MysqlError):
    def __init__(self, name: str):
        super().__init__(
            f"Authentication plugin '{name}' is not supported",
            ErrorCode.AUTH_PLUGIN_CANNOT_LOAD,
        )
        self.name = name


class CertificateNotFoundError(MysqlError):
    def __init__(self, msg: str):
        super().__init__(msg, ErrorCode.CERTIFICATE_NOT_FOUND)


class FileCertificateNotSupportedError(CertificateNotFoundError):
    """File based client certificates need a 5.1 or newer server"""

    def __init__(self, version: str):
        super().__init__(
            f"Server {version} does not support file based client certificates"
        )


class SslRequiredButUnsupportedError(MysqlError):
    def __init__(self, host: str):
        super().__init__(
            f"The host {host} does not support SSL connections",
            ErrorCode.SSL_CONNECTION_ERROR,
        )


class RemoteFileError(MysqlError):
    def __init__(self, msg: str = "Error during LOAD DATA LOCAL INFILE"):
        super().__init__(msg, ErrorCode.LOAD_DATA_LOCAL_INFILE_REJECTED)
