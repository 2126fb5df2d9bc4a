"""Implementation of the client side of the mysql wire protocol"""

from mysql_wire.auth import AuthPlugin, PluginRegistry
from mysql_wire.charset import CharacterSet
from mysql_wire.config import ConnectionConfig, SslMode, LocalInfile
from mysql_wire.connection import Connection, ConnectionState, CommandState
from mysql_wire.errors import MysqlError, ServerError, Recovery
from mysql_wire.results import Field, ResultHeader, Row
from mysql_wire.types import ColumnType, ServerStatus, Capabilities
from mysql_wire.values import DecoderRegistry, ValueDecoder
