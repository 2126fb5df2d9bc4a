from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict

from mysql_wire.charset import CharacterSet


class SslMode(Enum):
    NONE = "none"
    PREFERRED = "preferred"
    REQUIRED = "required"
    VERIFY_CA = "verify_ca"
    VERIFY_FULL = "verify_full"


class LocalInfile(Enum):
    """Which files the server may request during LOAD DATA LOCAL INFILE"""

    ANY = "any"
    # Only files named in the query that was just sent
    QUERY = "query"
    DISABLED = "disabled"


@dataclass(frozen=True)
class ConnectionConfig:
    """
    Settings for a single connection.

    Args:
        connect_timeout: seconds allowed for the socket connect and the whole handshake
        command_timeout: seconds allowed per command. 0 disables the deadline.
        certificate_file: PEM file holding the client certificate and its private key
        certificate_store: directory of PEM files to pick the client certificate from
        certificate_thumbprint: SHA-1 of the DER encoded certificate to pick from the store
        max_packet_size: largest logical packet this client will send
        connect_attrs: extra connection attributes, merged over the defaults
    """

    host: str = "localhost"
    port: int = 3306
    user: str = ""
    password: str = ""
    database: Optional[str] = None
    charset: CharacterSet = CharacterSet.utf8mb4
    connect_timeout: float = 15
    command_timeout: float = 30
    ssl_mode: SslMode = SslMode.PREFERRED
    ssl_ca: Optional[str] = None
    certificate_file: Optional[str] = None
    certificate_password: Optional[str] = None
    certificate_store: Optional[str] = None
    certificate_thumbprint: Optional[str] = None
    use_compression: bool = False
    allow_batch: bool = True
    interactive: bool = False
    use_affected_rows: bool = False
    integrated_security: bool = False
    max_packet_size: int = 2**30
    local_infile: LocalInfile = LocalInfile.ANY
    connect_attrs: Dict[str, str] = field(default_factory=dict)
