from __future__ import annotations

import logging
from dataclasses import dataclass
from hashlib import sha1, sha256
from typing import Optional, Dict, AsyncGenerator, Tuple, Iterable, Type

from mysql_wire.constants import KERBEROS_PLUGIN
from mysql_wire.errors import UnsupportedAuthMethodError, ProtocolDesyncError
from mysql_wire import utils

logger = logging.getLogger(__name__)


@dataclass
class AuthInfo:
    """
    What a plugin knows when it starts.

    Args:
        seed: challenge from the handshake or from an auth switch request
        secure: whether the connection is encrypted
    """

    username: str
    password: str
    seed: bytes
    secure: bool = False


# Plugins yield the next response to send.
#   bytes: send them, possibly as an empty packet
#   None: send nothing and read the next packet from the server
# The payload of the server's next "more data" packet is sent back in.
AuthState = AsyncGenerator[Optional[bytes], bytes]


class AuthPlugin:
    """
    Abstract base class for client authentication plugins.
    """

    name = ""

    async def auth(self, auth_info: AuthInfo) -> AuthState:
        """
        Create an async generator that drives the authentication exchange.

        The first value yielded is the initial response. It goes in the handshake response,
        or in COM_CHANGE_USER.
        """
        yield b""

    async def start(self, auth_info: AuthInfo) -> Tuple[Optional[bytes], AuthState]:
        state = self.auth(auth_info)
        data = await state.__anext__()
        return data, state


class NativePasswordAuthPlugin(AuthPlugin):
    """
    Standard plugin that uses a password hashing method.

    The response is SHA1(password) XOR SHA1(seed <concat> SHA1(SHA1(password))).
    """

    name = "mysql_native_password"

    async def auth(self, auth_info: AuthInfo) -> AuthState:
        if not auth_info.password:
            yield b""
            return
        yield scramble_native_password(auth_info.password.encode("utf-8"), auth_info.seed)


class ClearPasswordAuthPlugin(AuthPlugin):
    """
    Sends the password as-is. Only safe over TLS, or over unix sockets.
    """

    name = "mysql_clear_password"

    async def auth(self, auth_info: AuthInfo) -> AuthState:
        yield auth_info.password.encode("utf-8") + b"\x00"


class CachingSha2PasswordAuthPlugin(AuthPlugin):
    """
    Default plugin of MySQL 8.

    The server first tries a fast path against its cache of password hashes. If that
    misses, the client has to send the password itself: in the clear over TLS, or RSA
    encrypted with the server's public key otherwise.
    """

    name = "caching_sha2_password"

    FAST_AUTH_SUCCESS = b"\x03"
    PERFORM_FULL_AUTH = b"\x04"
    REQUEST_PUBLIC_KEY = b"\x02"

    async def auth(self, auth_info: AuthInfo) -> AuthState:
        if not auth_info.password:
            yield b""
            return

        password = auth_info.password.encode("utf-8")
        seed = auth_info.seed[:20]

        data = yield scramble_caching_sha2(password, seed)

        if data == self.FAST_AUTH_SUCCESS:
            logger.debug("caching_sha2_password: fast path succeeded")
            # The server follows up with an OK
            yield None
            return

        if data != self.PERFORM_FULL_AUTH:
            raise ProtocolDesyncError(
                f"caching_sha2_password: unexpected fast path result {data!r}"
            )

        if auth_info.secure:
            yield password + b"\x00"
            return

        logger.debug("caching_sha2_password: requesting the server's public key")
        public_key = yield self.REQUEST_PUBLIC_KEY
        yield sha2_rsa_encrypt(password, seed, public_key)


class KerberosAuthPlugin(AuthPlugin):
    """
    Client side of the GSS-API Kerberos mechanism as described in RFC1964(https://www.rfc-editor.org/rfc/rfc1964.html).

    The server sends its service principal and realm, and the client answers with a token for
    that service from the credentials of the current OS user.
    """

    name = KERBEROS_PLUGIN

    async def auth(self, auth_info: AuthInfo) -> AuthState:
        import gssapi

        # Fast authentication not supported
        data = yield b""

        service, realm = parse_kerberos_principal(data)
        client_ctx = gssapi.SecurityContext(
            name=gssapi.Name(
                f"{service}@{realm}", name_type=gssapi.NameType.kerberos_principal
            ),
            usage="initiate",
        )
        yield client_ctx.step()


def scramble_native_password(password: bytes, seed: bytes) -> bytes:
    sha1_password = sha1(password).digest()
    sha1_sha1_password = sha1(sha1_password).digest()
    return utils.xor(sha1_password, sha1(seed[:20] + sha1_sha1_password).digest())


def scramble_caching_sha2(password: bytes, seed: bytes) -> bytes:
    # XOR(SHA256(password), SHA256(SHA256(SHA256(password)), seed))
    p1 = sha256(password).digest()
    p2 = sha256(p1).digest()
    p3 = sha256(p2 + seed).digest()
    return utils.xor(p1, p3)


def sha2_rsa_encrypt(password: bytes, seed: bytes, public_key: bytes) -> bytes:
    from cryptography.hazmat.primitives import hashes, serialization
    from cryptography.hazmat.primitives.asymmetric import padding

    key = serialization.load_pem_public_key(public_key)
    message = utils.xor_repeat(password + b"\x00", seed)
    return key.encrypt(  # type: ignore[union-attr]
        message,
        padding.OAEP(
            mgf=padding.MGF1(algorithm=hashes.SHA1()),
            algorithm=hashes.SHA1(),
            label=None,
        ),
    )


def parse_kerberos_principal(data: bytes) -> Tuple[str, str]:
    """Service and realm, each prefixed with a 2 byte length"""
    try:
        service_len = int.from_bytes(data[:2], "little")
        service = data[2 : 2 + service_len]
        pos = 2 + service_len
        realm_len = int.from_bytes(data[pos : pos + 2], "little")
        realm = data[pos + 2 : pos + 2 + realm_len]
    except IndexError as e:
        raise ProtocolDesyncError("Malformed kerberos challenge") from e
    if len(service) != service_len or len(realm) != realm_len:
        raise ProtocolDesyncError("Malformed kerberos challenge")
    return service.decode("utf-8"), realm.decode("utf-8")


DEFAULT_PLUGINS: Tuple[Type[AuthPlugin], ...] = (
    NativePasswordAuthPlugin,
    ClearPasswordAuthPlugin,
    CachingSha2PasswordAuthPlugin,
    KerberosAuthPlugin,
)


class PluginRegistry:
    """Resolves authentication plugins by the name the server asks for"""

    def __init__(self, plugins: Optional[Iterable[AuthPlugin]] = None):
        if plugins is None:
            plugins = [plugin() for plugin in DEFAULT_PLUGINS]
        self.plugins: Dict[str, AuthPlugin] = {p.name: p for p in plugins}

    def register(self, plugin: AuthPlugin) -> None:
        self.plugins[plugin.name] = plugin

    def get(self, name: str) -> AuthPlugin:
        plugin = self.plugins.get(name)
        if plugin is None:
            raise UnsupportedAuthMethodError(name)
        return plugin
