from __future__ import annotations

import hashlib
import logging
import os
import re
import ssl
import warnings
from dataclasses import dataclass
from enum import IntFlag
from typing import List, Optional

from mysql_wire.config import ConnectionConfig, SslMode
from mysql_wire.errors import CertificateNotFoundError, FileCertificateNotSupportedError
from mysql_wire.handshake import ServerVersion

logger = logging.getLogger(__name__)

PEM_CERT_PATTERN = re.compile(
    r"-----BEGIN CERTIFICATE-----.+?-----END CERTIFICATE-----", re.DOTALL
)


class CertificateErrors(IntFlag):
    """Ways a server certificate can fail validation"""

    NONE = 0
    NOT_AVAILABLE = 1
    NAME_MISMATCH = 2
    CHAIN_ERRORS = 4


def tolerates(mode: SslMode, errors: CertificateErrors) -> bool:
    """Whether a connection in `mode` accepts a server certificate with `errors`"""
    if mode in (SslMode.PREFERRED, SslMode.REQUIRED):
        return True
    if mode is SslMode.VERIFY_CA:
        return errors & ~CertificateErrors.NAME_MISMATCH == 0
    return errors == CertificateErrors.NONE


@dataclass(frozen=True)
class ClientCertificate:
    certfile: str
    password: Optional[str] = None


class CertificateSource:
    """Where client certificates come from"""

    def get_client_certificates(self) -> List[ClientCertificate]:
        return []


class FileCertificateSource(CertificateSource):
    """A PEM file holding both the certificate and its private key"""

    def __init__(self, path: str, password: Optional[str] = None):
        self.path = path
        self.password = password

    def get_client_certificates(self) -> List[ClientCertificate]:
        if not os.path.isfile(self.path):
            raise CertificateNotFoundError(f"Certificate file {self.path} not found")
        return [ClientCertificate(self.path, self.password)]


class StoreCertificateSource(CertificateSource):
    """
    A directory of PEM files, each holding a certificate and its private key.

    Args:
        directory: directory to search
        thumbprint: SHA-1 of the DER encoded certificate. If set, only the matching
            certificate is used, and it's an error for none to match.
    """

    def __init__(self, directory: str, thumbprint: Optional[str] = None):
        self.directory = directory
        self.thumbprint = normalize_thumbprint(thumbprint) if thumbprint else None

    def get_client_certificates(self) -> List[ClientCertificate]:
        certificates = []
        try:
            names = sorted(os.listdir(self.directory))
        except OSError as e:
            raise CertificateNotFoundError(
                f"Certificate store {self.directory} can't be read: {e}"
            ) from e

        for name in names:
            path = os.path.join(self.directory, name)
            if not os.path.isfile(path):
                continue
            if self.thumbprint is None or self.thumbprint in _thumbprints(path):
                certificates.append(ClientCertificate(path))

        if self.thumbprint and not certificates:
            raise CertificateNotFoundError(
                f"Certificate with thumbprint {self.thumbprint} not found"
            )
        return certificates


def normalize_thumbprint(thumbprint: str) -> str:
    return re.sub(r"[^0-9a-f]", "", thumbprint.lower())


def thumbprint(der: bytes) -> str:
    return hashlib.sha1(der).hexdigest()


def _thumbprints(path: str) -> List[str]:
    try:
        with open(path, encoding="ascii", errors="ignore") as f:
            text = f.read()
    except OSError:
        return []
    return [
        thumbprint(ssl.PEM_cert_to_DER_cert(pem))
        for pem in PEM_CERT_PATTERN.findall(text)
    ]


def certificate_source(config: ConnectionConfig) -> CertificateSource:
    if config.certificate_file:
        return FileCertificateSource(
            config.certificate_file, config.certificate_password
        )
    if config.certificate_store:
        return StoreCertificateSource(
            config.certificate_store, config.certificate_thumbprint
        )
    return CertificateSource()


def create_ssl_context(
    config: ConnectionConfig,
    version: ServerVersion,
    source: Optional[CertificateSource] = None,
) -> ssl.SSLContext:
    """Build the client side context for upgrading a connection in `config.ssl_mode`"""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)

    # TLS 1.0 and 1.1 are deprecated, but older servers don't support anything else
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", DeprecationWarning)
        context.minimum_version = ssl.TLSVersion.TLSv1
        context.maximum_version = ssl.TLSVersion.TLSv1_2

    context.check_hostname = not tolerates(
        config.ssl_mode, CertificateErrors.NAME_MISMATCH
    )
    if tolerates(config.ssl_mode, CertificateErrors.CHAIN_ERRORS):
        context.verify_mode = ssl.CERT_NONE
    else:
        context.verify_mode = ssl.CERT_REQUIRED
        if config.ssl_ca:
            context.load_verify_locations(cafile=config.ssl_ca)
        else:
            context.load_default_certs(ssl.Purpose.SERVER_AUTH)

    source = source or certificate_source(config)
    if isinstance(source, FileCertificateSource) and not version.at_least(5, 1):
        raise FileCertificateNotSupportedError(str(version))

    # A context holds a single chain, so the first certificate wins
    for certificate in source.get_client_certificates()[:1]:
        logger.debug("Loading client certificate %s", certificate.certfile)
        try:
            context.load_cert_chain(
                certfile=certificate.certfile, password=certificate.password
            )
        except (ssl.SSLError, OSError) as e:
            raise CertificateNotFoundError(
                f"Can't load client certificate {certificate.certfile}: {e}"
            ) from e

    return context
