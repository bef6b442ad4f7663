"""
TLS certificate bootstrap for treeserve

When TLS is on and no certificate/key files are configured, a self-signed
certificate for the loopback addresses is generated at startup and kept
in memory for the lifetime of the listening socket.
"""

import datetime
import ipaddress
import logging
import os
import ssl
import tempfile
from typing import Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .models import TlsConfig

logger = logging.getLogger(__name__)

CERT_VALIDITY = datetime.timedelta(days=365)
KEY_SIZE = 2048
KEY_EXPONENT = 65537

LOOPBACK_HOSTNAMES = ("localhost",)
LOOPBACK_ADDRESSES = ("127.0.0.1", "::1")


class CertificateError(Exception):
    """Raised when TLS material cannot be generated or loaded"""
    pass


def generate_self_signed_cert(
    hostnames=LOOPBACK_HOSTNAMES,
    addresses=LOOPBACK_ADDRESSES,
    validity: datetime.timedelta = CERT_VALIDITY,
) -> Tuple[bytes, bytes]:
    """
    Generate a self-signed server certificate

    Args:
        hostnames: DNS names placed in the subjectAltName
        addresses: IP addresses placed in the subjectAltName
        validity: How long the certificate stays valid

    Returns:
        (certificate PEM, PKCS#8 private key PEM)

    Raises:
        CertificateError: If key generation or signing fails
    """
    try:
        private_key = rsa.generate_private_key(
            public_exponent=KEY_EXPONENT,
            key_size=KEY_SIZE,
        )

        name = x509.Name([
            x509.NameAttribute(NameOID.COUNTRY_NAME, "CN"),
            x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, "Beijing"),
            x509.NameAttribute(NameOID.LOCALITY_NAME, "Beijing"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "treeserve"),
            x509.NameAttribute(NameOID.COMMON_NAME, hostnames[0] if hostnames else "localhost"),
        ])

        alt_names = [x509.DNSName(host) for host in hostnames]
        alt_names += [x509.IPAddress(ipaddress.ip_address(addr)) for addr in addresses]

        now = datetime.datetime.now(datetime.timezone.utc)
        builder = x509.CertificateBuilder()
        builder = builder.subject_name(name)
        builder = builder.issuer_name(name)
        builder = builder.public_key(private_key.public_key())
        builder = builder.serial_number(x509.random_serial_number())
        builder = builder.not_valid_before(now)
        builder = builder.not_valid_after(now + validity)
        builder = builder.add_extension(
            x509.SubjectAlternativeName(alt_names), critical=False,
        )
        builder = builder.add_extension(
            x509.BasicConstraints(ca=False, path_length=None), critical=True,
        )
        builder = builder.add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        builder = builder.add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False,
        )
        certificate = builder.sign(private_key=private_key, algorithm=hashes.SHA256())

        cert_pem = certificate.public_bytes(encoding=serialization.Encoding.PEM)
        key_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    except Exception as e:
        logger.exception("Self-signed certificate generation failed")
        raise CertificateError(f"Failed to generate self-signed certificate: {e}") from e

    logger.info("Generated self-signed certificate for %s", ", ".join(list(hostnames) + list(addresses)))
    return cert_pem, key_pem


def _memfd_available() -> bool:
    return hasattr(os, "memfd_create") and os.path.isdir("/proc/self/fd")


def _load_chain_from_memfd(context: ssl.SSLContext, cert_pem: bytes, key_pem: bytes) -> None:
    fds = []
    try:
        for name, data in (("treeserve-cert", cert_pem), ("treeserve-key", key_pem)):
            fd = os.memfd_create(name, os.MFD_CLOEXEC)
            fds.append(fd)
            os.write(fd, data)
        context.load_cert_chain(f"/proc/self/fd/{fds[0]}", f"/proc/self/fd/{fds[1]}")
    finally:
        for fd in fds:
            os.close(fd)


def _load_chain_from_tempdir(context: ssl.SSLContext, cert_pem: bytes, key_pem: bytes) -> None:
    with tempfile.TemporaryDirectory(prefix="treeserve-tls-") as tmp_dir:
        cert_path = os.path.join(tmp_dir, "cert.pem")
        key_path = os.path.join(tmp_dir, "key.pem")
        for path, data in ((cert_path, cert_pem), (key_path, key_pem)):
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
        context.load_cert_chain(cert_path, key_path)


def ssl_context_from_pem(cert_pem: bytes, key_pem: bytes) -> ssl.SSLContext:
    """Build a server SSLContext from in-memory PEM material.

    The ssl module only reads certificate chains from paths. On Linux the
    PEMs are handed over as anonymous memory files and never touch disk;
    elsewhere they pass through a private temporary directory that is
    removed as soon as the chain is loaded.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    try:
        if _memfd_available():
            _load_chain_from_memfd(context, cert_pem, key_pem)
        else:
            logger.debug("memfd_create unavailable, loading certificate via a temporary directory")
            _load_chain_from_tempdir(context, cert_pem, key_pem)
    except (OSError, ssl.SSLError) as e:
        raise CertificateError(f"Failed to load certificate: {e}") from e
    return context


def build_server_ssl_context(tls: TlsConfig) -> Optional[ssl.SSLContext]:
    """
    SSLContext for the listening socket, or None when TLS is off

    External certificate/key files win; otherwise a self-signed pair
    is generated.

    Raises:
        CertificateError: If the material cannot be produced or loaded
    """
    if not tls.enabled:
        return None

    if tls.has_external_cert:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        try:
            context.load_cert_chain(tls.certfile, tls.keyfile)
        except (OSError, ssl.SSLError) as e:
            raise CertificateError(f"Failed to load {tls.certfile}/{tls.keyfile}: {e}") from e
        logger.info(f"Using TLS certificate {tls.certfile}")
        return context

    logger.info("No certificate files configured, generating a self-signed certificate")
    cert_pem, key_pem = generate_self_signed_cert()
    return ssl_context_from_pem(cert_pem, key_pem)
