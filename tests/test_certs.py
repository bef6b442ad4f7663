"""
Tests for the self-signed certificate bootstrap
"""

import datetime
import ipaddress
import ssl
from unittest import mock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from treeserve import certs
from treeserve.certs import (
    build_server_ssl_context,
    generate_self_signed_cert,
    ssl_context_from_pem,
    CertificateError,
)
from treeserve.models import TlsConfig


@pytest.fixture(scope="module")
def cert_pair():
    return generate_self_signed_cert()


class TestGenerateSelfSignedCert:

    def test_subject_alternative_names(self, cert_pair):
        cert = x509.load_pem_x509_certificate(cert_pair[0])
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        assert san.get_values_for_type(x509.DNSName) == ["localhost"]
        assert set(san.get_values_for_type(x509.IPAddress)) == {
            ipaddress.ip_address("127.0.0.1"),
            ipaddress.ip_address("::1"),
        }

    def test_valid_for_one_year(self, cert_pair):
        cert = x509.load_pem_x509_certificate(cert_pair[0])
        validity = cert.not_valid_after_utc - cert.not_valid_before_utc
        assert validity == datetime.timedelta(days=365)
        assert cert.not_valid_before_utc <= datetime.datetime.now(datetime.timezone.utc)

    def test_self_signed(self, cert_pair):
        cert = x509.load_pem_x509_certificate(cert_pair[0])
        assert cert.issuer == cert.subject
        constraints = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
        assert constraints.ca is False

    def test_key_matches_certificate(self, cert_pair):
        cert = x509.load_pem_x509_certificate(cert_pair[0])
        key = serialization.load_pem_private_key(cert_pair[1], password=None)
        assert isinstance(key, rsa.RSAPrivateKey)
        assert key.public_key().public_numbers() == cert.public_key().public_numbers()

    def test_fresh_key_each_time(self, cert_pair):
        _, other_key = generate_self_signed_cert()
        assert other_key != cert_pair[1]

    def test_failure_is_reported(self):
        with mock.patch.object(certs.rsa, "generate_private_key", side_effect=ValueError("boom")):
            with pytest.raises(CertificateError):
                generate_self_signed_cert()


class TestSslContext:

    def test_context_from_pem(self, cert_pair):
        context = ssl_context_from_pem(*cert_pair)
        assert isinstance(context, ssl.SSLContext)

    @pytest.mark.skipif(not certs._memfd_available(), reason="needs memfd_create")
    def test_generated_key_never_touches_disk(self, cert_pair):
        with mock.patch.object(certs.tempfile, "TemporaryDirectory", side_effect=AssertionError):
            context = ssl_context_from_pem(*cert_pair)
        assert isinstance(context, ssl.SSLContext)

    def test_tempdir_loading(self, cert_pair):
        with mock.patch.object(certs, "_memfd_available", return_value=False):
            context = ssl_context_from_pem(*cert_pair)
        assert isinstance(context, ssl.SSLContext)

    def test_garbage_pem(self):
        with pytest.raises(CertificateError):
            ssl_context_from_pem(b"not a cert", b"not a key")

    def test_disabled(self):
        assert build_server_ssl_context(TlsConfig(enabled=False)) is None

    def test_generates_when_no_files(self, cert_pair):
        with mock.patch.object(certs, "generate_self_signed_cert", return_value=cert_pair) as gen:
            context = build_server_ssl_context(TlsConfig(enabled=True))
        gen.assert_called_once()
        assert isinstance(context, ssl.SSLContext)

    def test_external_files(self, cert_pair, tmp_path):
        cert_file = tmp_path / "cert.pem"
        key_file = tmp_path / "key.pem"
        cert_file.write_bytes(cert_pair[0])
        key_file.write_bytes(cert_pair[1])
        with mock.patch.object(certs, "generate_self_signed_cert") as gen:
            context = build_server_ssl_context(
                TlsConfig(enabled=True, certfile=str(cert_file), keyfile=str(key_file))
            )
        gen.assert_not_called()
        assert isinstance(context, ssl.SSLContext)

    def test_missing_external_files(self, tmp_path):
        tls = TlsConfig(
            enabled=True,
            certfile=str(tmp_path / "missing.pem"),
            keyfile=str(tmp_path / "missing.key"),
        )
        with pytest.raises(CertificateError):
            build_server_ssl_context(tls)
