import os

import pytest
from cryptography import x509

from core.certificate_manager import CertificateManager, get_common_name, parse_certificate
from core.exceptions import ValidationError


@pytest.fixture
def cert_manager(tmp_path):
    return CertificateManager(str(tmp_path / "certs"), server_common_name="vpn.test")


def test_initialize_writes_ca_and_server_files(cert_manager):
    cert_manager.initialize()

    for path in (cert_manager.ca_cert_path, cert_manager.ca_key_path,
                 cert_manager.server_cert_path, cert_manager.server_key_path):
        assert os.path.exists(path)
    assert oct(os.stat(cert_manager.ca_key_path).st_mode & 0o777) == "0o600"

    with open(cert_manager.server_cert_path) as f:
        server_cert = parse_certificate(f.read())
    assert get_common_name(server_cert) == "vpn.test"


def test_ca_is_reused_across_instances(cert_manager):
    first = cert_manager.load_or_create_ca()

    second = CertificateManager(cert_manager.cert_dir).load_or_create_ca()

    assert first.serial_number == second.serial_number


def test_client_certificate_is_signed_by_ca(cert_manager):
    cert_pem, key_pem = cert_manager.create_client_certificate("alice")

    cert = parse_certificate(cert_pem)
    ca = cert_manager.load_or_create_ca()
    assert get_common_name(cert) == "alice"
    assert cert.issuer == ca.subject
    assert "PRIVATE KEY" in key_pem
    usage = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    assert x509.oid.ExtendedKeyUsageOID.CLIENT_AUTH in usage


def test_each_client_certificate_has_new_serial(cert_manager):
    first, _ = cert_manager.create_client_certificate("alice")
    second, _ = cert_manager.create_client_certificate("alice")

    assert parse_certificate(first).serial_number != parse_certificate(second).serial_number


def test_client_certificate_requires_username(cert_manager):
    with pytest.raises(ValidationError):
        cert_manager.create_client_certificate("")


def test_parse_certificate_rejects_garbage():
    with pytest.raises(ValidationError):
        parse_certificate("-----BEGIN CERTIFICATE-----\nnope\n-----END CERTIFICATE-----\n")
