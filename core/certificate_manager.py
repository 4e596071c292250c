import os
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from core.exceptions import CertificateGenerationError, ValidationError
from core.logging_config import LoggerMixin

CA_VALIDITY_DAYS = 3650
SERVER_VALIDITY_DAYS = 825
CLIENT_VALIDITY_DAYS = 365

class CertificateManager(LoggerMixin):
    """Local CA that signs the daemon's server certificate and per-user client certificates."""

    def __init__(self, cert_dir: str, ca_common_name: str = "OCPanel CA",
                 server_common_name: str = "vpn.example.com", organization: str = "OCPanel",
                 country: str = "US", key_size: int = 2048):
        self.cert_dir = cert_dir
        self.ca_common_name = ca_common_name
        self.server_common_name = server_common_name
        self.organization = organization
        self.country = country
        self.key_size = key_size
        self._lock = threading.Lock()
        self._ca_cert: Optional[x509.Certificate] = None
        self._ca_key: Optional[rsa.RSAPrivateKey] = None

    @property
    def ca_cert_path(self) -> str:
        return os.path.join(self.cert_dir, "ca.crt")

    @property
    def ca_key_path(self) -> str:
        return os.path.join(self.cert_dir, "ca.key")

    @property
    def server_cert_path(self) -> str:
        return os.path.join(self.cert_dir, "server.crt")

    @property
    def server_key_path(self) -> str:
        return os.path.join(self.cert_dir, "server.key")

    def initialize(self) -> None:
        """Load or create the CA and the server certificate."""
        self.load_or_create_ca()
        self.load_or_create_server_certificate()

    def load_or_create_ca(self) -> x509.Certificate:
        with self._lock:
            if self._ca_cert is not None:
                return self._ca_cert
            os.makedirs(self.cert_dir, exist_ok=True)
            if os.path.exists(self.ca_cert_path) and os.path.exists(self.ca_key_path):
                with open(self.ca_cert_path, "rb") as f:
                    self._ca_cert = x509.load_pem_x509_certificate(f.read())
                with open(self.ca_key_path, "rb") as f:
                    self._ca_key = serialization.load_pem_private_key(f.read(), password=None)
                self.logger.info("Loaded CA certificate", path=self.ca_cert_path)
                return self._ca_cert

            key = self._generate_key()
            name = self._name(self.ca_common_name)
            now = datetime.now(timezone.utc)
            cert = (
                x509.CertificateBuilder()
                .subject_name(name)
                .issuer_name(name)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(now)
                .not_valid_after(now + timedelta(days=CA_VALIDITY_DAYS))
                .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
                .sign(key, hashes.SHA256())
            )
            self._write_key(key, self.ca_key_path)
            self._write_cert(cert, self.ca_cert_path)
            self._ca_cert, self._ca_key = cert, key
            self.logger.info("Created CA certificate", common_name=self.ca_common_name)
            return cert

    def load_or_create_server_certificate(self) -> None:
        if os.path.exists(self.server_cert_path) and os.path.exists(self.server_key_path):
            self.logger.info("Loaded server certificate", path=self.server_cert_path)
            return
        cert_pem, key_pem = self._issue(self.server_common_name, ExtendedKeyUsageOID.SERVER_AUTH,
                                        SERVER_VALIDITY_DAYS)
        with open(self.server_cert_path, "w") as f:
            f.write(cert_pem)
        with open(self.server_key_path, "w") as f:
            f.write(key_pem)
        os.chmod(self.server_key_path, 0o600)
        self.logger.info("Created server certificate", common_name=self.server_common_name)

    def create_client_certificate(self, username: str) -> Tuple[str, str]:
        """Issue a client certificate for a user. Returns ``(cert_pem, key_pem)``."""
        if not username:
            raise ValidationError("username", username, "username is required")
        try:
            cert_pem, key_pem = self._issue(username, ExtendedKeyUsageOID.CLIENT_AUTH, CLIENT_VALIDITY_DAYS)
        except (OSError, ValueError) as e:
            raise CertificateGenerationError(username, str(e))
        self.logger.info("Issued client certificate", username=username)
        return cert_pem, key_pem

    def get_ca_pem(self) -> str:
        return self.load_or_create_ca().public_bytes(serialization.Encoding.PEM).decode()

    def _issue(self, common_name: str, usage, validity_days: int) -> Tuple[str, str]:
        ca_cert = self.load_or_create_ca()
        key = self._generate_key()
        now = datetime.now(timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(self._name(common_name))
            .issuer_name(ca_cert.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + timedelta(days=validity_days))
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(x509.ExtendedKeyUsage([usage]), critical=False)
            .sign(self._ca_key, hashes.SHA256())
        )
        cert_pem = cert.public_bytes(serialization.Encoding.PEM).decode()
        key_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode()
        return cert_pem, key_pem

    def _generate_key(self) -> rsa.RSAPrivateKey:
        return rsa.generate_private_key(public_exponent=65537, key_size=self.key_size)

    def _name(self, common_name: str) -> x509.Name:
        return x509.Name([
            x509.NameAttribute(NameOID.COUNTRY_NAME, self.country),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, self.organization),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ])

    @staticmethod
    def _write_key(key, path: str) -> None:
        with open(path, "wb") as f:
            f.write(key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.TraditionalOpenSSL,
                encryption_algorithm=serialization.NoEncryption(),
            ))
        os.chmod(path, 0o600)

    @staticmethod
    def _write_cert(cert, path: str) -> None:
        with open(path, "wb") as f:
            f.write(cert.public_bytes(serialization.Encoding.PEM))

def parse_certificate(pem: str) -> x509.Certificate:
    """Parse a PEM certificate, raising ValidationError when it is malformed."""
    try:
        return x509.load_pem_x509_certificate(pem.encode() if isinstance(pem, str) else pem)
    except (ValueError, TypeError) as e:
        raise ValidationError("certificate", "<pem>", f"invalid certificate: {e}")

def get_common_name(cert: x509.Certificate) -> Optional[str]:
    attributes = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    return attributes[0].value if attributes else None
