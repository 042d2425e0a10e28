"""
Temporary self-signed TLS certificates for serving over HTTPS.
"""

import datetime
import ipaddress
import logging
import os
import shutil
import ssl
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .errors import CertificateError

logger = logging.getLogger(__name__)

COMMON_NAME = "lanserve"
VALIDITY = datetime.timedelta(days=365)
KEY_SIZE = 2048


def _general_name(san: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(san))
    except ValueError:
        return x509.DNSName(san)


def build_certificate(sans: Iterable[str]) -> Tuple[x509.Certificate, rsa.RSAPrivateKey]:
    """Create a self-signed certificate and its private key covering ``sans``."""
    names = [_general_name(san) for san in sans]
    if not names:
        raise CertificateError("a certificate needs at least one subject alternative name")

    key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
    subject = issuer = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, COMMON_NAME),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "lanserve temporary certificate"),
        ]
    )
    # Backdate a little so clients with a slightly wrong clock accept it.
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=1))
        .not_valid_after(now + VALIDITY)
        .add_extension(x509.SubjectAlternativeName(names), critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .sign(key, hashes.SHA256())
    )
    return cert, key


def generate_certificate(sans: Iterable[str], directory) -> Tuple[Path, Path]:
    """
    Generate a self-signed certificate for ``sans`` and write it to ``directory``.

    Args:
        sans: DNS names and IP addresses the certificate should be valid for
        directory: Existing directory that receives cert.pem and key.pem

    Returns:
        Paths of the certificate and the private key
    """
    sans = list(sans)
    cert_path = Path(directory) / "cert.pem"
    key_path = Path(directory) / "key.pem"

    try:
        cert, key = build_certificate(sans)
        key_bytes = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
        # The key is readable by the owner only.
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(key_bytes)
        cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    except (OSError, ValueError) as e:
        raise CertificateError(f"Failed to generate TLS certificate: {e}") from e

    logger.info("Generated temporary TLS certificate for %s", ", ".join(sans))
    return cert_path, key_path


@contextmanager
def temporary_certificate(sans: Iterable[str]) -> Iterator[Tuple[Path, Path]]:
    """Yield certificate and key paths inside a directory that is removed afterwards."""
    directory = tempfile.mkdtemp(prefix="lanserve-")
    try:
        yield generate_certificate(sans, directory)
    finally:
        shutil.rmtree(directory, ignore_errors=True)


def create_ssl_context(cert_path, key_path) -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    try:
        context.load_cert_chain(str(cert_path), str(key_path))
    except (OSError, ssl.SSLError) as e:
        raise CertificateError(f"Could not load TLS certificate {cert_path}: {e}") from e
    return context
