"""Self-signed TLS material for the proxy.

A fresh pair is generated on every deployment. The resulting trust model is
self-signed and unpinned; clients must either skip verification or pin the
certificate out of band.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

KEY_SIZE = 2048
DEFAULT_VALIDITY_DAYS = 3650


@dataclass(frozen=True)
class TlsPair:
    cert_pem: bytes
    key_pem: bytes = field(repr=False)


def generate_self_signed_pair(fqdn: str, *, days: int = DEFAULT_VALIDITY_DAYS) -> TlsPair:
    fqdn = (fqdn or "").strip()
    if not fqdn:
        raise ValueError("fqdn is required for the certificate subject")

    private_key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, fqdn)])
    now = datetime.datetime.now(datetime.timezone.utc)

    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=days))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(fqdn)]), critical=False)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(private_key, hashes.SHA256())
    )

    key_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return TlsPair(cert_pem=cert.public_bytes(serialization.Encoding.PEM), key_pem=key_pem)
