"""
Domain private-key generation, certificate requests and PEM helpers.

Boundary: this module owns everything cryptographic that is *domain*-specific.
Account-key operations (JWK, JWS) live in acmeclient/jws.py.
"""
from __future__ import annotations

import base64
import re
from dataclasses import dataclass, field

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

PrivateKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey

_PEM_ARMOR = re.compile(r"-----(BEGIN|END) [A-Z0-9 ]+-----")


def generate_rsa_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Generate an RSA private key for a domain certificate."""
    from cryptography.hazmat.backends import default_backend

    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
        backend=default_backend(),
    )


def private_key_to_pem(key: PrivateKey) -> str:
    """Serialize a private key to an unencrypted PEM string."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


# ─── Certificate requests ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class DistinguishedName:
    common_name: str
    country_name: str | None = None
    state_or_province_name: str | None = None
    locality_name: str | None = None
    organization_name: str | None = None
    organizational_unit_name: str | None = None
    email_address: str | None = None
    subject_alternative_names: tuple[str, ...] = field(default_factory=tuple)

    def to_x509_name(self) -> x509.Name:
        pairs = [
            (NameOID.COUNTRY_NAME, self.country_name),
            (NameOID.STATE_OR_PROVINCE_NAME, self.state_or_province_name),
            (NameOID.LOCALITY_NAME, self.locality_name),
            (NameOID.ORGANIZATION_NAME, self.organization_name),
            (NameOID.ORGANIZATIONAL_UNIT_NAME, self.organizational_unit_name),
            (NameOID.COMMON_NAME, self.common_name),
            (NameOID.EMAIL_ADDRESS, self.email_address),
        ]
        return x509.Name([x509.NameAttribute(oid, value) for oid, value in pairs if value])

    @property
    def domains(self) -> list[str]:
        """Common name first, then the extra SANs, deduplicated."""
        return list(dict.fromkeys([self.common_name, *self.subject_alternative_names]))


@dataclass(frozen=True)
class CertificateRequest:
    """A distinguished name plus the domain key pair that will own the certificate."""

    distinguished_name: DistinguishedName
    private_key: PrivateKey = field(compare=False, repr=False)


class CertificateRequestSigner:
    """Signs a ``CertificateRequest`` and returns the CSR as PEM text."""

    def sign(self, csr: CertificateRequest) -> str:
        dn = csr.distinguished_name
        builder = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(dn.to_x509_name())
            .add_extension(
                x509.SubjectAlternativeName([x509.DNSName(d) for d in dn.domains]),
                critical=False,
            )
        )
        signed = builder.sign(csr.private_key, hashes.SHA256())
        return signed.public_bytes(serialization.Encoding.PEM).decode()


# ─── PEM / DER ────────────────────────────────────────────────────────────────


def pem_to_der(pem: str) -> bytes:
    """Strip the armor lines and whitespace from a PEM block and decode the body."""
    body = "".join(_PEM_ARMOR.sub("", pem).split())
    return base64.b64decode(body)


def der_to_pem(der: bytes, label: str = "CERTIFICATE") -> str:
    """
    PEM-encode *der*: base64 wrapped at 64 columns, every line ending in ``\\n``.
    """
    b64 = base64.b64encode(der).decode()
    lines = "".join(f"{b64[i:i + 64]}\n" for i in range(0, len(b64), 64))
    return f"-----BEGIN {label}-----\n{lines}-----END {label}-----\n"
