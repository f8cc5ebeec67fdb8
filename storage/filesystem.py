"""
PEM filesystem storage for issued certificates.

Directory layout per domain:
  ./certs/<domain>/
      cert.pem       : Leaf certificate
      chain.pem      : Issuer chain, direct issuer first
      fullchain.pem  : cert + chain (nginx uses this)
      privkey.pem    : Private key (mode 0o600)
      metadata.json  : Issued/expires metadata

All writes are atomic: temp file + fsync + atomic rename.
"""
from __future__ import annotations

import json
import logging
import stat
from datetime import datetime, timezone
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.backends import default_backend

from acmeclient.certificate import CertificateResponse
from storage.atomic import atomic_write_text

logger = logging.getLogger(__name__)


def cert_dir(cert_store_path: str, domain: str) -> Path:
    """Return the Path for a domain's cert directory (creates it if needed)."""
    # "*.example.com" → "wildcard.example.com"; no path separators
    safe_domain = domain.replace("*.", "wildcard.").replace("/", "").replace("\\", "")
    p = Path(cert_store_path) / safe_domain
    p.mkdir(parents=True, exist_ok=True)
    return p


def parse_expiry(pem_text: str) -> datetime:
    """Parse the notAfter field from a PEM certificate and return a UTC datetime."""
    cert = x509.load_pem_x509_certificate(pem_text.encode(), default_backend())
    # cryptography >= 42 exposes .not_valid_after_utc (timezone-aware)
    try:
        return cert.not_valid_after_utc
    except AttributeError:
        return cert.not_valid_after.replace(tzinfo=timezone.utc)


def write_certificate_response(
    cert_store_path: str,
    domain: str,
    response: CertificateResponse,
    privkey_pem: str,
) -> dict:
    """
    Write cert.pem, chain.pem, fullchain.pem, privkey.pem and metadata.json
    to ./certs/<domain>/.  Private key is set to mode 0o600.

    Returns the metadata dict.
    """
    d = cert_dir(cert_store_path, domain)
    certificate = response.certificate

    atomic_write_text(d / "cert.pem", certificate.pem)
    atomic_write_text(d / "chain.pem", certificate.chain_pem)
    atomic_write_text(d / "fullchain.pem", certificate.fullchain_pem)
    atomic_write_text(d / "privkey.pem", privkey_pem, mode=stat.S_IRUSR | stat.S_IWUSR)

    metadata = {
        "domain": domain,
        "issued_at": datetime.now(tz=timezone.utc).isoformat(),
        "expires_at": parse_expiry(certificate.pem).isoformat(),
        "chain_length": len(certificate),
        "domains": response.certificate_request.distinguished_name.domains,
    }
    atomic_write_text(d / "metadata.json", json.dumps(metadata, indent=2))
    logger.info("Wrote certificate files for %s to %s", domain, d)

    return metadata
