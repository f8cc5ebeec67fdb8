"""
Shared pytest fixtures.

Boulder fixture
---------------
The `boulder_settings` fixture patches the module-level `config.settings`
singleton so the client talks to a local Boulder instance (resource-style
ACME on port 4000) instead of the configured CA.
"""
from __future__ import annotations

import socket
from pathlib import Path

import pytest

from acmeclient import jws as jwslib
from acmeclient.client import AcmeClient
from acmeclient.transport import SecureHttpClient


DIRECTORY_URL = "https://acme.test/directory"

FAKE_DIRECTORY = {
    "new-reg": "https://acme.test/acme/new-reg",
    "new-authz": "https://acme.test/acme/new-authz",
    "new-cert": "https://acme.test/acme/new-cert",
    "revoke-cert": "https://acme.test/acme/revoke-cert",
    "meta": {"terms-of-service": "https://acme.test/terms/v1"},
}

FAKE_NONCE = "testnonce12345"


# ─── Boulder availability check ───────────────────────────────────────────────

def _boulder_running(host: str = "127.0.0.1", port: int = 4000) -> bool:
    """Return True if Boulder's ACME port is open."""
    try:
        with socket.create_connection((host, port), timeout=1):
            return True
    except OSError:
        return False


requires_boulder = pytest.mark.skipif(
    not _boulder_running(),
    reason="Boulder not running on 127.0.0.1:4000",
)


# ─── Keys & clients ───────────────────────────────────────────────────────────

@pytest.fixture(scope="session")
def account_key():
    return jwslib.generate_account_key(key_size=2048)


@pytest.fixture()
def sleeps():
    """Records every poll sleep instead of blocking."""
    return []


@pytest.fixture()
def client(account_key, sleeps) -> AcmeClient:
    return AcmeClient(SecureHttpClient(account_key), DIRECTORY_URL, sleep=sleeps.append)


# ─── Settings patch ───────────────────────────────────────────────────────────

@pytest.fixture()
def boulder_settings(tmp_path: Path, account_key):
    """
    Mutate the live settings singleton to point at local Boulder,
    restore original values after the test.
    """
    from cryptography.hazmat.primitives import serialization

    from config import settings

    keys = (
        "CA_PROVIDER", "ACME_DIRECTORY_URL", "CERT_STORE_PATH", "ACCOUNT_KEY_PATH",
        "HTTP_CHALLENGE_MODE", "HTTP_CHALLENGE_PORT", "WEBROOT_PATH", "ACME_INSECURE",
    )
    originals = {k: getattr(settings, k) for k in keys}

    key_path = tmp_path / "account.key"
    key_path.write_bytes(
        account_key.key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )

    settings.CA_PROVIDER = "boulder"
    settings.ACME_DIRECTORY_URL = "http://127.0.0.1:4000/directory"
    settings.CERT_STORE_PATH = str(tmp_path / "certs")
    settings.ACCOUNT_KEY_PATH = str(key_path)
    settings.HTTP_CHALLENGE_MODE = "standalone"
    settings.HTTP_CHALLENGE_PORT = 5002
    settings.WEBROOT_PATH = None
    settings.ACME_INSECURE = True

    yield settings

    for k, v in originals.items():
        setattr(settings, k, v)
