"""
Account-key, JWK and JWS utilities for the ACME protocol.

Uses *josepy* (the library powering Certbot) to hold the account key.

Responsibilities (boundary with acmeclient/crypto.py):
  - Generate / load the **account** RSA key
  - Protocol base64url encoding (no padding)
  - Extract the public components and compute the JWK thumbprint
    (for HTTP-01 key-authorizations)
  - Sign ACME request bodies as JWS with an embedded ``jwk`` header
"""
from __future__ import annotations

import base64
import hashlib
import json
from pathlib import Path
from typing import Any

from josepy.jwk import JWKRSA
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


# ─── Account key I/O ──────────────────────────────────────────────────────────


def generate_account_key(key_size: int = 2048) -> JWKRSA:
    """Generate a new RSA account key wrapped in a josepy JWKRSA."""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
        backend=default_backend(),
    )
    return JWKRSA(key=private_key)


def load_account_key(path: str) -> JWKRSA:
    """Load an RSA account key from a PEM file."""
    pem = Path(path).read_bytes()
    private_key = serialization.load_pem_private_key(pem, password=None, backend=default_backend())
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise ValueError(f"{path} does not hold an RSA private key")
    return JWKRSA(key=private_key)


def account_key_exists(path: str) -> bool:
    return Path(path).exists()


# ─── Base64url ────────────────────────────────────────────────────────────────


def b64url_encode(data: bytes) -> str:
    """URL-safe base64 encoding with no padding (as required by JOSE)."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def b64url_decode(s: str) -> bytes:
    """URL-safe base64 decode, adding padding as needed."""
    pad = 4 - len(s) % 4
    if pad != 4:
        s += "=" * pad
    return base64.urlsafe_b64decode(s)


# ─── JWK thumbprint ───────────────────────────────────────────────────────────


def key_details(jwk: JWKRSA) -> dict[str, bytes]:
    """Return the public exponent ``e`` and modulus ``n`` as big-endian bytes."""
    numbers = jwk.key.public_key().public_numbers()
    return {"e": _int_to_bytes(numbers.e), "n": _int_to_bytes(numbers.n)}


def public_jwk(jwk: JWKRSA) -> dict[str, str]:
    """
    The public JWK as an ordered dict: ``e``, ``kty``, ``n``.

    Insertion order is the serialization order, and it is part of the
    thumbprint input.
    """
    details = key_details(jwk)
    return {
        "e": b64url_encode(details["e"]),
        "kty": "RSA",
        "n": b64url_encode(details["n"]),
    }


def compute_jwk_thumbprint(jwk: JWKRSA) -> str:
    """
    Compute the base64url SHA-256 thumbprint of the public JWK.
    Used to construct the HTTP-01 key-authorization:
      key_authorization = token + "." + thumbprint
    """
    canonical = json.dumps(public_jwk(jwk), separators=(",", ":"))
    digest = hashlib.sha256(canonical.encode()).digest()
    return b64url_encode(digest)


def compute_key_authorization(token: str, jwk: JWKRSA) -> str:
    """Return the HTTP-01 key-authorization string for *token*."""
    return f"{token}.{compute_jwk_thumbprint(jwk)}"


# ─── JWS signing ─────────────────────────────────────────────────────────────


def sign_request(
    payload: dict | None,
    account_key: JWKRSA,
    nonce: str,
    url: str,
) -> dict:
    """
    Sign an ACME request payload and return the JWS dict to send.

    The unprotected ``header`` carries ``alg`` and the public ``jwk``; the
    protected header repeats them and adds the anti-replay ``nonce`` and the
    target ``url``.  A ``None`` payload signs the empty string.
    """
    header: dict[str, Any] = {
        "alg": "RS256",
        "jwk": public_jwk(account_key),
    }
    protected_header = {**header, "nonce": nonce, "url": url}

    protected = b64url_encode(json.dumps(protected_header).encode())
    if payload is None:
        payload_b64 = ""
    else:
        payload_b64 = b64url_encode(json.dumps(payload).encode())

    signing_input = f"{protected}.{payload_b64}".encode()
    signature = _sign_rsa(account_key, signing_input)

    return {
        "header": header,
        "protected": protected,
        "payload": payload_b64,
        "signature": b64url_encode(signature),
    }


# ─── Internal helpers ─────────────────────────────────────────────────────────


def _int_to_bytes(value: int) -> bytes:
    return value.to_bytes(max(1, (value.bit_length() + 7) // 8), "big")


def _sign_rsa(jwk: JWKRSA, data: bytes) -> bytes:
    """Sign *data* with the RSA private key using PKCS1v15 + SHA-256."""
    from cryptography.hazmat.primitives.asymmetric import padding
    from cryptography.hazmat.primitives import hashes

    return jwk.key.sign(data, padding.PKCS1v15(), hashes.SHA256())
