"""
Challenge derivation.

An authorization response lists several challenge objects; each supported
type has a deriver that turns the matching object into a ``Challenge`` and a
builder for the payload that announces it to the CA.  Only ``http-01`` is
registered.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

from josepy.jwk import JWKRSA

from acmeclient import jws as jwslib
from acmeclient.directory import Resource
from acmeclient.errors import AcmeClientError, HttpChallengeNotSupportedError

HTTP_01 = "http-01"

HTTP_01_PATH = "/.well-known/acme-challenge/"

# Tokens are base64url; anything else must never reach a URL path or a file name.
TOKEN_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


@dataclass(frozen=True)
class Challenge:
    domain: str
    url: str
    token: str
    key_authorization: str
    location: str
    type: str = HTTP_01

    @property
    def path(self) -> str:
        """Path the CA fetches to validate an http-01 challenge."""
        return HTTP_01_PATH + self.token


@dataclass(frozen=True)
class ChallengeKind:
    derive: Callable[[str, dict, JWKRSA, str], Challenge]
    response_payload: Callable[[Challenge], dict]


def _derive_http01(domain: str, entry: dict, account_key: JWKRSA, location: str) -> Challenge:
    token, url = entry.get("token"), entry.get("uri")
    if not isinstance(token, str) or not TOKEN_PATTERN.fullmatch(token):
        raise AcmeClientError(f"http-01 challenge for {domain} has an invalid token: {token!r}")
    if not isinstance(url, str) or not url:
        raise AcmeClientError(f"http-01 challenge for {domain} has no uri")
    return Challenge(
        domain=domain,
        url=url,
        token=token,
        key_authorization=jwslib.compute_key_authorization(token, account_key),
        location=location,
        type=HTTP_01,
    )


def _http01_payload(challenge: Challenge) -> dict:
    return {
        "resource": Resource.CHALLENGE.value,
        "type": HTTP_01,
        "keyAuthorization": challenge.key_authorization,
        "token": challenge.token,
    }


CHALLENGE_KINDS: dict[str, ChallengeKind] = {
    HTTP_01: ChallengeKind(_derive_http01, _http01_payload),
}


def derive_challenge(
    domain: str,
    authorization: dict,
    account_key: JWKRSA,
    location: str,
    challenge_type: str = HTTP_01,
) -> Challenge:
    """
    Pick the first *challenge_type* entry of *authorization* and derive its
    ``Challenge``.

    Raises HttpChallengeNotSupportedError when the list is missing, empty or
    holds no entry of that type.
    """
    entries = authorization.get("challenges") if isinstance(authorization, dict) else None
    kind = CHALLENGE_KINDS.get(challenge_type)
    if not entries or kind is None:
        raise HttpChallengeNotSupportedError(domain)

    for entry in entries:
        if isinstance(entry, dict) and entry.get("type") == challenge_type:
            return kind.derive(domain, entry, account_key, location)

    raise HttpChallengeNotSupportedError(domain)


def response_payload(challenge: Challenge) -> dict:
    """Payload that tells the CA the challenge is ready to be validated."""
    return CHALLENGE_KINDS[challenge.type].response_payload(challenge)
