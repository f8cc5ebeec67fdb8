"""
Error taxonomy for the ACME client.

Three families, all rooted at ``AcmeError``:

* ``AcmeClientError``  : caller misuse or an unreadable response; raised
  before any network call whenever the arguments alone are wrong.
* ``AcmeServerError``  : the CA answered with a non-2xx status.  The decoded
  problem document is kept verbatim on ``.body`` and the concrete subclass is
  picked from its ``type`` (see ``server_error_for``).
* ``AcmeProtocolError``: the exchange was well-formed but a protocol
  condition was not met (no HTTP-01 offered, validation or issuance timed out).
"""
from __future__ import annotations

from typing import Any


class AcmeError(Exception):
    """Base class for everything this package raises."""


class AcmeClientError(AcmeError):
    """Raised on invalid arguments or when a response cannot be interpreted."""


# ─── Server errors ────────────────────────────────────────────────────────────


class AcmeServerError(AcmeError):
    """Raised when the ACME server returns an error response."""

    def __init__(self, status_code: int, body: dict, new_nonce: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.new_nonce = new_nonce
        problem_type = body.get("type", "unknown")
        detail = body.get("detail", str(body))
        super().__init__(f"ACME {status_code}: {problem_type}: {detail}")

    @property
    def problem_type(self) -> str:
        return self.body.get("type", "")


class BadCsrServerError(AcmeServerError):
    pass


class BadNonceServerError(AcmeServerError):
    pass


class ConflictServerError(AcmeServerError):
    """HTTP 409 without a more specific problem type (account already exists)."""


class ConnectionServerError(AcmeServerError):
    pass


class InternalServerError(AcmeServerError):
    pass


class InvalidEmailServerError(AcmeServerError):
    pass


class MalformedServerError(AcmeServerError):
    pass


class RateLimitedServerError(AcmeServerError):
    pass


class TlsServerError(AcmeServerError):
    pass


class UnauthorizedServerError(AcmeServerError):
    pass


class UnknownHostServerError(AcmeServerError):
    pass


# Keyed by the last segment of the problem type, so both the
# "urn:acme:error:" and "urn:ietf:params:acme:error:" namespaces match.
_PROBLEM_TYPES: dict[str, type[AcmeServerError]] = {
    "badCSR": BadCsrServerError,
    "badNonce": BadNonceServerError,
    "connection": ConnectionServerError,
    "serverInternal": InternalServerError,
    "invalidEmail": InvalidEmailServerError,
    "invalidContact": InvalidEmailServerError,
    "malformed": MalformedServerError,
    "rateLimited": RateLimitedServerError,
    "tls": TlsServerError,
    "unauthorized": UnauthorizedServerError,
    "unknownHost": UnknownHostServerError,
}


def server_error_for(status_code: int, body: Any, new_nonce: str = "") -> AcmeServerError:
    """Build the most specific ``AcmeServerError`` for a problem document."""
    if not isinstance(body, dict):
        body = {"detail": str(body)}
    problem_type = str(body.get("type", ""))
    cls = _PROBLEM_TYPES.get(problem_type.rsplit(":", 1)[-1])
    if cls is None:
        cls = ConflictServerError if status_code == 409 else AcmeServerError
    return cls(status_code, body, new_nonce)


# ─── Protocol errors ──────────────────────────────────────────────────────────


class AcmeProtocolError(AcmeError):
    """An expected protocol condition was not satisfied."""


class HttpChallengeNotSupportedError(AcmeProtocolError):
    def __init__(self, domain: str = "") -> None:
        self.domain = domain
        super().__init__(f"The CA did not offer an http-01 challenge for {domain or 'this identifier'}")


class HttpChallengeTimedOutError(AcmeProtocolError):
    def __init__(self, body: Any = None) -> None:
        self.body = body
        super().__init__("Challenge validation is still pending after the timeout")


class CertificateRequestFailedError(AcmeProtocolError):
    def __init__(self, body: str, status_code: int = 0) -> None:
        self.body = body
        self.status_code = status_code
        super().__init__(f"Certificate request failed (HTTP {status_code}): {body}")


class CertificateRequestTimedOutError(AcmeProtocolError):
    def __init__(self, body: str) -> None:
        self.body = body
        super().__init__("Certificate is still being processed after the timeout")
