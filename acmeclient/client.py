"""
ACME protocol client: register → challenge → prove → issue.

The client resolves resource URLs from the CA directory (fetched once, on
first use) and drives each step through a ``SecureHttpClient``.  Steps that
the CA completes asynchronously (challenge validation and certificate
issuance) are polled once a second until they settle or the timeout is
spent.

Each call returns an ``HttpResponse`` envelope, so the ``Location`` and
``Link`` headers read after a request always belong to that request.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from acmeclient import jws as jwslib
from acmeclient.certificate import (
    CertificateResponse,
    assemble_chain,
    is_issuance_pending,
)
from acmeclient.challenges import HTTP_01, Challenge, derive_challenge, response_payload
from acmeclient.crypto import CertificateRequest, CertificateRequestSigner, pem_to_der
from acmeclient.directory import LazyDirectory, Resource
from acmeclient.errors import (
    AcmeClientError,
    CertificateRequestFailedError,
    CertificateRequestTimedOutError,
    HttpChallengeTimedOutError,
)
from acmeclient.polling import POLL_INTERVAL, poll
from acmeclient.transport import HttpResponse, SecureHttpClient

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 180


class AcmeClient:
    """
    Implements the resource-style ACME issuance flow.

    ``sleep`` is what the poll loops wait with; tests pass a recorder.
    """

    def __init__(
        self,
        http_client: SecureHttpClient,
        directory_url: str,
        csr_signer: CertificateRequestSigner | None = None,
        sleep=None,
    ) -> None:
        if not isinstance(directory_url, str) or not directory_url:
            raise AcmeClientError("directory_url must be a non-empty string")
        self.http_client = http_client
        self.directory_url = directory_url
        self.csr_signer = csr_signer or CertificateRequestSigner()
        self._directory = LazyDirectory(self._fetch_directory)
        self._poll_kwargs = {"sleep": sleep} if sleep is not None else {}

    # ── Account ───────────────────────────────────────────────────────────

    def register_account(self, agreement: Optional[str] = None, email: Optional[str] = None) -> dict:
        """
        POST new-reg with the account key.

        Returns the decoded registration (id, key, contact, createdAt, ...).
        A key that is already registered makes the CA answer with an error,
        surfaced as an ``AcmeServerError`` subclass (typically malformed or
        conflict).
        """
        _check_optional_string("agreement", agreement)
        _check_optional_string("email", email)

        payload: dict[str, Any] = {
            "resource": Resource.NEW_REGISTRATION.value,
            "agreement": agreement,
        }
        if email:
            payload["contact"] = [f"mailto:{email}"]

        response = self._request_resource("POST", Resource.NEW_REGISTRATION, payload)
        logger.info("Registered ACME account (contact=%s)", payload.get("contact", []))
        return response.json()

    # ── Challenges ────────────────────────────────────────────────────────

    def request_challenge(self, domain: str) -> Challenge:
        """
        POST new-authz for *domain* and derive its http-01 challenge.

        The returned ``Challenge`` carries the key authorization to publish at
        ``/.well-known/acme-challenge/<token>`` and the authorization URL to
        poll.  Raises HttpChallengeNotSupportedError if the CA offers no
        http-01 challenge.
        """
        _check_domain(domain)

        payload = {
            "resource": Resource.NEW_AUTHORIZATION.value,
            "identifier": {"type": "dns", "value": domain},
        }
        response = self._request_resource("POST", Resource.NEW_AUTHORIZATION, payload)

        challenge = derive_challenge(
            domain,
            response.json(),
            self.http_client.account_key,
            response.location,
            HTTP_01,
        )
        logger.info("Received %s challenge for %s (token %s)", challenge.type, domain, challenge.token)
        return challenge

    def check_challenge(self, challenge: Challenge, timeout: int = DEFAULT_TIMEOUT) -> dict:
        """
        Ask the CA to validate *challenge*, then poll its authorization until
        the status is no longer ``pending``.

        Returns the final authorization; callers inspect ``status`` for
        ``valid`` / ``invalid``.  Raises HttpChallengeTimedOutError if it is
        still pending after *timeout* seconds.
        """
        if not isinstance(challenge, Challenge):
            raise AcmeClientError(f"check_challenge expected a Challenge, got {type(challenge).__name__}")
        _check_timeout(timeout)

        submitted = self.http_client.signed_request("POST", challenge.url, response_payload(challenge))
        logger.info("Submitted %s challenge for %s", challenge.type, challenge.domain)

        def fetch_status() -> dict:
            return self.http_client.signed_request("GET", challenge.location).json()

        authorization = poll(
            fetch_status,
            _is_pending,
            submitted.json(),
            timeout,
            POLL_INTERVAL,
            **self._poll_kwargs,
        )

        if not isinstance(authorization, dict):
            raise AcmeClientError(f"Unexpected authorization document: {authorization!r}")
        if _is_pending(authorization):
            raise HttpChallengeTimedOutError(authorization)

        logger.info("Challenge for %s finished with status %s", challenge.domain, authorization.get("status"))
        return authorization

    # ── Certificates ──────────────────────────────────────────────────────

    def request_certificate(
        self,
        domain: str,
        csr: CertificateRequest,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> CertificateResponse:
        """
        POST new-cert with *csr*, wait for issuance and fetch the issuer chain.

        The leaf is PEM-encoded from the issuance body; every ``Link:
        rel="up"`` of the final response is downloaded and chained in header
        order.  Raises CertificateRequestFailedError on an unexpected status
        while waiting and CertificateRequestTimedOutError if the CA is still
        processing after *timeout* seconds.
        """
        _check_domain(domain)
        if not isinstance(csr, CertificateRequest):
            raise AcmeClientError(f"request_certificate expected a CertificateRequest, got {type(csr).__name__}")
        _check_timeout(timeout)

        csr_der = pem_to_der(self.csr_signer.sign(csr))
        payload = {
            "resource": Resource.NEW_CERTIFICATE.value,
            "csr": jwslib.b64url_encode(csr_der),
        }
        response = self._request_resource("POST", Resource.NEW_CERTIFICATE, payload)

        if is_issuance_pending(response.content):
            response = self._wait_for_certificate(response, timeout)

        certificate = assemble_chain(response.content, response.links, self._download)
        logger.info("Certificate issued for %s (%d certificate(s) in chain)", domain, len(certificate))
        return CertificateResponse(csr, certificate)

    def _wait_for_certificate(self, response: HttpResponse, timeout: int) -> HttpResponse:
        location = response.location
        if not location:
            raise CertificateRequestFailedError(response.text, response.status_code)
        logger.info("Certificate not issued yet, polling %s", location)

        def fetch() -> HttpResponse:
            polled = self.http_client.unsigned_request("GET", location, raise_for_status=False)
            if polled.status_code not in (200, 202):
                raise CertificateRequestFailedError(polled.text, polled.status_code)
            return polled

        response = poll(
            fetch,
            lambda r: r.status_code != 200,
            response,
            timeout,
            POLL_INTERVAL,
            **self._poll_kwargs,
        )

        if response.status_code == 202:
            raise CertificateRequestTimedOutError(response.text)
        return response

    def _download(self, url: str) -> bytes:
        return self.http_client.unsigned_request("GET", url).content

    # ── Internal ──────────────────────────────────────────────────────────

    def _fetch_directory(self) -> dict:
        """GET the directory URL to discover the ACME endpoint URLs."""
        return self.http_client.unsigned_request("GET", self.directory_url).json()

    def resolve(self, resource: Resource | str) -> str:
        return self._directory.resolve(resource)

    def _request_resource(self, method: str, resource: Resource, payload: dict) -> HttpResponse:
        """Signed request to the URL the directory lists for *resource*."""
        return self.http_client.signed_request(method, self.resolve(resource), payload)


def _is_pending(authorization: dict) -> bool:
    return isinstance(authorization, dict) and authorization.get("status") == "pending"


def _check_domain(domain: object) -> None:
    if not isinstance(domain, str) or not domain:
        raise AcmeClientError(f"domain must be a non-empty string, got {domain!r}")


def _check_optional_string(name: str, value: object) -> None:
    if value is not None and (not isinstance(value, str) or not value):
        raise AcmeClientError(f"{name} must be a non-empty string or None, got {value!r}")


def _check_timeout(timeout: object) -> None:
    if isinstance(timeout, bool) or not isinstance(timeout, int) or timeout < 0:
        raise AcmeClientError(f"timeout must be a non-negative integer, got {timeout!r}")


def make_client() -> AcmeClient:
    """
    Create an AcmeClient from the current application settings.
    Late-imports config to avoid circular imports at module load time.
    """
    from config import settings  # noqa: PLC0415

    account_key = jwslib.load_account_key(settings.ACCOUNT_KEY_PATH)
    http_client = SecureHttpClient(
        account_key,
        timeout=settings.HTTP_TIMEOUT,
        ca_bundle=settings.ACME_CA_BUNDLE,
        insecure=settings.ACME_INSECURE,
    )
    return AcmeClient(http_client, settings.ACME_DIRECTORY_URL)
