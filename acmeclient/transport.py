"""
Signed / unsigned HTTP transport for the ACME client.

Every call returns an ``HttpResponse`` envelope carrying the status code, the
headers, the raw body, the ``Location`` header and the parsed ``Link``
relations of *that* exchange.  Nothing about a previous call is kept here
except the next anti-replay nonce.

badNonce retry: ACME servers return a fresh ``Replay-Nonce`` header even on
error responses.  ``signed_request`` re-signs with it up to ``_NONCE_RETRIES``
times before surfacing the error.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import requests
from josepy.jwk import JWKRSA
from requests.structures import CaseInsensitiveDict
from requests.utils import parse_header_links

from acmeclient import jws as jwslib
from acmeclient.errors import AcmeClientError, BadNonceServerError, server_error_for

logger = logging.getLogger(__name__)

_NONCE_RETRIES = 3


@dataclass(frozen=True)
class HttpResponse:
    status_code: int
    content: bytes
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)

    @classmethod
    def from_requests(cls, resp: requests.Response) -> "HttpResponse":
        return cls(resp.status_code, resp.content, CaseInsensitiveDict(resp.headers))

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    @property
    def location(self) -> str:
        return self.headers.get("Location", "")

    @property
    def nonce(self) -> str:
        return self.headers.get("Replay-Nonce", "")

    @property
    def links(self) -> list[dict[str, str]]:
        """``Link`` relations in header order, each ``{"url": ..., "rel": ...}``."""
        raw = self.headers.get("Link", "")
        if not raw:
            return []
        return parse_header_links(raw)

    def json(self) -> Any:
        try:
            return json.loads(self.content)
        except ValueError as exc:
            raise AcmeClientError(
                f"Could not decode JSON from HTTP {self.status_code} response: {self.text[:200]!r}"
            ) from exc


class SecureHttpClient:
    """
    HTTP client bound to one account key.

    ``unsigned_request`` performs plain calls; ``signed_request`` wraps the
    payload in a JWS signed with the account key.
    """

    def __init__(
        self,
        account_key: JWKRSA,
        timeout: int = 30,
        ca_bundle: str = "",
        insecure: bool = False,
        session: requests.Session | None = None,
    ) -> None:
        self.account_key = account_key
        self.timeout = timeout
        self._nonce = ""
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": "acmeclient/1.0"})

        if insecure:
            import urllib3
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
            self._session.verify = False
        elif ca_bundle:
            self._session.verify = ca_bundle

    # ── Unsigned ──────────────────────────────────────────────────────────

    def unsigned_request(
        self,
        method: str,
        url: str,
        payload: dict | None = None,
        raise_for_status: bool = True,
    ) -> HttpResponse:
        """
        Send *payload* (if any) as plain JSON.

        With ``raise_for_status=False`` error statuses are returned in the
        envelope instead of being raised, so callers can branch on them.
        """
        resp = self._session.request(
            method,
            url,
            json=payload,
            timeout=self.timeout,
        )
        response = self._record(resp)
        if raise_for_status and not response.ok:
            raise self._error(response)
        return response

    # ── Signed ────────────────────────────────────────────────────────────

    def signed_request(self, method: str, url: str, payload: dict | None = None) -> HttpResponse:
        """
        Sign *payload* with the account key and send it to *url*.

        Non-2xx responses raise the matching ``AcmeServerError`` subclass.
        """
        nonce = self._nonce or self._fetch_nonce(url)
        for attempt in range(_NONCE_RETRIES):
            body = jwslib.sign_request(payload, self.account_key, nonce, url)
            self._nonce = ""
            resp = self._session.request(
                method,
                url,
                data=json.dumps(body),
                headers={"Content-Type": "application/jose+json"},
                timeout=self.timeout,
            )
            response = self._record(resp)
            if response.ok:
                return response

            error = self._error(response)
            if isinstance(error, BadNonceServerError) and attempt < _NONCE_RETRIES - 1:
                logger.debug("badNonce from %s, re-signing (attempt %d)", url, attempt + 1)
                nonce = response.nonce or self._fetch_nonce(url)
                continue
            raise error

        # Should never reach here, but satisfy the type checker
        raise AcmeClientError("Exceeded nonce retry limit")

    # ── Internal ──────────────────────────────────────────────────────────

    def _fetch_nonce(self, url: str) -> str:
        """HEAD *url*: every ACME endpoint hands out a ``Replay-Nonce``."""
        resp = self._session.head(url, timeout=self.timeout)
        nonce = resp.headers.get("Replay-Nonce")
        if not nonce:
            raise server_error_for(resp.status_code, {"detail": "No Replay-Nonce header"})
        return nonce

    def _record(self, resp: requests.Response) -> HttpResponse:
        response = HttpResponse.from_requests(resp)
        if response.nonce:
            self._nonce = response.nonce
        return response

    @staticmethod
    def _error(response: HttpResponse):
        try:
            error_body = json.loads(response.content)
        except ValueError:
            error_body = {"detail": response.text}
        return server_error_for(response.status_code, error_body, response.nonce)
