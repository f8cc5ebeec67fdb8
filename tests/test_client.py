"""
Unit tests for the ACME protocol client (acmeclient/client.py).

These tests use the `responses` library to mock the CA; no Boulder access
required.  Poll sleeps are recorded by the `sleeps` fixture instead of
blocking.
"""
from __future__ import annotations

import json

import pytest
import responses as resp_lib
from cryptography import x509

from acmeclient import jws as jwslib
from acmeclient.challenges import Challenge
from acmeclient.certificate import CertificateResponse
from acmeclient.crypto import CertificateRequest, DistinguishedName, generate_rsa_key, pem_to_der
from acmeclient.errors import (
    AcmeClientError,
    CertificateRequestFailedError,
    CertificateRequestTimedOutError,
    ConflictServerError,
    HttpChallengeNotSupportedError,
    HttpChallengeTimedOutError,
    MalformedServerError,
    UnauthorizedServerError,
)
from tests.conftest import DIRECTORY_URL, FAKE_DIRECTORY, FAKE_NONCE

AUTHZ_URL = "https://acme.test/acme/authz/abc"
CHALLENGE_URL = "https://acme.test/acme/challenge/abc/2"
CERT_URL = "https://acme.test/acme/cert/ff01"
ISSUER_1_URL = "https://acme.test/acme/issuer-cert"
ISSUER_2_URL = "https://acme.test/acme/root-cert"

LEAF_DER = b"\x30\x82\x03\x00" + b"leaf" * 40
ISSUER_1_DER = b"\x30\x82\x02\x00" + b"issuer" * 30
ISSUER_2_DER = b"\x30\x82\x01\x00" + b"root" * 30

UP_LINKS = f'<{ISSUER_1_URL}>;rel="up", <{ISSUER_2_URL}>;rel="up"'


# ─── Fixtures & helpers ───────────────────────────────────────────────────────

@pytest.fixture(scope="module")
def csr():
    return CertificateRequest(DistinguishedName("example.com"), generate_rsa_key(key_size=2048))


@pytest.fixture()
def challenge(account_key):
    return Challenge(
        domain="example.com",
        url=CHALLENGE_URL,
        token="httptoken",
        key_authorization=jwslib.compute_key_authorization("httptoken", account_key),
        location=AUTHZ_URL,
    )


def _nonce_headers(**extra) -> dict:
    return {"Replay-Nonce": FAKE_NONCE, **extra}


def _mock_directory() -> None:
    resp_lib.add(resp_lib.GET, DIRECTORY_URL, json=FAKE_DIRECTORY, headers=_nonce_headers())


def _mock_authorization(challenges: list | None = None) -> None:
    if challenges is None:
        challenges = [
            {"type": "dns-01", "uri": "https://acme.test/acme/challenge/abc/1", "token": "dnstoken"},
            {"type": "http-01", "uri": CHALLENGE_URL, "token": "httptoken"},
        ]
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["new-authz"],
        json={"identifier": {"type": "dns", "value": "example.com"}, "status": "pending", "challenges": challenges},
        status=201,
        headers=_nonce_headers(Location=AUTHZ_URL),
    )


def _payload(call) -> dict:
    body = json.loads(call.request.body)
    return json.loads(jwslib.b64url_decode(body["payload"])) if body["payload"] else {}


def _calls_to(url: str) -> list:
    return [c for c in resp_lib.calls if c.request.url == url]


# ─── register_account ─────────────────────────────────────────────────────────

@resp_lib.activate
def test_register_account(client):
    _mock_directory()
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["new-reg"],
        json={"id": 42, "key": {}, "initialIp": "127.0.0.1", "createdAt": "2016-01-01T00:00:00Z"},
        status=201,
        headers=_nonce_headers(),
    )

    account = client.register_account("https://acme.test/terms/v1", "admin@example.com")

    assert account["id"] == 42
    assert _payload(_calls_to(FAKE_DIRECTORY["new-reg"])[0]) == {
        "resource": "new-reg",
        "agreement": "https://acme.test/terms/v1",
        "contact": ["mailto:admin@example.com"],
    }


@resp_lib.activate
def test_register_account_without_contact(client):
    _mock_directory()
    resp_lib.add(resp_lib.POST, FAKE_DIRECTORY["new-reg"], json={"id": 1}, status=201, headers=_nonce_headers())

    client.register_account()

    assert _payload(_calls_to(FAKE_DIRECTORY["new-reg"])[0]) == {"resource": "new-reg", "agreement": None}


@resp_lib.activate
def test_register_twice_is_server_error(client):
    _mock_directory()
    resp_lib.add(resp_lib.POST, FAKE_DIRECTORY["new-reg"], json={"id": 1}, status=201, headers=_nonce_headers())
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["new-reg"],
        json={"type": "urn:acme:error:malformed", "detail": "Registration key is already in use", "status": 409},
        status=409,
        headers=_nonce_headers(Location="https://acme.test/acme/reg/1"),
    )

    client.register_account()
    with pytest.raises(MalformedServerError) as exc_info:
        client.register_account()

    assert exc_info.value.status_code == 409
    assert exc_info.value.body["detail"] == "Registration key is already in use"


@resp_lib.activate
def test_conflict_without_problem_type(client):
    _mock_directory()
    resp_lib.add(resp_lib.POST, FAKE_DIRECTORY["new-reg"], body="conflict", status=409, headers=_nonce_headers())
    with pytest.raises(ConflictServerError):
        client.register_account()


@pytest.mark.parametrize("agreement, email", [("", None), (None, ""), (42, None), (None, ["a@b.c"])])
@resp_lib.activate
def test_register_rejects_bad_arguments(client, agreement, email):
    with pytest.raises(AcmeClientError):
        client.register_account(agreement, email)
    assert len(resp_lib.calls) == 0


# ─── request_challenge ────────────────────────────────────────────────────────

@resp_lib.activate
def test_request_challenge(client, account_key):
    _mock_directory()
    _mock_authorization()

    challenge = client.request_challenge("example.com")

    assert challenge.domain == "example.com"
    assert challenge.url == CHALLENGE_URL
    assert challenge.token == "httptoken"
    assert challenge.location == AUTHZ_URL
    assert challenge.key_authorization == f"httptoken.{jwslib.compute_jwk_thumbprint(account_key)}"
    assert _payload(_calls_to(FAKE_DIRECTORY["new-authz"])[0]) == {
        "resource": "new-authz",
        "identifier": {"type": "dns", "value": "example.com"},
    }


@pytest.mark.parametrize("challenges", [[], [{"type": "dns-01", "uri": "https://acme.test/c", "token": "t"}]])
@resp_lib.activate
def test_request_challenge_without_http01(client, challenges):
    _mock_directory()
    _mock_authorization(challenges)
    with pytest.raises(HttpChallengeNotSupportedError):
        client.request_challenge("example.com")


@pytest.mark.parametrize(
    "entry",
    [
        {"type": "http-01", "token": "httptoken"},
        {"type": "http-01", "uri": CHALLENGE_URL},
        {"type": "http-01", "uri": CHALLENGE_URL, "token": "../../etc/passwd"},
    ],
)
@resp_lib.activate
def test_request_challenge_with_unusable_http01_entry(client, entry):
    _mock_directory()
    _mock_authorization([entry])
    with pytest.raises(AcmeClientError):
        client.request_challenge("example.com")


@resp_lib.activate
def test_request_challenge_unauthorized(client):
    _mock_directory()
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["new-authz"],
        json={"type": "urn:acme:error:unauthorized", "detail": "Must agree to subscriber agreement"},
        status=403,
        headers=_nonce_headers(),
    )
    with pytest.raises(UnauthorizedServerError):
        client.request_challenge("example.com")


@pytest.mark.parametrize("domain", ["", None, 123])
@resp_lib.activate
def test_request_challenge_rejects_bad_domain(client, domain):
    with pytest.raises(AcmeClientError):
        client.request_challenge(domain)
    assert len(resp_lib.calls) == 0


# ─── check_challenge ──────────────────────────────────────────────────────────

def _mock_challenge_submit() -> None:
    resp_lib.add(resp_lib.HEAD, CHALLENGE_URL, headers=_nonce_headers())
    resp_lib.add(
        resp_lib.POST,
        CHALLENGE_URL,
        json={"type": "http-01", "status": "pending", "token": "httptoken"},
        status=202,
        headers=_nonce_headers(),
    )


def _mock_authz_status(*statuses: str) -> None:
    for status in statuses:
        resp_lib.add(resp_lib.GET, AUTHZ_URL, json={"status": status}, headers=_nonce_headers())


@resp_lib.activate
def test_check_challenge_returns_when_valid(client, challenge, sleeps):
    _mock_challenge_submit()
    _mock_authz_status("pending", "pending", "valid")

    result = client.check_challenge(challenge)

    assert result == {"status": "valid"}
    assert len(_calls_to(AUTHZ_URL)) == 3
    assert sleeps == [1, 1]
    assert _payload(_calls_to(CHALLENGE_URL)[-1]) == {
        "resource": "challenge",
        "type": "http-01",
        "keyAuthorization": challenge.key_authorization,
        "token": "httptoken",
    }


@resp_lib.activate
def test_check_challenge_returns_invalid_status(client, challenge, sleeps):
    _mock_challenge_submit()
    _mock_authz_status("invalid")

    assert client.check_challenge(challenge)["status"] == "invalid"
    assert sleeps == []


@resp_lib.activate
def test_check_challenge_times_out(client, challenge, sleeps):
    _mock_challenge_submit()
    _mock_authz_status("pending")

    with pytest.raises(HttpChallengeTimedOutError):
        client.check_challenge(challenge, timeout=2)

    assert len(_calls_to(AUTHZ_URL)) == 2
    assert sum(sleeps) == 2


@resp_lib.activate
def test_check_challenge_rejects_non_object_authorization(client, challenge, sleeps):
    _mock_challenge_submit()
    resp_lib.add(resp_lib.GET, AUTHZ_URL, json=["valid"], headers=_nonce_headers())

    with pytest.raises(AcmeClientError):
        client.check_challenge(challenge)
    assert sleeps == []


@pytest.mark.parametrize("timeout", [-1, 1.5, "180", True])
@resp_lib.activate
def test_check_challenge_rejects_bad_timeout(client, challenge, timeout):
    with pytest.raises(AcmeClientError):
        client.check_challenge(challenge, timeout=timeout)
    assert len(resp_lib.calls) == 0


def test_check_challenge_rejects_non_challenge(client):
    with pytest.raises(AcmeClientError):
        client.check_challenge({"url": CHALLENGE_URL})


# ─── request_certificate ──────────────────────────────────────────────────────

def _mock_issuers() -> None:
    resp_lib.add(resp_lib.GET, ISSUER_1_URL, body=ISSUER_1_DER)
    resp_lib.add(resp_lib.GET, ISSUER_2_URL, body=ISSUER_2_DER)


@resp_lib.activate
def test_request_certificate_issued_immediately(client, csr, sleeps):
    _mock_directory()
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["new-cert"],
        body=LEAF_DER,
        status=201,
        content_type="application/pkix-cert",
        headers=_nonce_headers(Location=CERT_URL, Link=UP_LINKS),
    )
    _mock_issuers()

    response = client.request_certificate("example.com", csr)

    assert isinstance(response, CertificateResponse)
    assert response.certificate_request is csr
    leaf = response.certificate
    assert [pem_to_der(c.pem) for c in leaf] == [LEAF_DER, ISSUER_1_DER, ISSUER_2_DER]
    assert leaf.pem.startswith("-----BEGIN CERTIFICATE-----\n")
    assert leaf.pem.endswith("\n-----END CERTIFICATE-----\n")
    assert sleeps == []

    # CSR travels as unpadded base64url DER
    payload = _payload(_calls_to(FAKE_DIRECTORY["new-cert"])[0])
    assert payload["resource"] == "new-cert"
    assert "=" not in payload["csr"]
    sent = x509.load_der_x509_csr(jwslib.b64url_decode(payload["csr"]))
    assert sent.public_key().public_numbers() == csr.private_key.public_key().public_numbers()


@resp_lib.activate
def test_request_certificate_ten_byte_body_is_issued(client, csr, sleeps):
    _mock_directory()
    resp_lib.add(resp_lib.POST, FAKE_DIRECTORY["new-cert"], body=b"0123456789", status=201,
                 headers=_nonce_headers())

    leaf = client.request_certificate("example.com", csr).certificate

    assert pem_to_der(leaf.pem) == b"0123456789"
    assert leaf.issuer is None
    assert sleeps == []


@resp_lib.activate
def test_request_certificate_polls_until_issued(client, csr, sleeps):
    _mock_directory()
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["new-cert"],
        body=b"",
        status=202,
        headers=_nonce_headers(Location=CERT_URL),
    )
    resp_lib.add(resp_lib.GET, CERT_URL, body=b"", status=202)
    resp_lib.add(resp_lib.GET, CERT_URL, body=b"", status=202)
    resp_lib.add(resp_lib.GET, CERT_URL, body=LEAF_DER, status=200, headers={"Link": UP_LINKS})
    _mock_issuers()

    leaf = client.request_certificate("example.com", csr).certificate

    assert len(_calls_to(CERT_URL)) == 3
    assert sleeps == [1, 1]
    assert [pem_to_der(c.pem) for c in leaf] == [LEAF_DER, ISSUER_1_DER, ISSUER_2_DER]
    # Polls are unsigned
    assert all(c.request.body is None for c in _calls_to(CERT_URL))


@resp_lib.activate
def test_request_certificate_failed_status(client, csr):
    _mock_directory()
    resp_lib.add(resp_lib.POST, FAKE_DIRECTORY["new-cert"], body=b"", status=202,
                 headers=_nonce_headers(Location=CERT_URL))
    resp_lib.add(resp_lib.GET, CERT_URL, body=b"", status=202)
    resp_lib.add(resp_lib.GET, CERT_URL, json={"detail": "issuance failed"}, status=500)

    with pytest.raises(CertificateRequestFailedError) as exc_info:
        client.request_certificate("example.com", csr)

    assert exc_info.value.status_code == 500
    assert "issuance failed" in exc_info.value.body


@resp_lib.activate
def test_request_certificate_times_out(client, csr, sleeps):
    _mock_directory()
    resp_lib.add(resp_lib.POST, FAKE_DIRECTORY["new-cert"], body=b"", status=202,
                 headers=_nonce_headers(Location=CERT_URL))
    resp_lib.add(resp_lib.GET, CERT_URL, body=b"still working", status=202)

    with pytest.raises(CertificateRequestTimedOutError) as exc_info:
        client.request_certificate("example.com", csr, timeout=3)

    assert exc_info.value.body == "still working"
    assert len(_calls_to(CERT_URL)) == 3
    assert sum(sleeps) == 3


@resp_lib.activate
def test_request_certificate_rejected_csr(client, csr):
    _mock_directory()
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["new-cert"],
        json={"type": "urn:acme:error:unauthorized", "detail": "Authorizations for these names not found"},
        status=403,
        headers=_nonce_headers(),
    )
    with pytest.raises(UnauthorizedServerError):
        client.request_certificate("example.com", csr)


@resp_lib.activate
def test_request_certificate_rejects_bad_arguments(client, csr):
    with pytest.raises(AcmeClientError):
        client.request_certificate("", csr)
    with pytest.raises(AcmeClientError):
        client.request_certificate("example.com", "not a csr")
    with pytest.raises(AcmeClientError):
        client.request_certificate("example.com", csr, timeout=-5)
    assert len(resp_lib.calls) == 0


# ─── Directory ────────────────────────────────────────────────────────────────

@resp_lib.activate
def test_directory_fetched_once_per_client(client, csr):
    _mock_directory()
    resp_lib.add(resp_lib.POST, FAKE_DIRECTORY["new-reg"], json={"id": 1}, status=201, headers=_nonce_headers())
    _mock_authorization()
    resp_lib.add(resp_lib.POST, FAKE_DIRECTORY["new-cert"], body=LEAF_DER, status=201, headers=_nonce_headers())

    client.register_account()
    client.request_challenge("example.com")
    client.request_challenge("example.com")
    client.request_certificate("example.com", csr)

    assert len(_calls_to(DIRECTORY_URL)) == 1


@resp_lib.activate
def test_directory_missing_resource(client):
    resp_lib.add(resp_lib.GET, DIRECTORY_URL, json={"new-reg": FAKE_DIRECTORY["new-reg"]})
    with pytest.raises(AcmeClientError):
        client.request_challenge("example.com")
