"""
ACME issuance client: CLI entry point.

Usage:
  python main.py register [--email you@example.com] [--agreement URL]
  python main.py issue example.com [--email ...] [--agreement URL]
  python main.py issue example.com --san www.example.com --skip-register
"""
from __future__ import annotations

import argparse
import logging
import sys

import structlog

# ── Logging setup ─────────────────────────────────────────────────────────────

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
log = structlog.get_logger()


# ── Commands ──────────────────────────────────────────────────────────────────


def register(client, agreement: str | None, email: str | None) -> dict | None:
    """Register the account key; an already-registered key (HTTP 409) is not an error."""
    from acmeclient.errors import AcmeServerError

    try:
        account = client.register_account(agreement, email)
    except AcmeServerError as exc:
        if exc.status_code != 409:
            raise
        log.warning("registration rejected, assuming the key is already registered", detail=str(exc))
        return None
    log.info("account registered", id=account.get("id"), contact=account.get("contact"))
    return account


def publish_and_check(client, challenge, timeout: int) -> dict:
    """Serve *challenge* per HTTP_CHALLENGE_MODE while the CA validates it."""
    from acmeclient.http_challenge import (
        StandaloneHttpChallenge,
        remove_webroot_challenge,
        write_webroot_challenge,
    )
    from config import settings

    if settings.HTTP_CHALLENGE_MODE == "webroot":
        path = write_webroot_challenge(settings.WEBROOT_PATH, challenge)
        log.info("wrote webroot challenge", path=str(path))
        try:
            return client.check_challenge(challenge, timeout)
        finally:
            remove_webroot_challenge(settings.WEBROOT_PATH, challenge)

    with StandaloneHttpChallenge(port=settings.HTTP_CHALLENGE_PORT) as server:
        server.start(challenge)
        return client.check_challenge(challenge, timeout)


def issue(client, domain: str, san: list[str], agreement: str | None, email: str | None,
          skip_register: bool = False) -> dict:
    """Run register → challenge → prove → issue for *domain* and store the result."""
    from acmeclient.crypto import (
        CertificateRequest,
        DistinguishedName,
        generate_rsa_key,
        private_key_to_pem,
    )
    from config import settings
    from storage.filesystem import write_certificate_response

    if not skip_register:
        register(client, agreement, email)

    for name in dict.fromkeys([domain, *san]):
        challenge = client.request_challenge(name)
        authorization = publish_and_check(client, challenge, settings.CHALLENGE_TIMEOUT)
        if authorization.get("status") != "valid":
            log.error("challenge failed", domain=name, authorization=authorization)
            sys.exit(1)
        log.info("domain validated", domain=name)

    domain_key = generate_rsa_key(key_size=settings.DOMAIN_KEY_SIZE)
    csr = CertificateRequest(DistinguishedName(domain, subject_alternative_names=tuple(san)), domain_key)
    response = client.request_certificate(domain, csr, settings.CERTIFICATE_TIMEOUT)

    metadata = write_certificate_response(
        settings.CERT_STORE_PATH, domain, response, private_key_to_pem(domain_key)
    )
    log.info("certificate stored", **metadata)
    return metadata


# ── Entry point ───────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ACME certificate issuance client")
    sub = parser.add_subparsers(dest="command", required=True)

    reg = sub.add_parser("register", help="Register the account key with the CA")
    reg.add_argument("--email", default=None)
    reg.add_argument("--agreement", default=None)

    iss = sub.add_parser("issue", help="Validate a domain and obtain a certificate")
    iss.add_argument("domain")
    iss.add_argument("--san", nargs="*", default=[], metavar="DOMAIN")
    iss.add_argument("--email", default=None)
    iss.add_argument("--agreement", default=None)
    iss.add_argument("--skip-register", action="store_true")
    return parser


def main(argv: list[str] | None = None) -> int:
    from acmeclient import jws as jwslib
    from acmeclient.client import make_client
    from acmeclient.errors import AcmeError
    from config import settings

    args = build_parser().parse_args(argv)

    if not jwslib.account_key_exists(settings.ACCOUNT_KEY_PATH):
        log.error(
            "account key not found; create one, e.g. `openssl genrsa -out account.key 4096`",
            path=settings.ACCOUNT_KEY_PATH,
        )
        return 1

    email = args.email or settings.CONTACT_EMAIL
    agreement = args.agreement or settings.AGREEMENT_URL

    try:
        client = make_client()
        if args.command == "register":
            register(client, agreement, email)
        else:
            issue(client, args.domain, args.san, agreement, email, args.skip_register)
    except AcmeError as exc:
        log.error("ACME flow failed", error=str(exc), kind=type(exc).__name__)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
