"""
Issued certificates and their issuer chain.

A ``Certificate`` owns at most one issuer ``Certificate``, so a leaf is the
head of a finite singly-linked list that ends at the last issuer the CA
pointed to.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional

from acmeclient.crypto import CertificateRequest, der_to_pem

logger = logging.getLogger(__name__)

# A new-cert body shorter than this means issuance is still pending; issuer
# bodies must be longer than this to be chained.
MIN_CERTIFICATE_BYTES = 10


@dataclass(frozen=True)
class Certificate:
    pem: str
    issuer: Optional["Certificate"] = None

    def __iter__(self) -> Iterator["Certificate"]:
        """Walk from this certificate to the root."""
        current: Optional[Certificate] = self
        while current is not None:
            yield current
            current = current.issuer

    def __len__(self) -> int:
        return sum(1 for _ in self)

    @property
    def chain_pem(self) -> str:
        """Concatenated PEM of the issuers only."""
        if self.issuer is None:
            return ""
        return "".join(c.pem for c in self.issuer)

    @property
    def fullchain_pem(self) -> str:
        return "".join(c.pem for c in self)


@dataclass(frozen=True)
class CertificateResponse:
    certificate_request: CertificateRequest
    certificate: Certificate


def is_issuance_pending(body: bytes) -> bool:
    return len(body.strip()) < MIN_CERTIFICATE_BYTES


def has_certificate_body(body: bytes) -> bool:
    return len(body.strip()) > MIN_CERTIFICATE_BYTES


def build_chain(pems: Iterable[str]) -> Optional[Certificate]:
    """
    Link *pems* so the first becomes the head and each following one the
    issuer of the one before it.
    """
    chain: Optional[Certificate] = None
    for pem in reversed(list(pems)):
        chain = Certificate(pem, chain)
    return chain


def assemble_chain(
    leaf_der: bytes,
    links: Iterable[dict],
    fetch: Callable[[str], bytes],
) -> Certificate:
    """
    Build the leaf certificate and its issuer chain.

    Every ``rel="up"`` link is fetched in header order; non-trivial bodies are
    appended root-ward, so the first link is the leaf's direct issuer.
    """
    issuers = []
    for link in links:
        if link.get("rel") != "up":
            continue
        body = fetch(link["url"])
        if has_certificate_body(body):
            issuers.append(der_to_pem(body))
        else:
            logger.warning("Skipping empty issuer certificate at %s", link["url"])

    return Certificate(der_to_pem(leaf_der), build_chain(issuers))
