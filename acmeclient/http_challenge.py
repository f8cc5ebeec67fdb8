"""
Publishing an HTTP-01 challenge so the CA can fetch it.

Two modes:
  1. Standalone: spins up a minimal HTTP server on a configurable port
     (default 80).  Requires the process to be able to bind that port
     (use authbind on Linux, or run as root / with CAP_NET_BIND_SERVICE).
  2. Webroot: writes the key-authorization file into an existing web-server
     root so an already-running nginx/apache can serve it.
"""
from __future__ import annotations

import logging
import os
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Optional

from acmeclient.challenges import TOKEN_PATTERN, Challenge
from acmeclient.errors import AcmeClientError

logger = logging.getLogger(__name__)


# ─── Standalone mode ──────────────────────────────────────────────────────────


class _ChallengeHandler(BaseHTTPRequestHandler):
    """Serves only the challenge path; 404 for everything else."""

    # Set on the per-server subclass built in StandaloneHttpChallenge.start
    challenge: Challenge

    def do_GET(self) -> None:
        if self.path == self.challenge.path:
            body = self.challenge.key_authorization.encode()
            self.send_response(200)
            self.send_header("Content-Type", "text/plain")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)
        else:
            self.send_response(404)
            self.end_headers()

    def log_message(self, fmt: str, *args: object) -> None:
        logger.debug("challenge server: " + fmt, *args)


class StandaloneHttpChallenge:
    """
    Minimal HTTP server that serves exactly one HTTP-01 challenge.

    Usage:
        with StandaloneHttpChallenge(port=80) as srv:
            srv.start(challenge)
            client.check_challenge(challenge)
    """

    def __init__(self, port: int = 80, host: str = "0.0.0.0") -> None:
        self.port = port
        self.host = host
        self._server: Optional[HTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def server_port(self) -> int:
        """Bound port (useful when constructed with port 0)."""
        if self._server is None:
            raise RuntimeError("Challenge server is not running")
        return self._server.server_address[1]

    def start(self, challenge: Challenge) -> None:
        """Start the HTTP server in a background thread."""
        if self._server is not None:
            raise RuntimeError("Challenge server is already running")

        handler = type("ChallengeHandler", (_ChallengeHandler,), {"challenge": challenge})
        self._server = HTTPServer((self.host, self.port), handler)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        logger.info("Serving %s on port %d", challenge.path, self.server_port)

    def stop(self) -> None:
        """Shut down the HTTP server."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

    def __enter__(self) -> "StandaloneHttpChallenge":
        return self

    def __exit__(self, *_: object) -> None:
        self.stop()


# ─── Webroot mode ─────────────────────────────────────────────────────────────


def webroot_challenge_path(webroot_path: str, challenge: Challenge) -> Path:
    if not TOKEN_PATTERN.fullmatch(challenge.token):
        raise AcmeClientError(f"Refusing to write challenge file for token {challenge.token!r}")
    return Path(webroot_path) / challenge.path.lstrip("/")


def write_webroot_challenge(webroot_path: str, challenge: Challenge) -> Path:
    """
    Write the key-authorization to the correct path under *webroot_path*.

    The file will be at:
      <webroot_path>/.well-known/acme-challenge/<token>

    Returns the Path of the written file.
    """
    token_path = webroot_challenge_path(webroot_path, challenge)
    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(challenge.key_authorization, encoding="utf-8")
    return token_path


def remove_webroot_challenge(webroot_path: str, challenge: Challenge) -> None:
    """Remove the challenge file after verification."""
    try:
        os.remove(webroot_challenge_path(webroot_path, challenge))
    except FileNotFoundError:
        pass
