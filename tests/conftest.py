"""Pytest fixtures for Certwire test suite."""

import json
import logging
import logging.handlers
import threading
from collections.abc import Generator
from typing import Any

import httpx
import pytest
import respx

from certwire.client import AcmeClient
from certwire.crypto import base64url_decode, generate_ecdsa_key, generate_rsa_key
from certwire.keys import CryptographyAccountKey

ACME_HOST = "https://acme.test"


class AcmeServer:
    """Scripted ACME v1 server on top of a respx router.

    Every response carries a fresh ``Replay-Nonce`` (nonce-1, nonce-2, ...).
    The directory and the nonce endpoint are mocked on creation; tests mock
    the remaining endpoints with the helpers below.
    """

    host = ACME_HOST
    directory_url = f"{ACME_HOST}/directory"
    new_reg_url = f"{ACME_HOST}/acme/new-reg"
    new_authz_url = f"{ACME_HOST}/acme/new-authz"
    new_cert_url = f"{ACME_HOST}/acme/new-cert"
    revoke_cert_url = f"{ACME_HOST}/acme/revoke-cert"
    account_url = f"{ACME_HOST}/acme/reg/1"
    tos_url = f"{ACME_HOST}/terms/v1"
    cert_url = f"{ACME_HOST}/acme/cert/abc123"
    issuer_url = f"{ACME_HOST}/acme/issuer-cert"

    def __init__(self, router: respx.MockRouter) -> None:
        self.router = router
        self._nonce = 0
        self._nonce_lock = threading.Lock()
        self.directory: dict[str, Any] = {
            "new-reg": self.new_reg_url,
            "new-authz": self.new_authz_url,
            "new-cert": self.new_cert_url,
            "revoke-cert": self.revoke_cert_url,
            "key-change": f"{ACME_HOST}/acme/key-change",
            "meta": {"terms-of-service": self.tos_url},
        }
        self.directory_route = router.get(self.directory_url).mock(
            side_effect=lambda request: self.reply(json_body=self.directory)
        )
        self.nonce_route = router.head(self.directory_url).mock(side_effect=lambda request: self.reply())

    def next_nonce(self) -> str:
        with self._nonce_lock:
            self._nonce += 1
            return f"nonce-{self._nonce}"

    def reply(
        self,
        status: int = 200,
        json_body: Any = None,
        content: bytes = b"",
        headers: list[tuple[str, str]] | None = None,
    ) -> httpx.Response:
        """Build a response with a fresh replay nonce."""
        all_headers = [("Replay-Nonce", self.next_nonce()), *(headers or [])]
        if json_body is not None:
            return httpx.Response(status, json=json_body, headers=all_headers)
        return httpx.Response(status, content=content, headers=all_headers)

    def problem(
        self,
        status: int,
        error: str,
        detail: str,
        headers: list[tuple[str, str]] | None = None,
    ) -> httpx.Response:
        """Build an error response with a problem document."""
        body = json.dumps({"type": f"urn:acme:error:{error}", "detail": detail, "status": status})
        return self.reply(
            status,
            content=body.encode(),
            headers=[("Content-Type", "application/problem+json"), *(headers or [])],
        )

    @staticmethod
    def payload(request: httpx.Request) -> dict[str, Any]:
        return decode_payload(request)

    @staticmethod
    def protected(request: httpx.Request) -> dict[str, Any]:
        return decode_protected(request)

    @staticmethod
    def link(url: str, rel: str) -> tuple[str, str]:
        return ("Link", f'<{url}>;rel="{rel}"')

    def registration_reply(self, status: int = 201, agreement: str | None = None) -> httpx.Response:
        body: dict[str, Any] = {"contact": ["mailto:admin@example.com"]}
        if agreement:
            body["agreement"] = agreement
        return self.reply(
            status,
            json_body=body,
            headers=[
                ("Location", self.account_url),
                self.link(self.new_authz_url, "next"),
                self.link(self.tos_url, "terms-of-service"),
            ],
        )

    def mock_registration(self, agreement: str | None = None) -> respx.Route:
        """Mock new-reg returning a freshly created account."""
        return self.router.post(self.new_reg_url).mock(
            side_effect=lambda request: self.registration_reply(agreement=agreement)
        )

    def mock_account(self, agreement: str | None = None) -> respx.Route:
        """Mock the account resource (queries and updates)."""
        def handle(request: httpx.Request) -> httpx.Response:
            sent = decode_payload(request)
            return self.registration_reply(202, agreement=sent.get("agreement") or agreement)

        return self.router.post(self.account_url).mock(side_effect=handle)

    def challenge_url(self, domain: str, challenge_type: str = "http-01") -> str:
        return f"{ACME_HOST}/acme/challenge/{domain}/{challenge_type}"

    def challenge(
        self,
        domain: str,
        challenge_type: str = "http-01",
        status: str = "pending",
        error: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "type": challenge_type,
            "uri": self.challenge_url(domain, challenge_type),
            "status": status,
            "token": f"token_{domain.replace('.', '_')}_{challenge_type}",
        }
        if error:
            body["error"] = error
        return body

    def authorization(
        self,
        domain: str,
        status: str = "pending",
        challenge_types: tuple[str, ...] = ("http-01", "dns-01"),
    ) -> dict[str, Any]:
        return {
            "identifier": {"type": "dns", "value": domain},
            "status": status,
            "challenges": [self.challenge(domain, t) for t in challenge_types],
            "combinations": [[i] for i in range(len(challenge_types))],
        }

    def mock_new_authz(self, status: str = "pending", **kwargs: Any) -> respx.Route:
        """Mock new-authz answering with an authorization for the requested domain."""
        def handle(request: httpx.Request) -> httpx.Response:
            domain = decode_payload(request)["identifier"]["value"]
            return self.reply(
                201,
                json_body=self.authorization(domain, status, **kwargs),
                headers=[("Location", f"{ACME_HOST}/acme/authz/{domain}")],
            )

        return self.router.post(self.new_authz_url).mock(side_effect=handle)

    def mock_challenge(self, domain: str, statuses: list[str], error: dict | None = None) -> tuple[respx.Route, respx.Route]:
        """Mock the http-01 challenge of a domain.

        POSTs (the response notification) answer pending; each GET poll
        answers the next status in ``statuses``, repeating the last one.
        """
        url = self.challenge_url(domain)
        post_route = self.router.post(url).mock(
            side_effect=lambda request: self.reply(202, json_body=self.challenge(domain))
        )
        remaining = list(statuses)

        def poll(request: httpx.Request) -> httpx.Response:
            status = remaining.pop(0) if len(remaining) > 1 else remaining[0]
            body = self.challenge(domain, status=status, error=error if status == "invalid" else None)
            return self.reply(202, json_body=body)

        get_route = self.router.get(url).mock(side_effect=poll)
        return post_route, get_route

    def mock_new_cert(self, der: bytes = b"\x30\x82certificate") -> respx.Route:
        return self.router.post(self.new_cert_url).mock(
            side_effect=lambda request: self.reply(
                201,
                content=der,
                headers=[
                    ("Content-Type", "application/pkix-cert"),
                    ("Location", self.cert_url),
                    self.link(self.issuer_url, "up"),
                ],
            )
        )


def decode_payload(request: httpx.Request) -> dict[str, Any]:
    """Decode the JSON payload of a JWS-signed request."""
    envelope = json.loads(request.content)
    return json.loads(base64url_decode(envelope["payload"]))


def decode_protected(request: httpx.Request) -> dict[str, Any]:
    """Decode the protected header of a JWS-signed request."""
    envelope = json.loads(request.content)
    return json.loads(base64url_decode(envelope["protected"]))


@pytest.fixture(scope="session")
def rsa_account_key() -> CryptographyAccountKey:
    """RSA account key shared by the whole session (generation is slow)."""
    return CryptographyAccountKey(generate_rsa_key(2048))


@pytest.fixture(scope="session")
def ec_account_key() -> CryptographyAccountKey:
    return CryptographyAccountKey(generate_ecdsa_key("P-256"))


@pytest.fixture
def acme_server() -> Generator[AcmeServer]:
    """Mocked ACME server; any unmocked request fails the test."""
    with respx.mock(assert_all_called=False) as router:
        yield AcmeServer(router)


@pytest.fixture
def client(rsa_account_key: CryptographyAccountKey, acme_server: AcmeServer) -> Generator[AcmeClient]:
    """Client pointed at the mocked server, polling without delay."""
    acme_client = AcmeClient(
        host=acme_server.host,
        account_key=rsa_account_key,
        poll_interval=0,
        max_poll_attempts=5,
    )
    yield acme_client
    acme_client.close()


@pytest.fixture
def registered_client(client: AcmeClient, acme_server: AcmeServer) -> AcmeClient:
    """Client that fetched the directory and registered an account."""
    acme_server.mock_registration()
    client.fetch_directory()
    client.register(contact="admin@example.com")
    return client


class LogCapture:
    """Helper class to capture and inspect log records."""

    def __init__(self, handler: logging.handlers.MemoryHandler) -> None:
        self._handler = handler

    @property
    def records(self) -> list[logging.LogRecord]:
        """Get all captured log records."""
        return self._handler.buffer

    def get_records(
        self, level: int | None = None, name: str | None = None
    ) -> list[logging.LogRecord]:
        """Get log records filtered by level and/or logger name.

        Args:
            level: Filter by log level (e.g., logging.INFO).
            name: Filter by logger name prefix (e.g., "certwire.client").

        Returns:
            List of matching log records.
        """
        records = self.records
        if level is not None:
            records = [r for r in records if r.levelno == level]
        if name is not None:
            records = [r for r in records if r.name.startswith(name)]
        return records

    def get_messages(self, level: int | None = None, name: str | None = None) -> list[str]:
        """Get log messages filtered by level and/or logger name."""
        return [r.getMessage() for r in self.get_records(level, name)]

    def clear(self) -> None:
        """Clear all captured log records."""
        self._handler.buffer.clear()


@pytest.fixture
def log_capture() -> Generator[LogCapture]:
    """Capture logs from the certwire library during a test.

    Usage:
        def test_something(log_capture):
            # do something that logs
            assert "Certificate issued" in log_capture.get_messages(logging.INFO)
    """
    # Large capacity so the buffer never flushes during a test
    handler = logging.handlers.MemoryHandler(capacity=10000)
    handler.setLevel(logging.DEBUG)

    certwire_logger = logging.getLogger("certwire")
    original_level = certwire_logger.level
    certwire_logger.setLevel(logging.DEBUG)
    certwire_logger.addHandler(handler)

    try:
        yield LogCapture(handler)
    finally:
        certwire_logger.removeHandler(handler)
        certwire_logger.setLevel(original_level)
        handler.close()
