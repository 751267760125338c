"""End-to-end issuance against a mocked ACME v1 server."""

import logging
import threading
import time

import pytest

from certwire.client import AcmeClient
from certwire.exceptions import ChallengeFailedError, PollCancelledError, UnauthorizedError
from certwire.handlers import ChallengeHandler

CSR_DER = b"0\x82csr-der"
DOMAINS = ["example.com", "www.example.com", "api.example.com"]


class PublishingHandler(ChallengeHandler):
    def __init__(self):
        self.published: dict[str, str] = {}

    def fulfill(self, fingerprint: str, token: str, url: str) -> None:
        self.published[url] = f"{token}.{fingerprint}"


def _signed_nonces(acme_server) -> list[str]:
    return [
        acme_server.protected(call.request)["nonce"]
        for call in acme_server.router.calls
        if call.request.method == "POST"
    ]


class TestIssuanceSequence:
    """Tests for the full request sequence of one issuance."""

    def test_request_sequence(self, client, acme_server):
        acme_server.mock_registration()
        acme_server.mock_account()
        acme_server.mock_new_authz()
        acme_server.mock_challenge("example.com", ["pending", "valid"])
        acme_server.mock_new_cert()
        handler = PublishingHandler()

        client.fetch_directory()
        client.register(contact="admin@example.com")
        client.accept_tos()
        challenge = client.authorize("example.com")
        client.check_challenge(challenge, handler)
        certificate = client.sign(CSR_DER)

        challenge_url = acme_server.challenge_url("example.com")
        sequence = [(call.request.method, str(call.request.url)) for call in acme_server.router.calls]
        assert sequence == [
            ("GET", acme_server.directory_url),
            ("POST", acme_server.new_reg_url),
            ("POST", acme_server.account_url),
            ("POST", acme_server.new_authz_url),
            ("POST", challenge_url),
            ("GET", challenge_url),
            ("GET", challenge_url),
            ("POST", acme_server.new_cert_url),
        ]
        assert certificate.url == acme_server.cert_url
        assert handler.published == {
            f"http://example.com/.well-known/acme-challenge/{challenge.token}": (
                f"{challenge.token}.{client.thumbprint}"
            )
        }

        nonces = _signed_nonces(acme_server)
        assert len(nonces) == len(set(nonces))


class TestObtainCertificate:
    """Tests for the multi-domain workflow."""

    @pytest.fixture
    def ready_client(self, registered_client, acme_server):
        acme_server.mock_account()
        registered_client.accept_tos()
        acme_server.mock_new_authz()
        return registered_client

    @pytest.mark.parametrize("max_workers", [1, 3])
    def test_obtain_certificate(self, ready_client, acme_server, max_workers, log_capture):
        for domain in DOMAINS:
            acme_server.mock_challenge(domain, ["pending", "valid"])
        cert_route = acme_server.mock_new_cert(b"0\x82cert")
        handler = PublishingHandler()

        certificate = ready_client.obtain_certificate(DOMAINS, CSR_DER, handler, max_workers=max_workers)

        assert certificate.der == b"0\x82cert"
        assert cert_route.call_count == 1
        assert len(handler.published) == len(DOMAINS)
        assert ready_client.authorizations == {}

        nonces = _signed_nonces(acme_server)
        assert len(nonces) == len(set(nonces))

        validated = {
            record.domain
            for record in log_capture.get_records(logging.INFO, name="certwire.client")
            if record.getMessage() == "Challenge validated"
        }
        assert validated == set(DOMAINS)

    @pytest.mark.parametrize("max_workers", [1, 3])
    def test_one_failed_domain_aborts_issuance(self, ready_client, acme_server, max_workers):
        acme_server.mock_challenge("example.com", ["valid"])
        acme_server.mock_challenge(
            "www.example.com",
            ["invalid"],
            error={"type": "urn:acme:error:unauthorized", "detail": "Invalid response", "status": 403},
        )
        acme_server.mock_challenge("api.example.com", ["valid"])
        cert_route = acme_server.mock_new_cert()

        with pytest.raises(ChallengeFailedError, match="Invalid response"):
            ready_client.obtain_certificate(DOMAINS, CSR_DER, PublishingHandler(), max_workers=max_workers)

        assert not cert_route.called
        assert ready_client.authorizations == {}

    def test_server_fault_during_authorization(self, ready_client, acme_server):
        acme_server.router.post(acme_server.new_authz_url).mock(
            side_effect=lambda request: acme_server.problem(403, "unauthorized", "Name is blacklisted")
        )

        with pytest.raises(UnauthorizedError, match="blacklisted"):
            ready_client.obtain_certificate(["example.com"], CSR_DER, PublishingHandler())

    def test_requires_domains(self, ready_client):
        with pytest.raises(ValueError, match="At least one domain"):
            ready_client.obtain_certificate([], CSR_DER, PublishingHandler())


class TestParallelAbort:
    """Tests for stopping sibling workers in the multi-domain workflow."""

    # poll_interval * max_poll_attempts is 100 seconds
    @pytest.fixture
    def slow_client(self, rsa_account_key, acme_server):
        client = AcmeClient(
            host=acme_server.host,
            account_key=rsa_account_key,
            poll_interval=0.2,
            max_poll_attempts=500,
        )
        acme_server.mock_registration()
        acme_server.mock_account()
        acme_server.mock_new_authz()
        client.fetch_directory()
        client.register(contact="admin@example.com")
        client.accept_tos()
        yield client
        client.close()

    def test_failure_stops_polling_siblings(self, slow_client, acme_server):
        _, first_polls = acme_server.mock_challenge("example.com", ["pending"])
        acme_server.mock_challenge(
            "www.example.com",
            ["invalid"],
            error={"type": "urn:acme:error:unauthorized", "detail": "Invalid response", "status": 403},
        )
        _, third_polls = acme_server.mock_challenge("api.example.com", ["pending"])
        cert_route = acme_server.mock_new_cert()

        started = time.monotonic()
        with pytest.raises(ChallengeFailedError, match="Invalid response"):
            slow_client.obtain_certificate(DOMAINS, CSR_DER, PublishingHandler(), max_workers=3)

        assert time.monotonic() - started < 10
        assert first_polls.call_count < 20
        assert third_polls.call_count < 20
        assert not cert_route.called

    def test_caller_cancel_reaches_workers(self, slow_client, acme_server):
        for domain in DOMAINS:
            acme_server.mock_challenge(domain, ["pending"])
        cancel = threading.Event()
        timer = threading.Timer(0.3, cancel.set)
        timer.start()

        started = time.monotonic()
        try:
            with pytest.raises(PollCancelledError):
                slow_client.obtain_certificate(
                    DOMAINS, CSR_DER, PublishingHandler(), max_workers=3, cancel=cancel
                )
        finally:
            timer.cancel()

        assert time.monotonic() - started < 10

    def test_cancel_set_before_start(self, slow_client, acme_server):
        for domain in DOMAINS:
            acme_server.mock_challenge(domain, ["pending"])
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(PollCancelledError):
            slow_client.obtain_certificate(DOMAINS, CSR_DER, PublishingHandler(), max_workers=3, cancel=cancel)
