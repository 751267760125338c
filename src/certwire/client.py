"""ACME client for certificate management."""

import json
import threading
import time
from collections.abc import Callable
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Any, NoReturn

import httpx
from pydantic import ValidationError

from certwire._logging import Timer, get_domain_extra, get_logger, reset_domain, set_domain
from certwire.challenges.http01 import compute_key_authorization, http01_url
from certwire.crypto import PrivateKey, base64url_encode, sign_jws
from certwire.exceptions import (
    AcmeError,
    BadNonceError,
    ChallengeFailedError,
    ChallengeHandlerError,
    ConflictError,
    DirectoryNotFetchedError,
    NotRegisteredError,
    NotSupportedError,
    OrderingError,
    PollCancelledError,
    PollTimeoutError,
    ProtocolError,
    TransportError,
    UnsupportedChallengeError,
)
from certwire.handlers.base import ChallengeHandler
from certwire.keys import AccountKey, load_account_key
from certwire.models import (
    Authorization,
    AuthorizationStatus,
    Challenge,
    ChallengeStatus,
    ChallengeType,
    Directory,
    IssuedCertificate,
    Registration,
    RegistrationOutcome,
    Resource,
    RevocationReason,
)
from certwire.nonce import NonceStore
from certwire.responses import SuccessEnvelope, classify

logger = get_logger(__name__)


class AcmeClient:
    """ACME client for automated SSL/TLS certificate management.

    One client is one session with one account: it owns the directory, the
    replay nonce, the registration and the authorizations of the current
    issuance. Steps must run in protocol order:
    fetch_directory() → register() → accept_tos() → authorize() /
    check_challenge() per domain → sign(). revoke() only needs the directory.

    Args:
        host: Base URL of the ACME server.
        account_key: Account key as PEM text/bytes, a loaded private key,
                     or an AccountKey. Mutually exclusive with account_key_path.
        account_key_path: Path of the PEM account key.
        key_backend: "cryptography" to sign in process, "openssl" to shell out.
        key_password: Password of an encrypted PEM key.
        directory_path: Path of the directory resource below host.
        challenge_types: Challenge types to accept, in order of preference.
        poll_interval: Seconds between status polls.
        max_poll_attempts: Maximum number of status polls (at least 1).
        http_client: httpx.Client to use instead of an owned one.
        ca_cert: Path to CA certificate file, False to disable verification,
                 or None/True for default verification.
        timeout: HTTP timeout in seconds for the owned client.
    """

    # Polling configuration
    POLL_INTERVAL = 2  # seconds
    MAX_POLL_ATTEMPTS = 30  # 60 seconds total
    CANCEL_CHECK_INTERVAL = 0.5  # seconds between cancel checks in obtain_certificate

    DIRECTORY_PATH = "/directory"
    CHALLENGE_TYPES: tuple[str, ...] = (ChallengeType.HTTP_01,)
    USER_AGENT = "certwire"

    def __init__(
        self,
        host: str,
        account_key: "str | bytes | PrivateKey | AccountKey | None" = None,
        account_key_path: str | Path | None = None,
        key_backend: str = "cryptography",
        key_password: bytes | None = None,
        directory_path: str | None = None,
        challenge_types: tuple[str, ...] | list[str] | None = None,
        poll_interval: float | None = None,
        max_poll_attempts: int | None = None,
        http_client: httpx.Client | None = None,
        ca_cert: str | bool | None = None,
        timeout: float = 30.0,
    ):
        if not host:
            raise ValueError("An ACME host is required")

        self.host = host.rstrip("/")
        self.directory_url = f"{self.host}/{(directory_path or self.DIRECTORY_PATH).lstrip('/')}"
        self.account_key = load_account_key(
            account_key, account_key_path, backend=key_backend, password=key_password
        )
        self.challenge_types = tuple(challenge_types or self.CHALLENGE_TYPES)
        self.poll_interval = self.POLL_INTERVAL if poll_interval is None else poll_interval
        self.max_poll_attempts = self.MAX_POLL_ATTEMPTS if max_poll_attempts is None else max_poll_attempts
        if self.max_poll_attempts < 1:
            raise ValueError("max_poll_attempts must be at least 1")

        # ca_cert can be: path (str), False (disable), None/True (default)
        self._owns_http = http_client is None
        if http_client is None:
            verify = True if ca_cert is None else ca_cert
            http_client = httpx.Client(
                verify=verify,
                timeout=timeout,
                headers={"User-Agent": self.USER_AGENT},
            )
        self._http = http_client

        # Session state
        self.nonces = NonceStore()
        self._directory: Directory | None = None
        self._registration: Registration | None = None
        self._authorizations: dict[str, Authorization] = {}
        self._thumbprint: str | None = None

        # Serializes nonce use and session state updates across worker threads
        self._lock = threading.RLock()

    def close(self) -> None:
        """Close the HTTP client if this session created it."""
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "AcmeClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # =========================================================================
    # Session state
    # =========================================================================

    @property
    def directory(self) -> Directory:
        """The fetched directory.

        Raises:
            DirectoryNotFetchedError: If fetch_directory() has not succeeded.
        """
        if self._directory is None:
            raise DirectoryNotFetchedError("Directory not fetched. Call fetch_directory() first.")
        return self._directory

    @property
    def registration(self) -> Registration | None:
        """Local reflection of the account (set after registration)."""
        return self._registration

    @property
    def account_url(self) -> str | None:
        """Get the account URL (set after registration)."""
        return self._registration.url if self._registration else None

    @property
    def authorizations(self) -> dict[str, Authorization]:
        """Authorizations of the current issuance, by domain."""
        with self._lock:
            return dict(self._authorizations)

    @property
    def thumbprint(self) -> str:
        """JWK thumbprint of the account key."""
        if self._thumbprint is None:
            self._thumbprint = self.account_key.thumbprint()
        return self._thumbprint

    def reset_authorizations(self) -> None:
        """Forget the authorizations of the current issuance."""
        with self._lock:
            self._authorizations.clear()

    def _resource_url(self, resource: str) -> str:
        url = self.directory.url_for(resource)
        if url is None:
            raise ProtocolError(f"Directory does not advertise the '{resource}' resource")
        return url

    def _require_directory(self) -> Directory:
        return self.directory

    def _require_registration(self) -> Registration:
        self._require_directory()
        if self._registration is None:
            raise NotRegisteredError("Account not registered. Call register() first.")
        return self._registration

    # =========================================================================
    # Transport
    # =========================================================================

    def _send(
        self,
        method: str,
        url: str,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Perform one HTTP round trip.

        Raises:
            TransportError: If no response could be obtained.
        """
        try:
            with Timer() as t:
                response = self._http.request(method, url, content=content, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(
                "ACME request failed",
                extra={"method": method, "url": url, "error": str(e), **get_domain_extra()},
            )
            raise TransportError(f"{method} {url} failed: {e}") from e

        logger.debug(
            "ACME request",
            extra={
                "method": method,
                "url": url,
                "status_code": response.status_code,
                "elapsed_ms": t.elapsed_ms,
                **get_domain_extra(),
            },
        )
        return response

    def _receive(self, response: httpx.Response) -> SuccessEnvelope | AcmeError:
        """Record the response nonce, then classify the response."""
        self.nonces.update(response.headers)
        return classify(response.status_code, response.headers, response.content)

    def _get(self, url: str) -> SuccessEnvelope:
        """Unsigned GET.

        Raises:
            AcmeError: If the server returns an error.
        """
        outcome = self._receive(self._send("GET", url))
        if isinstance(outcome, AcmeError):
            raise outcome
        return outcome

    def _fetch_nonce(self) -> httpx.Headers:
        return self._send("HEAD", self.directory_url).headers

    def _post_once(self, url: str, payload: dict[str, Any]) -> SuccessEnvelope | AcmeError:
        with self._lock:
            if not self.nonces.primed:
                self.nonces.prime(self._fetch_nonce)
            nonce = self.nonces.current()
            envelope = sign_jws(payload, self.account_key, nonce)

            self.nonces.consume(nonce)
            response = self._send(
                "POST",
                url,
                content=json.dumps(envelope).encode("utf-8"),
                headers={"Content-Type": "application/jose+json"},
            )
            return self._receive(response)

    def _post(self, url: str, payload: dict[str, Any]) -> SuccessEnvelope | AcmeError:
        """Make a JWS-signed POST request to the ACME server.

        A badNonce fault is retried once with a fresh nonce. Faults are
        returned, not raised, so callers can recognize expected variants.
        """
        outcome = self._post_once(url, payload)
        if isinstance(outcome, BadNonceError):
            logger.warning(
                "Retrying request after bad nonce",
                extra={"url": url, "detail": outcome.detail, **get_domain_extra()},
            )
            outcome = self._post_once(url, payload)
        return outcome

    def _signed_request(self, url: str, payload: dict[str, Any]) -> SuccessEnvelope:
        """Signed POST that raises on any fault.

        Raises:
            AcmeError: If the ACME server returns an error.
        """
        outcome = self._post(url, payload)
        if isinstance(outcome, AcmeError):
            raise outcome
        return outcome

    # =========================================================================
    # Directory
    # =========================================================================

    def fetch_directory(self) -> Directory:
        """Fetch the directory; must succeed before any other operation.

        The directory response also supplies the first replay nonce. The
        result is cached for the lifetime of the session.

        Returns:
            The Directory resource.

        Raises:
            TransportError: If the server cannot be reached.
            ProtocolError: If the directory is malformed.
        """
        if self._directory is not None:
            return self._directory

        envelope = self._get(self.directory_url)
        try:
            directory = Directory.from_json(envelope.json_object())
        except ValidationError as e:
            raise ProtocolError(f"Malformed directory: {e}", status=envelope.status) from e

        self._directory = directory
        logger.info(
            "Directory fetched",
            extra={"url": self.directory_url, "resources": sorted(directory.resources)},
        )
        return directory

    # =========================================================================
    # Account
    # =========================================================================

    def register(self, contact: str | list[str] | None = None) -> Registration:
        """Register a new account or find the existing one.

        If the key is already registered the server answers with a conflict
        pointing at the existing account. That answer is not an error: the
        existing account is queried and returned with
        ``outcome=RegistrationOutcome.EXISTING``.

        Args:
            contact: Contact URI or URIs (optional). Bare email addresses
                     get a ``mailto:`` prefix.

        Returns:
            The Registration.
        """
        url = self._resource_url(Resource.NEW_REG)

        payload: dict[str, Any] = {"resource": Resource.NEW_REG.value}
        if contact:
            contacts = [contact] if isinstance(contact, str) else contact
            payload["contact"] = [c if ":" in c else f"mailto:{c}" for c in contacts]

        outcome = self._post(url, payload)

        if isinstance(outcome, ConflictError) and outcome.location:
            logger.info("Account already registered", extra={"account_url": outcome.location})
            envelope = self._signed_request(outcome.location, {"resource": "reg"})
            registration = self._registration_from(
                envelope, outcome.location, RegistrationOutcome.EXISTING
            )
        elif isinstance(outcome, AcmeError):
            raise outcome
        else:
            if not outcome.location:
                raise ProtocolError("new-reg response has no Location header", status=outcome.status)
            registration = self._registration_from(
                outcome, outcome.location, RegistrationOutcome.CREATED
            )
            logger.info("Account registered", extra={"account_url": registration.url})

        with self._lock:
            self._registration = registration
        return registration

    def query_registration(self) -> Registration:
        """Refresh the local registration from the server."""
        current = self._require_registration()
        envelope = self._signed_request(current.url, {"resource": "reg"})
        registration = self._registration_from(envelope, current.url, current.outcome, current)
        with self._lock:
            self._registration = registration
        return registration

    def accept_tos(self) -> None:
        """Agree to the CA's terms of service.

        Does nothing, without contacting the server, if the account has
        already agreed.

        Raises:
            NotRegisteredError: If the account is not registered.
        """
        registration = self._require_registration()
        if registration.agreement_accepted:
            logger.debug("Terms of service already accepted", extra={"account_url": registration.url})
            return

        terms = registration.terms_of_service
        if terms is None:
            logger.warning(
                "Server advertises no terms of service",
                extra={"account_url": registration.url},
            )
            return

        envelope = self._signed_request(registration.url, {"resource": "reg", "agreement": terms})
        updated = self._registration_from(envelope, registration.url, registration.outcome, registration)
        with self._lock:
            self._registration = updated.model_copy(update={"agreement": updated.agreement or terms})
        logger.info("Terms of service accepted", extra={"account_url": registration.url, "terms": terms})

    def _registration_from(
        self,
        envelope: SuccessEnvelope,
        url: str,
        outcome: RegistrationOutcome,
        previous: Registration | None = None,
    ) -> Registration:
        # Updates may come back without Link headers or body members
        data = envelope.data if isinstance(envelope.data, dict) else {}
        try:
            return Registration(
                url=url,
                outcome=outcome,
                contact=data.get("contact") or (previous.contact if previous else []),
                agreement=data.get("agreement") or (previous.agreement if previous else None),
                terms_of_service=(
                    envelope.link("terms-of-service")
                    or (previous.terms_of_service if previous else None)
                    or self.directory.terms_of_service
                ),
                new_authz_url=envelope.link("next") or (previous.new_authz_url if previous else None),
            )
        except ValidationError as e:
            raise ProtocolError(f"Malformed registration: {e}", status=envelope.status) from e

    # =========================================================================
    # Authorization
    # =========================================================================

    def authorize(self, domain: str) -> Challenge:
        """Request an authorization for a domain and pick its challenge.

        Args:
            domain: Domain name to prove control of.

        Returns:
            The selected Challenge, to be fulfilled and then checked with
            check_challenge().

        Raises:
            NotRegisteredError: If the account is not registered.
            UnsupportedChallengeError: If no offered challenge type is configured.
        """
        self._require_registration()
        url = self._resource_url(Resource.NEW_AUTHZ)

        token = set_domain(domain)
        try:
            envelope = self._signed_request(
                url,
                {
                    "resource": Resource.NEW_AUTHZ.value,
                    "identifier": {"type": "dns", "value": domain},
                },
            )
            try:
                authorization = Authorization.model_validate(envelope.json_object())
            except ValidationError as e:
                raise ProtocolError(f"Malformed authorization: {e}", status=envelope.status) from e
            authorization = authorization.model_copy(update={"url": envelope.location})

            challenge = self._select_challenge(authorization, domain)
            with self._lock:
                self._authorizations[domain] = authorization

            logger.info(
                "Authorization created",
                extra={
                    "status": authorization.status.value,
                    "challenge_type": challenge.type,
                    **get_domain_extra(),
                },
            )
            return challenge
        finally:
            reset_domain(token)

    def _select_challenge(self, authorization: Authorization, domain: str) -> Challenge:
        """Pick the most preferred configured challenge type on offer."""
        for challenge_type in self.challenge_types:
            for challenge in authorization.challenges:
                if challenge.type == challenge_type:
                    return challenge.model_copy(update={"domain": domain})

        offered = [challenge.type for challenge in authorization.challenges]
        raise UnsupportedChallengeError(
            f"No supported challenge for {domain}: offered {offered}, "
            f"supported {list(self.challenge_types)}"
        )

    def check_challenge(
        self,
        challenge: Challenge,
        handler: ChallengeHandler,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> Challenge:
        """Fulfill a challenge and wait for the server to validate it.

        This method:
        1. Has the handler provision the response
        2. Tells the server the response is ready
        3. Polls the challenge until it is valid or invalid

        Args:
            challenge: Challenge returned by authorize().
            handler: Performs the out-of-band provisioning.
            timeout: Maximum seconds to spend polling.
            cancel: Event that aborts polling when set.

        Returns:
            The validated Challenge.

        Raises:
            ProtocolError: If the challenge token is not base64url.
            ChallengeHandlerError: If the handler fails.
            ChallengeFailedError: If the challenge becomes invalid.
            PollTimeoutError: If polling ends without a terminal status.
        """
        self._require_registration()
        domain = challenge.domain

        token = set_domain(domain)
        try:
            authorization = self._authorizations.get(domain) if domain else None
            if authorization is not None and authorization.status == AuthorizationStatus.VALID:
                logger.info("Authorization already valid", extra=get_domain_extra())
                return challenge

            if challenge.type == ChallengeType.HTTP_01 and domain:
                try:
                    validation_url = http01_url(domain, challenge.token)
                except ValueError as e:
                    raise ProtocolError(f"Malformed challenge: {e}") from e
            else:
                validation_url = challenge.url

            try:
                handler.fulfill(self.thumbprint, challenge.token, validation_url)
            except AcmeError:
                raise
            except Exception as e:
                raise ChallengeHandlerError(f"Challenge handler failed: {e}") from e

            self._signed_request(
                challenge.url,
                {
                    "resource": "challenge",
                    "type": challenge.type,
                    "keyAuthorization": compute_key_authorization(challenge.token, self.thumbprint),
                },
            )
            logger.debug("Challenge response submitted", extra={"url": challenge.url, **get_domain_extra()})

            try:
                validated = self._poll_challenge(challenge, timeout, cancel)
            except ChallengeFailedError:
                self._set_authorization_status(domain, AuthorizationStatus.INVALID)
                raise

            self._set_authorization_status(domain, AuthorizationStatus.VALID)
            logger.info("Challenge validated", extra={"challenge_type": challenge.type, **get_domain_extra()})
            return validated
        finally:
            reset_domain(token)

    def _set_authorization_status(self, domain: str | None, status: AuthorizationStatus) -> None:
        with self._lock:
            authorization = self._authorizations.get(domain) if domain else None
            if authorization is not None:
                self._authorizations[domain] = authorization.model_copy(update={"status": status})

    def _poll_challenge(
        self,
        challenge: Challenge,
        timeout: float | None,
        cancel: threading.Event | None,
    ) -> Challenge:
        """Poll a challenge until it's valid or invalid."""
        deadline = None if timeout is None else time.monotonic() + timeout
        status = challenge.status

        for attempt in range(1, self.max_poll_attempts + 1):
            if attempt > 1:
                self._wait_before_poll(deadline, cancel)
            elif cancel is not None and cancel.is_set():
                raise PollCancelledError("Polling cancelled")

            envelope = self._get(challenge.url)
            try:
                current = Challenge.model_validate(envelope.json_object())
            except ValidationError as e:
                raise ProtocolError(f"Malformed challenge: {e}", status=envelope.status) from e
            current = current.model_copy(update={"domain": challenge.domain})
            status = current.status

            logger.debug(
                "Challenge status",
                extra={"status": status.value, "attempt": attempt, **get_domain_extra()},
            )

            if status == ChallengeStatus.VALID:
                return current
            if status == ChallengeStatus.INVALID:
                error = current.error or {}
                logger.error(
                    "Challenge failed",
                    extra={"detail": error.get("detail"), "error_type": error.get("type"), **get_domain_extra()},
                )
                raise ChallengeFailedError(
                    detail=error.get("detail") or "Challenge validation failed",
                    type=error.get("type"),
                    status=error.get("status") or 403,
                )

        raise PollTimeoutError(
            f"Challenge still {status.value} after {self.max_poll_attempts} polls"
        )

    def _wait_before_poll(self, deadline: float | None, cancel: threading.Event | None) -> None:
        """Sleep one poll interval, honouring the deadline and cancellation."""
        delay = self.poll_interval
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise PollTimeoutError("Polling deadline exceeded")
            delay = min(delay, remaining)

        if cancel is None:
            time.sleep(delay)
        elif cancel.wait(delay):
            raise PollCancelledError("Polling cancelled")

    # =========================================================================
    # Certificates
    # =========================================================================

    def sign(self, csr_der: bytes) -> IssuedCertificate:
        """Submit a CSR and retrieve the issued certificate.

        Every authorization started in this session must be valid first.
        The issuer chain link is exposed on the result but not followed.

        Args:
            csr_der: DER-encoded Certificate Signing Request.

        Returns:
            The issued certificate (DER) with its URL and chain link.

        Raises:
            OrderingError: If an authorization of this session is not valid.
        """
        self._require_registration()
        url = self._resource_url(Resource.NEW_CERT)

        with self._lock:
            unfinished = sorted(
                domain
                for domain, authorization in self._authorizations.items()
                if authorization.status != AuthorizationStatus.VALID
            )
        if unfinished:
            raise OrderingError(f"Authorizations are not valid for: {', '.join(unfinished)}")

        envelope = self._signed_request(
            url,
            {"resource": Resource.NEW_CERT.value, "csr": base64url_encode(csr_der)},
        )

        der = envelope.body
        chain_url = envelope.link("up")
        if not der:
            if not envelope.location:
                raise ProtocolError(
                    "new-cert response has neither a certificate nor a Location",
                    status=envelope.status,
                )
            download = self._download_certificate(envelope.location)
            der = download.body
            chain_url = chain_url or download.link("up")

        certificate = IssuedCertificate(der=der, url=envelope.location, chain_url=chain_url)
        logger.info(
            "Certificate issued",
            extra={"url": certificate.url, "chain_url": certificate.chain_url},
        )
        return certificate

    def _download_certificate(self, url: str) -> SuccessEnvelope:
        """Poll the certificate URL until the certificate is available."""
        for attempt in range(1, self.max_poll_attempts + 1):
            if attempt > 1:
                self._wait_before_poll(None, None)
            envelope = self._get(url)
            if envelope.body:
                return envelope
            logger.debug("Certificate not ready", extra={"url": url, "attempt": attempt})

        raise PollTimeoutError(f"Certificate not available after {self.max_poll_attempts} polls")

    def fetch_chain(self, certificate: IssuedCertificate) -> bytes:
        """Download the issuer certificate the "up" link points to.

        Returns:
            DER-encoded issuer certificate.

        Raises:
            ProtocolError: If the certificate has no chain link.
        """
        self._require_directory()
        if not certificate.chain_url:
            raise ProtocolError("Certificate has no issuer chain link")
        return self._get(certificate.chain_url).body

    def revoke(
        self,
        certificate_der: bytes,
        reason: RevocationReason | int | None = None,
    ) -> None:
        """Revoke a certificate.

        Args:
            certificate_der: The DER-encoded certificate to revoke.
            reason: Optional revocation reason code (RFC 5280 Section 5.3.1).

        Raises:
            AcmeError: If revocation fails.
        """
        url = self._resource_url(Resource.REVOKE_CERT)

        payload: dict[str, Any] = {
            "resource": Resource.REVOKE_CERT.value,
            "certificate": base64url_encode(certificate_der),
        }
        if reason is not None:
            payload["reason"] = int(reason)

        self._signed_request(url, payload)
        logger.info("Certificate revoked", extra={"reason": payload.get("reason")})

    def recovery_key(self, *args: Any, **kwargs: Any) -> NoReturn:
        """Account recovery keys are not part of the protocol version spoken here.

        Raises:
            NotSupportedError: Always.
        """
        raise NotSupportedError("Recovery keys are not supported by this ACME protocol version")

    # =========================================================================
    # Workflow
    # =========================================================================

    def obtain_certificate(
        self,
        domains: list[str],
        csr_der: bytes,
        handler: ChallengeHandler,
        max_workers: int = 1,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> IssuedCertificate:
        """Authorize every domain, then request the certificate.

        The account must already be registered (and have accepted the terms
        of service where the CA requires it). The authorizations of this
        workflow are discarded when it completes or aborts.

        Args:
            domains: Domain names in the certificate.
            csr_der: DER-encoded CSR covering the domains.
            handler: Provisions the challenge responses.
            max_workers: Domains authorized in parallel.
            timeout: Maximum seconds to poll each challenge.
            cancel: Event that aborts polling when set.

        Returns:
            The issued certificate.
        """
        if not domains:
            raise ValueError("At least one domain is required")

        def authorize_domain(domain: str, stop: threading.Event | None) -> None:
            challenge = self.authorize(domain)
            self.check_challenge(challenge, handler, timeout=timeout, cancel=stop)

        self.reset_authorizations()
        try:
            if max_workers <= 1:
                for domain in domains:
                    authorize_domain(domain, cancel)
            else:
                self._run_parallel(authorize_domain, domains, max_workers, cancel)
            return self.sign(csr_der)
        finally:
            self.reset_authorizations()

    def _run_parallel(
        self,
        func: Callable[[str, threading.Event], None],
        domains: list[str],
        max_workers: int,
        cancel: threading.Event | None,
    ) -> None:
        """Run func for every domain on a thread pool.

        Workers share one abort event. It is set on the first failure, and
        when the caller sets ``cancel``, so that workers still polling stop
        at their next wait.
        """
        abort = threading.Event()
        if cancel is not None and cancel.is_set():
            abort.set()
        check_interval = None if cancel is None else self.CANCEL_CHECK_INTERVAL

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="certwire-authz") as pool:
            pending = {pool.submit(func, domain, abort) for domain in domains}
            try:
                while pending:
                    done, pending = wait(pending, timeout=check_interval, return_when=FIRST_EXCEPTION)
                    if cancel is not None and cancel.is_set():
                        abort.set()
                    for future in done:
                        future.result()
            except BaseException:
                abort.set()
                pool.shutdown(wait=True, cancel_futures=True)
                raise
