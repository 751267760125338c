"""ACME protocol exceptions.

Every error leaving the public API is an :class:`AcmeError`, so callers can
rely on the ``status``, ``detail`` and ``type`` fields whatever went wrong.
Faults reported by the server keep the server's problem type; faults raised
locally use ``status=0`` and a ``urn:certwire:error:*`` type.
"""

from typing import Any

LOCAL_ERROR_PREFIX = "urn:certwire:error:"


class AcmeError(Exception):
    """Base exception for ACME errors.

    Represents errors returned by the ACME server in the problem document
    format (RFC 7807), as well as the locally detected faults below.
    """

    default_type = LOCAL_ERROR_PREFIX + "unknown"

    def __init__(
        self,
        detail: str,
        type: str | None = None,
        status: int = 0,
        retry_after: int | None = None,
    ):
        self.type = type or self.default_type
        self.detail = detail
        self.status = status
        self.retry_after = retry_after
        super().__init__(f"{self.type}: {detail}")

    @classmethod
    def from_response(
        cls,
        data: dict[str, Any],
        status: int,
        headers: dict[str, str] | None = None,
    ) -> "AcmeError":
        """Create an AcmeError from a problem document.

        Routes to the appropriate subclass based on the error name, which is
        the last segment of the type URN. Both the draft namespace
        (``urn:acme:error:``) and the RFC 8555 one are understood.

        Args:
            data: Parsed JSON problem document.
            status: HTTP status code.
            headers: Response headers (for Retry-After extraction).

        Returns:
            AcmeError instance (or appropriate subclass).
        """
        headers = {k.lower(): v for k, v in (headers or {}).items()}
        error_type = data.get("type") or "about:blank"
        detail = data.get("detail", "Unknown error")
        body_status = data.get("status")

        kwargs: dict[str, Any] = {
            "type": error_type,
            "detail": detail if isinstance(detail, str) else "Unknown error",
            "status": body_status if isinstance(body_status, int) else status,
            "retry_after": cls._parse_retry_after(headers.get("retry-after")),
        }

        if status == 409:
            return ConflictError(location=headers.get("location"), **kwargs)

        error_class = _ERROR_CLASSES.get(error_type.rsplit(":", 1)[-1], AcmeError)
        return error_class(**kwargs)

    @staticmethod
    def _parse_retry_after(value: str | None) -> int | None:
        """Parse Retry-After header (seconds or HTTP-date).

        Args:
            value: Retry-After header value.

        Returns:
            Seconds to wait, or None if not parseable.
        """
        if not value:
            return None
        try:
            return int(value)
        except ValueError:
            from datetime import datetime, timezone
            from email.utils import parsedate_to_datetime

            try:
                dt = parsedate_to_datetime(value)
            except (TypeError, ValueError):
                return None
            return max(0, int((dt - datetime.now(timezone.utc)).total_seconds()))

    def get_retry_seconds(self, default: int = 3600) -> int:
        """Get retry delay, falling back to default.

        Args:
            default: Default seconds if retry_after is not set.

        Returns:
            Number of seconds to wait before retrying.
        """
        return self.retry_after if self.retry_after is not None else default


# =============================================================================
# Faults reported by the server
# =============================================================================


class BadNonceError(AcmeError):
    """The request carried a stale or unknown replay nonce (badNonce)."""

    default_type = "urn:acme:error:badNonce"


class RateLimitError(AcmeError):
    """Rate limit exceeded (rateLimited)."""

    default_type = "urn:acme:error:rateLimited"


class MalformedError(AcmeError):
    """The server could not parse the request (malformed)."""

    default_type = "urn:acme:error:malformed"


class UnauthorizedError(AcmeError):
    """The account lacks authorization for the request (unauthorized)."""

    default_type = "urn:acme:error:unauthorized"


class ServerInternalError(AcmeError):
    """ACME server internal error (serverInternal)."""

    default_type = "urn:acme:error:serverInternal"


class BadCsrError(AcmeError):
    """The CSR was rejected (badCSR)."""

    default_type = "urn:acme:error:badCSR"


class ValidationConnectionError(AcmeError):
    """The server could not connect to the validation target (connection)."""

    default_type = "urn:acme:error:connection"


class ConflictError(AcmeError):
    """The resource already exists (HTTP 409).

    On new-reg this means the account key is already registered; the
    existing account URL is carried in ``location``.
    """

    default_type = "urn:acme:error:malformed"

    def __init__(self, detail: str, location: str | None = None, **kwargs: Any):
        kwargs.setdefault("status", 409)
        super().__init__(detail, **kwargs)
        self.location = location


_ERROR_CLASSES: dict[str, type[AcmeError]] = {
    "badNonce": BadNonceError,
    "rateLimited": RateLimitError,
    "malformed": MalformedError,
    "unauthorized": UnauthorizedError,
    "serverInternal": ServerInternalError,
    "badCSR": BadCsrError,
    "connection": ValidationConnectionError,
}


# =============================================================================
# Locally detected faults
# =============================================================================


class TransportError(AcmeError):
    """No HTTP response could be obtained (connection, DNS, timeout)."""

    default_type = LOCAL_ERROR_PREFIX + "transport"


class ProtocolError(AcmeError):
    """The server answered with data that does not follow the protocol."""

    default_type = LOCAL_ERROR_PREFIX + "protocol"


class NonceError(ProtocolError):
    """No usable replay nonce is available."""

    default_type = LOCAL_ERROR_PREFIX + "nonce"


class OrderingError(AcmeError):
    """An operation was invoked before the step it depends on."""

    default_type = LOCAL_ERROR_PREFIX + "ordering"


class DirectoryNotFetchedError(OrderingError):
    """The directory must be fetched before any other operation."""


class NotRegisteredError(OrderingError):
    """The account must be registered before this operation."""


class ChallengeFailedError(AcmeError):
    """A challenge reached the terminal ``invalid`` state."""

    default_type = "urn:acme:error:unauthorized"


class ChallengeHandlerError(AcmeError):
    """The challenge handler could not fulfill the challenge."""

    default_type = LOCAL_ERROR_PREFIX + "challengeHandler"


class PollTimeoutError(AcmeError):
    """Polling ended before the server reached a terminal state."""

    default_type = LOCAL_ERROR_PREFIX + "timeout"


class PollCancelledError(PollTimeoutError):
    """Polling was cancelled by the caller."""

    default_type = LOCAL_ERROR_PREFIX + "cancelled"


class UnsupportedChallengeError(AcmeError):
    """None of the offered challenges has a configured type."""

    default_type = LOCAL_ERROR_PREFIX + "unsupportedChallenge"


class NotSupportedError(AcmeError):
    """The protocol feature is not supported."""

    default_type = LOCAL_ERROR_PREFIX + "notSupported"


class SigningError(AcmeError):
    """The account key could not produce a signature."""

    default_type = LOCAL_ERROR_PREFIX + "signing"


class KeyLoadError(AcmeError):
    """The account key could not be loaded."""

    default_type = LOCAL_ERROR_PREFIX + "keyLoad"
