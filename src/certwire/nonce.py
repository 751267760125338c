"""Replay-nonce bookkeeping for one ACME session."""

import threading
from collections.abc import Callable, Mapping

from certwire._logging import get_logger
from certwire.exceptions import NonceError

logger = get_logger(__name__)

REPLAY_NONCE_HEADER = "Replay-Nonce"


def _nonce_from_headers(headers: Mapping[str, str]) -> str | None:
    # httpx.Headers is case-insensitive, plain dicts may use any casing
    for name, value in headers.items():
        if name.lower() == "replay-nonce" and value:
            return value
    return None


class NonceStore:
    """Holds the single current replay nonce of a session.

    Nonces arrive in the ``Replay-Nonce`` header of server responses.
    Updates are last-write-wins, and a nonce is dropped as soon as a request
    signed with it is about to be sent, so it is never used twice.
    """

    def __init__(self) -> None:
        self._nonce: str | None = None
        self._lock = threading.Lock()

    @property
    def primed(self) -> bool:
        """True if a nonce is available for the next request."""
        with self._lock:
            return self._nonce is not None

    def current(self) -> str:
        """Return the current nonce without consuming it.

        Raises:
            NonceError: If no nonce has been received or it was consumed.
        """
        with self._lock:
            if self._nonce is None:
                raise NonceError("No replay nonce available")
            return self._nonce

    def update(self, headers: Mapping[str, str]) -> None:
        """Store the nonce carried by response headers, if any."""
        nonce = _nonce_from_headers(headers)
        if nonce is None:
            return
        with self._lock:
            self._nonce = nonce
        logger.debug("Storing nonce", extra={"nonce": nonce})

    def consume(self, nonce: str) -> None:
        """Mark a nonce as used by a request that is being sent."""
        with self._lock:
            if self._nonce == nonce:
                self._nonce = None

    def prime(self, fetch: Callable[[], Mapping[str, str]]) -> str:
        """Fetch a fresh nonce explicitly.

        Args:
            fetch: Zero-argument callable performing a request and returning
                   its response headers.

        Returns:
            The new nonce.

        Raises:
            NonceError: If the response carries no nonce.
        """
        logger.debug("Requesting fresh nonce")
        headers = fetch()
        nonce = _nonce_from_headers(headers)
        if nonce is None:
            raise NonceError(f"Server response has no {REPLAY_NONCE_HEADER} header")
        with self._lock:
            self._nonce = nonce
        return nonce
