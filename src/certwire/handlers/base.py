"""Abstract base class for challenge handlers."""

from abc import ABC, abstractmethod


class ChallengeHandler(ABC):
    """Abstract interface for challenge handlers.

    A handler makes the key authorization available where the CA will look
    for it. The client calls fulfill() after selecting a challenge and
    starts polling only once it returns.
    """

    @abstractmethod
    def fulfill(self, fingerprint: str, token: str, url: str) -> None:
        """Provision the challenge response.

        The content to publish is the key authorization ``{token}.{fingerprint}``.

        Args:
            fingerprint: Thumbprint of the account key.
            token: The challenge token.
            url: Where the CA will look for the response. For http-01 this
                 is ``http://{domain}/.well-known/acme-challenge/{token}``.

        Raises:
            Exception: If the response could not be provisioned.
        """
        ...
