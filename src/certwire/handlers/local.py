"""Challenge handler writing responses into a local webroot."""

from pathlib import Path

from certwire._logging import get_logger
from certwire.challenges.http01 import compute_key_authorization, http01_path
from certwire.handlers.base import ChallengeHandler

logger = get_logger(__name__)


class LocalFileHandler(ChallengeHandler):
    """Places HTTP-01 responses under a webroot served by a local web server.

    Args:
        webroot: Document root of the site being validated.
        mode: Permission bits of the written file.
    """

    def __init__(self, webroot: str | Path, mode: int = 0o644):
        self.webroot = Path(webroot)
        self.mode = mode

    def challenge_path(self, token: str) -> Path:
        """Filesystem path of the response file for a token.

        Raises:
            ValueError: If the token is not base64url.
        """
        return self.webroot / http01_path(token).lstrip("/")

    def fulfill(self, fingerprint: str, token: str, url: str) -> None:
        """Write the key authorization to the webroot.

        Raises:
            ValueError: If the token is not base64url.
            OSError: If the file cannot be written.
        """
        path = self.challenge_path(token)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(compute_key_authorization(token, fingerprint))
        path.chmod(self.mode)
        logger.info("Challenge file written", extra={"path": str(path), "url": url})
