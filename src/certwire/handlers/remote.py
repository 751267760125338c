"""Challenge handler placing responses on a remote host over ssh."""

import shlex
import subprocess

from certwire._logging import get_logger
from certwire.challenges.http01 import WELL_KNOWN_PATH, compute_key_authorization, http01_path
from certwire.handlers.base import ChallengeHandler

logger = get_logger(__name__)


class RemoteShellHandler(ChallengeHandler):
    """Writes HTTP-01 responses into a webroot on another machine.

    The key authorization is piped to ``ssh`` and written with a remote
    shell command, so the machine running the client needs key-based ssh
    access to the web server.

    Args:
        host: Remote host, optionally as ``user@host``.
        webroot: Document root on the remote host.
        port: ssh port.
        ssh_command: ssh executable and options.
        timeout: Seconds to wait for the remote command.
    """

    def __init__(
        self,
        host: str,
        webroot: str,
        port: int = 22,
        ssh_command: str = "ssh",
        timeout: int = 30,
    ):
        self.host = host
        self.webroot = webroot.rstrip("/")
        self.port = port
        self.ssh_command = ssh_command
        self.timeout = timeout

    def _remote_command(self, token: str) -> str:
        directory = f"{self.webroot}{WELL_KNOWN_PATH}".rstrip("/")
        path = f"{self.webroot}{http01_path(token)}"
        return f"mkdir -p {shlex.quote(directory)} && cat > {shlex.quote(path)}"

    def fulfill(self, fingerprint: str, token: str, url: str) -> None:
        """Write the key authorization on the remote host.

        Raises:
            ValueError: If the token is not base64url.
            RuntimeError: If the ssh command fails.
        """
        command = [
            *shlex.split(self.ssh_command),
            "-p",
            str(self.port),
            self.host,
            self._remote_command(token),
        ]
        logger.debug("Running remote command", extra={"host": self.host, "url": url})
        try:
            proc = subprocess.run(
                command,
                input=compute_key_authorization(token, fingerprint).encode(),
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise RuntimeError(f"Could not run ssh to {self.host}: {e}") from e

        if proc.returncode != 0:
            stderr = proc.stderr.decode(errors="replace").strip()
            logger.error(
                "Remote command failed",
                extra={"host": self.host, "returncode": proc.returncode, "detail": stderr},
            )
            raise RuntimeError(f"ssh to {self.host} exited with {proc.returncode}: {stderr}")

        logger.info("Challenge file written", extra={"host": self.host, "url": url})
