"""Challenge handler asking a human to place the response."""

import sys
from collections.abc import Callable
from typing import TextIO

from certwire.challenges.http01 import compute_key_authorization
from certwire.handlers.base import ChallengeHandler


class InteractiveHandler(ChallengeHandler):
    """Prints what to publish and waits until the operator confirms.

    Args:
        prompt: Function reading the confirmation (``input`` by default).
        output: Stream receiving the instructions.
    """

    def __init__(
        self,
        prompt: Callable[[str], str] = input,
        output: TextIO | None = None,
    ):
        self.prompt = prompt
        self.output = output or sys.stdout

    def fulfill(self, fingerprint: str, token: str, url: str) -> None:
        """Show the instructions, then block until confirmed.

        Raises:
            RuntimeError: If the operator declines.
        """
        self.output.write(
            "Make the following content available at\n"
            f"  {url}\n"
            "content:\n"
            f"  {compute_key_authorization(token, fingerprint)}\n"
        )
        self.output.flush()
        answer = self.prompt("Press Enter when done (or type 'abort'): ")
        if answer.strip().lower() == "abort":
            raise RuntimeError("Challenge aborted by operator")
