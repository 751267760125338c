"""Challenge handlers that perform the out-of-band part of a challenge."""

from certwire.handlers.base import ChallengeHandler
from certwire.handlers.interactive import InteractiveHandler
from certwire.handlers.local import LocalFileHandler
from certwire.handlers.remote import RemoteShellHandler

__all__ = ["ChallengeHandler", "InteractiveHandler", "LocalFileHandler", "RemoteShellHandler"]
