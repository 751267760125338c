"""Certwire - ACME v1 client library for automated SSL/TLS certificate management."""

from certwire.client import AcmeClient
from certwire.exceptions import AcmeError

__all__ = ["AcmeClient", "AcmeError"]
__version__ = "0.1.0"
