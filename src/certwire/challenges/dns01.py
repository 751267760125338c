"""DNS-01 challenge computations."""

import hashlib

from certwire.crypto import base64url_encode

DNS01_RECORD_PREFIX = "_acme-challenge"


def dns01_record_name(domain: str) -> str:
    """Name of the TXT record the CA queries for a domain."""
    return f"{DNS01_RECORD_PREFIX}.{domain.rstrip('.')}"


def compute_dns_txt_value(key_authorization: str) -> str:
    """TXT record value for a key authorization.

    Returns:
        Unpadded base64url SHA-256 digest of the key authorization.
    """
    return base64url_encode(hashlib.sha256(key_authorization.encode()).digest())
