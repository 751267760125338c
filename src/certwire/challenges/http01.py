"""HTTP-01 challenge computations."""

import re

WELL_KNOWN_PATH = "/.well-known/acme-challenge/"

# Tokens are base64url without padding
_TOKEN_RE = re.compile(r"[A-Za-z0-9_-]+")


def compute_key_authorization(token: str, thumbprint: str) -> str:
    """Key authorization published for a challenge: ``{token}.{thumbprint}``.

    Every challenge type builds on this value; http-01 serves it verbatim.
    """
    return f"{token}.{thumbprint}"


def validate_token(token: str) -> str:
    """Return the token if it is safe to use as a file name.

    Raises:
        ValueError: If the token is empty or not base64url.
    """
    if not _TOKEN_RE.fullmatch(token):
        raise ValueError(f"Invalid challenge token: {token!r}")
    return token


def http01_path(token: str) -> str:
    """URL path at which the CA fetches the key authorization.

    Raises:
        ValueError: If the token is not base64url.
    """
    return f"{WELL_KNOWN_PATH}{validate_token(token)}"


def http01_url(domain: str, token: str) -> str:
    """Full URL the CA fetches during HTTP-01 validation.

    Args:
        domain: The domain being validated.
        token: The challenge token.

    Returns:
        ``http://{domain}/.well-known/acme-challenge/{token}``
    """
    return f"http://{domain}{http01_path(token)}"
