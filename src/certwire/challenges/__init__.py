"""Challenge response computations."""

from certwire.challenges.dns01 import compute_dns_txt_value, dns01_record_name
from certwire.challenges.http01 import (
    compute_key_authorization,
    http01_path,
    http01_url,
    validate_token,
)

__all__ = [
    "compute_dns_txt_value",
    "compute_key_authorization",
    "dns01_record_name",
    "http01_path",
    "http01_url",
    "validate_token",
]
