"""Cryptographic utilities for ACME protocol operations."""

import base64
import json
from typing import TYPE_CHECKING, Any

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.x509.oid import NameOID

from certwire.exceptions import SigningError

if TYPE_CHECKING:
    from certwire.keys import AccountKey

# Type alias for private keys
PrivateKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey
PublicKey = rsa.RSAPublicKey | ec.EllipticCurvePublicKey

# curve name -> (JWK crv, JWS alg, coordinate size in bytes)
EC_CURVES = {
    "secp256r1": ("P-256", "ES256", 32),
    "secp384r1": ("P-384", "ES384", 48),
}


def generate_rsa_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Generate an RSA private key.

    Args:
        key_size: Key size in bits (2048 or 4096 recommended).

    Returns:
        RSA private key.
    """
    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )


def generate_ecdsa_key(curve: str = "P-256") -> ec.EllipticCurvePrivateKey:
    """Generate an ECDSA private key.

    Args:
        curve: Curve name ("P-256" or "P-384").

    Returns:
        ECDSA private key.

    Raises:
        ValueError: If curve is not supported.
    """
    curves = {
        "P-256": ec.SECP256R1(),
        "P-384": ec.SECP384R1(),
    }
    if curve not in curves:
        raise ValueError(f"Unsupported curve: {curve}. Supported: {list(curves.keys())}")

    return ec.generate_private_key(curves[curve])


def create_csr(
    key: PrivateKey,
    domains: list[str],
) -> x509.CertificateSigningRequest:
    """Create a Certificate Signing Request (CSR).

    Args:
        key: Private key of the certificate (not the account key).
        domains: List of domain names to include in the CSR.

    Returns:
        Certificate Signing Request.

    Raises:
        ValueError: If domains list is empty.
    """
    if not domains:
        raise ValueError("At least one domain is required")

    # First domain is the Common Name, all of them go into the SAN
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])])
    san = x509.SubjectAlternativeName([x509.DNSName(domain) for domain in domains])

    builder = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(subject)
        .add_extension(san, critical=False)
    )
    return builder.sign(key, hashes.SHA256())


def csr_to_der(csr: x509.CertificateSigningRequest) -> bytes:
    """Serialize a CSR to DER, the form accepted by AcmeClient.sign()."""
    return csr.public_bytes(serialization.Encoding.DER)


def base64url_encode(data: bytes) -> str:
    """Base64url encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(data: str) -> bytes:
    """Base64url decode, restoring any stripped padding."""
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def pem_to_der(pem: str) -> bytes:
    """Convert PEM-encoded certificate to DER format.

    Args:
        pem: PEM-encoded certificate string.

    Returns:
        DER-encoded certificate bytes.
    """
    cert = x509.load_pem_x509_certificate(pem.encode())
    return cert.public_bytes(serialization.Encoding.DER)


def der_to_pem(der: bytes) -> str:
    """Convert a DER-encoded certificate to PEM."""
    cert = x509.load_der_x509_certificate(der)
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


def _int_to_base64url(n: int, length: int) -> str:
    """Convert an integer to base64url encoding with fixed length."""
    return base64url_encode(n.to_bytes(length, byteorder="big"))


def public_jwk(public_key: PublicKey) -> dict[str, str]:
    """Get the JWK (JSON Web Key) representation of a public key.

    Raises:
        ValueError: For unsupported key types or curves.
    """
    if isinstance(public_key, rsa.RSAPublicKey):
        numbers = public_key.public_numbers()
        return {
            "kty": "RSA",
            "n": _int_to_base64url(numbers.n, (numbers.n.bit_length() + 7) // 8),
            "e": _int_to_base64url(numbers.e, (numbers.e.bit_length() + 7) // 8),
        }
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        if public_key.curve.name not in EC_CURVES:
            raise ValueError(f"Unsupported curve: {public_key.curve.name}")
        crv, _, coord_size = EC_CURVES[public_key.curve.name]
        numbers = public_key.public_numbers()
        return {
            "kty": "EC",
            "crv": crv,
            "x": _int_to_base64url(numbers.x, coord_size),
            "y": _int_to_base64url(numbers.y, coord_size),
        }
    raise ValueError(f"Unsupported key type: {type(public_key).__name__}")


def jws_algorithm(public_key: PublicKey) -> str:
    """Return the JWS ``alg`` identifier for a public key."""
    if isinstance(public_key, rsa.RSAPublicKey):
        return "RS256"
    if isinstance(public_key, ec.EllipticCurvePublicKey) and public_key.curve.name in EC_CURVES:
        return EC_CURVES[public_key.curve.name][1]
    raise ValueError(f"Unsupported key type: {type(public_key).__name__}")


def signature_hash(algorithm: str) -> hashes.HashAlgorithm:
    """Return the hash used by a JWS algorithm."""
    return hashes.SHA384() if algorithm == "ES384" else hashes.SHA256()


def ecdsa_der_to_raw(der_signature: bytes, coord_size: int) -> bytes:
    """Convert a DER ECDSA signature to the fixed-size r||s form JWS uses."""
    r, s = decode_dss_signature(der_signature)
    return r.to_bytes(coord_size, byteorder="big") + s.to_bytes(coord_size, byteorder="big")


def canonical_json(jwk: dict[str, str]) -> bytes:
    """Canonical JSON of a JWK's required members (RFC 7638)."""
    required = ("e", "kty", "n") if jwk["kty"] == "RSA" else ("crv", "kty", "x", "y")
    canonical = {name: jwk[name] for name in required}
    return json.dumps(canonical, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _encode_segment(value: Any) -> str:
    return base64url_encode(json.dumps(value, separators=(",", ":")).encode("utf-8"))


def sign_jws(
    payload: dict[str, Any],
    key: "AccountKey",
    nonce: str,
    url: str | None = None,
) -> dict[str, str]:
    """Sign a payload as a flattened JWS envelope.

    The protected header carries the algorithm, the account's public JWK
    and the replay nonce. The function is pure: the same inputs and a
    deterministic key give the same envelope.

    Args:
        payload: JSON payload to sign.
        key: Account key that produces the signature.
        nonce: Replay nonce for this request.
        url: Target URL, included in the header when given.

    Returns:
        Dict with ``protected``, ``payload`` and ``signature`` members.

    Raises:
        SigningError: If the key cannot produce a signature.
    """
    protected: dict[str, Any] = {
        "alg": key.algorithm,
        "jwk": key.jwk,
        "nonce": nonce,
    }
    if url is not None:
        protected["url"] = url

    protected_b64 = _encode_segment(protected)
    payload_b64 = _encode_segment(payload)
    signing_input = f"{protected_b64}.{payload_b64}".encode("ascii")

    try:
        signature = key.sign(signing_input)
    except SigningError:
        raise
    except (ValueError, TypeError) as e:
        raise SigningError(f"Account key could not sign the request: {e}") from e

    return {
        "protected": protected_b64,
        "payload": payload_b64,
        "signature": base64url_encode(signature),
    }
