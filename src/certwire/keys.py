"""Account key providers.

An :class:`AccountKey` is the signing and digest capability the protocol
engine needs. Two providers ship with the library: one backed by the
``cryptography`` package and one that shells out to the ``openssl`` binary.
"""

import hashlib
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from certwire._logging import get_logger
from certwire.crypto import (
    EC_CURVES,
    PrivateKey,
    base64url_encode,
    canonical_json,
    ecdsa_der_to_raw,
    jws_algorithm,
    public_jwk,
    signature_hash,
)
from certwire.exceptions import KeyLoadError, SigningError

logger = get_logger(__name__)

KEY_BACKENDS = ("cryptography", "openssl")


class AccountKey(ABC):
    """Signing capability of an ACME account."""

    @property
    @abstractmethod
    def algorithm(self) -> str:
        """JWS algorithm identifier (e.g. "RS256")."""
        ...

    @property
    @abstractmethod
    def jwk(self) -> dict[str, str]:
        """Public key as a JWK."""
        ...

    @abstractmethod
    def sign(self, data: bytes) -> bytes:
        """Sign data, returning the JWS signature bytes.

        Raises:
            SigningError: If the key cannot produce a signature.
        """
        ...

    def digest(self, data: bytes) -> bytes:
        """SHA-256 digest of data."""
        return hashlib.sha256(data).digest()

    def thumbprint(self) -> str:
        """Compute the JWK thumbprint of the key (RFC 7638).

        Returns:
            Base64url-encoded SHA-256 digest of the canonical JWK.
        """
        return base64url_encode(self.digest(canonical_json(self.jwk)))


class CryptographyAccountKey(AccountKey):
    """Account key held in process by the ``cryptography`` package.

    Args:
        private_key: RSA or ECDSA (P-256, P-384) private key.
    """

    def __init__(self, private_key: PrivateKey):
        if not isinstance(private_key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
            raise KeyLoadError(f"Unsupported key type: {type(private_key).__name__}")
        try:
            self._algorithm = jws_algorithm(private_key.public_key())
            self._jwk = public_jwk(private_key.public_key())
        except ValueError as e:
            raise KeyLoadError(str(e)) from e
        self.private_key = private_key

    @property
    def algorithm(self) -> str:
        return self._algorithm

    @property
    def jwk(self) -> dict[str, str]:
        return dict(self._jwk)

    def sign(self, data: bytes) -> bytes:
        key = self.private_key
        hash_algorithm = signature_hash(self._algorithm)
        try:
            if isinstance(key, rsa.RSAPrivateKey):
                return key.sign(data, padding.PKCS1v15(), hash_algorithm)
            coord_size = EC_CURVES[key.curve.name][2]
            return ecdsa_der_to_raw(key.sign(data, ec.ECDSA(hash_algorithm)), coord_size)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise SigningError(f"Account key could not sign the request: {e}") from e


class OpenSSLAccountKey(AccountKey):
    """Account key kept on disk and used through the ``openssl`` binary.

    The private key never enters this process: the public half is read with
    ``openssl pkey -pubout`` and signatures come from ``openssl dgst -sign``.

    Args:
        path: Path to the PEM private key.
        openssl: Name or path of the openssl executable.
    """

    def __init__(self, path: str | Path, openssl: str = "openssl"):
        self.path = Path(path)
        self.openssl = openssl
        if not self.path.is_file():
            raise KeyLoadError(f"Account key file not found: {self.path}")
        try:
            public_pem = self._run(["pkey", "-in", str(self.path), "-pubout"])
            public_key = serialization.load_pem_public_key(public_pem)
            self._algorithm = jws_algorithm(public_key)  # type: ignore[arg-type]
            self._jwk = public_jwk(public_key)  # type: ignore[arg-type]
        except (OSError, ValueError, UnsupportedAlgorithm) as e:
            raise KeyLoadError(f"Could not read account key {self.path}: {e}") from e
        self._curve = self._jwk.get("crv")

    @property
    def algorithm(self) -> str:
        return self._algorithm

    @property
    def jwk(self) -> dict[str, str]:
        return dict(self._jwk)

    def sign(self, data: bytes) -> bytes:
        digest_name = "-sha384" if self._algorithm == "ES384" else "-sha256"
        try:
            signature = self._run(["dgst", digest_name, "-sign", str(self.path)], data)
        except OSError as e:
            raise SigningError(f"openssl could not sign the request: {e}") from e
        if self._curve is None:
            return signature
        coord_size = 48 if self._curve == "P-384" else 32
        try:
            return ecdsa_der_to_raw(signature, coord_size)
        except ValueError as e:
            raise SigningError(f"openssl returned a malformed signature: {e}") from e

    def digest(self, data: bytes) -> bytes:
        try:
            return self._run(["dgst", "-sha256", "-binary"], data)
        except OSError as e:
            raise SigningError(f"openssl could not digest the data: {e}") from e

    def _run(self, args: list[str], stdin: bytes | None = None) -> bytes:
        """Run openssl and return stdout.

        Raises:
            OSError: If openssl is missing or exits with an error.
        """
        logger.debug("Running openssl", extra={"command": args[0]})
        proc = subprocess.run(
            [self.openssl, *args],
            input=stdin,
            capture_output=True,
            check=False,
        )
        if proc.returncode != 0:
            raise OSError(f"OpenSSL Error: {proc.stderr.decode(errors='replace').strip()}")
        return proc.stdout


def load_private_key_pem(pem_data: str | bytes, password: bytes | None = None) -> PrivateKey:
    """Load a private key from PEM-encoded data.

    Args:
        pem_data: PEM-encoded private key.
        password: Optional password for encrypted keys.

    Returns:
        RSA or ECDSA private key.

    Raises:
        KeyLoadError: If PEM data is invalid or password is incorrect.
    """
    if isinstance(pem_data, str):
        pem_data = pem_data.encode("utf-8")
    try:
        key = serialization.load_pem_private_key(pem_data, password=password)
    except ValueError as e:
        error_msg = str(e).lower()
        if "password" in error_msg or "decrypt" in error_msg:
            raise KeyLoadError("Invalid password or encrypted key requires password") from e
        raise KeyLoadError(f"Invalid PEM data: {e}") from e
    except TypeError as e:
        # Encrypted key loaded without password, or password given for a plain key
        raise KeyLoadError("Invalid password or encrypted key requires password") from e
    except UnsupportedAlgorithm as e:
        raise KeyLoadError(f"Unsupported key algorithm: {e}") from e

    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise KeyLoadError(f"Unsupported key type: {type(key).__name__}")

    return key


def load_account_key(
    key: "str | bytes | PrivateKey | AccountKey | None" = None,
    key_path: str | Path | None = None,
    backend: str = "cryptography",
    password: bytes | None = None,
) -> AccountKey:
    """Build the account key provider from one of two key forms.

    Args:
        key: Raw key material (PEM text or bytes), a loaded private key,
             or a ready AccountKey.
        key_path: Path of a PEM private key.
        backend: "cryptography" (in process) or "openssl" (subprocess).
                 The openssl backend only accepts key_path.
        password: Password for an encrypted PEM key (cryptography backend).

    Returns:
        The account key provider.

    Raises:
        KeyLoadError: If both or neither key form is given, or loading fails.
    """
    if (key is None) == (key_path is None):
        raise KeyLoadError("Exactly one of account key or account key path must be given")
    if backend not in KEY_BACKENDS:
        raise KeyLoadError(f"Unknown key backend: {backend}. Supported: {list(KEY_BACKENDS)}")

    if isinstance(key, AccountKey):
        return key

    if backend == "openssl":
        if key_path is None:
            raise KeyLoadError("The openssl backend needs a key path")
        return OpenSSLAccountKey(key_path)

    if key_path is not None:
        try:
            key = Path(key_path).read_bytes()
        except OSError as e:
            raise KeyLoadError(f"Could not read account key {key_path}: {e}") from e

    if isinstance(key, (str, bytes)):
        key = load_private_key_pem(key, password)

    return CryptographyAccountKey(key)  # type: ignore[arg-type]
