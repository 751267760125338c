"""Pydantic models for ACME protocol resources."""

from datetime import datetime
from enum import IntEnum, StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, Field

# =============================================================================
# ACME Protocol Enums
# =============================================================================


class RevocationReason(IntEnum):
    """Certificate revocation reasons (RFC 5280 Section 5.3.1)."""

    UNSPECIFIED = 0
    KEY_COMPROMISE = 1
    CA_COMPROMISE = 2
    AFFILIATION_CHANGED = 3
    SUPERSEDED = 4
    CESSATION_OF_OPERATION = 5
    CERTIFICATE_HOLD = 6


class AcmeErrorType(StrEnum):
    """Problem types reported by ACME servers."""

    BAD_CSR = "urn:acme:error:badCSR"
    BAD_NONCE = "urn:acme:error:badNonce"
    CONNECTION = "urn:acme:error:connection"
    DNSSEC = "urn:acme:error:dnssec"
    INVALID_EMAIL = "urn:acme:error:invalidEmail"
    MALFORMED = "urn:acme:error:malformed"
    RATE_LIMITED = "urn:acme:error:rateLimited"
    SERVER_INTERNAL = "urn:acme:error:serverInternal"
    TLS = "urn:acme:error:tls"
    UNAUTHORIZED = "urn:acme:error:unauthorized"
    UNKNOWN_HOST = "urn:acme:error:unknownHost"


class Resource(StrEnum):
    """Directory resource names."""

    NEW_REG = "new-reg"
    NEW_AUTHZ = "new-authz"
    NEW_CERT = "new-cert"
    REVOKE_CERT = "revoke-cert"
    KEY_CHANGE = "key-change"


class ChallengeStatus(StrEnum):
    """Challenge statuses."""

    PENDING = "pending"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class AuthorizationStatus(StrEnum):
    """Authorization statuses."""

    UNKNOWN = "unknown"
    PENDING = "pending"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"
    REVOKED = "revoked"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"


class ChallengeType(StrEnum):
    """Well-known challenge types."""

    HTTP_01 = "http-01"
    DNS_01 = "dns-01"
    TLS_SNI_01 = "tls-sni-01"


class IdentifierType(StrEnum):
    """Identifier types."""

    DNS = "dns"


class RegistrationOutcome(StrEnum):
    """How register() obtained the account."""

    CREATED = "created"
    EXISTING = "existing"


# =============================================================================
# Pydantic Models
# =============================================================================


class Directory(BaseModel):
    """ACME directory: resource names mapped to endpoint URLs."""

    resources: dict[str, str]
    meta: dict[str, Any] | None = None

    model_config = {"frozen": True}

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Directory":
        """Build a Directory from the server's JSON object.

        Every member except ``meta`` must be a resource URL.
        """
        resources = {k: v for k, v in data.items() if k != "meta"}
        return cls.model_validate({"resources": resources, "meta": data.get("meta")})

    def url_for(self, resource: str) -> str | None:
        """Return the URL of a resource, or None if not advertised."""
        return self.resources.get(resource)

    @property
    def terms_of_service(self) -> str | None:
        """Terms-of-service URL advertised in the directory meta, if any."""
        if not self.meta:
            return None
        return self.meta.get("terms-of-service") or self.meta.get("termsOfService")


class Identifier(BaseModel):
    """ACME identifier."""

    type: IdentifierType
    value: str


class Registration(BaseModel):
    """Local reflection of the server-side account."""

    url: str
    outcome: RegistrationOutcome
    contact: list[str] = Field(default_factory=list)
    agreement: str | None = None
    terms_of_service: str | None = None
    new_authz_url: str | None = None

    @property
    def agreement_accepted(self) -> bool:
        """True once the account has agreed to the terms of service."""
        return self.agreement is not None


class Challenge(BaseModel):
    """ACME challenge resource."""

    type: str
    url: str = Field(validation_alias=AliasChoices("uri", "url"))
    status: ChallengeStatus = ChallengeStatus.PENDING
    token: str = ""
    key_authorization: str | None = Field(
        default=None, validation_alias=AliasChoices("keyAuthorization", "key_authorization")
    )
    validated: datetime | None = None
    error: dict[str, Any] | None = None
    domain: str | None = None

    model_config = {"populate_by_name": True}


class Authorization(BaseModel):
    """ACME authorization resource."""

    identifier: Identifier
    status: AuthorizationStatus = AuthorizationStatus.PENDING
    challenges: list[Challenge]
    combinations: list[list[int]] | None = None
    expires: datetime | None = None
    url: str | None = None


class IssuedCertificate(BaseModel):
    """Result of certificate issuance."""

    der: bytes
    url: str | None = None
    chain_url: str | None = None
