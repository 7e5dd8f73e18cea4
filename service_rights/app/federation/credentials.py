"""
Caller credentials and the normalized caller they resolve to.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from shared.errors import AuthenticationError
from ..directory.models import IdentityRole
from ..rights.models import Right, RightResponse


class AuthScheme(str, Enum):
    LOCAL = "local"
    FEDERATED = "federated"


@dataclass(frozen=True)
class LocalSession:
    """Session token minted by this system for a UserIdentity."""
    token: str


@dataclass(frozen=True)
class FederatedToken:
    """Bearer token issued by the external identity provider."""
    token: str


Credential = Union[LocalSession, FederatedToken]


def credential_from_authorization(authorization: Optional[str]) -> Credential:
    """Parse an Authorization header.

    ``Bearer <token>`` is a provider token, ``Session <token>`` a local one.
    """
    if not authorization:
        raise AuthenticationError("Missing Authorization header")

    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if not token:
        raise AuthenticationError("Authorization header contained an empty token")

    scheme = scheme.lower()
    if scheme == "bearer":
        return FederatedToken(token)
    if scheme == "session":
        return LocalSession(token)
    raise AuthenticationError("Unsupported authorization scheme", details={"scheme": scheme})


def bearer_token(authorization: Optional[str]) -> str:
    credential = credential_from_authorization(authorization)
    if not isinstance(credential, FederatedToken):
        raise AuthenticationError("A provider bearer token is required")
    return credential.token


@dataclass(frozen=True)
class ExternalProfile:
    """The identity claims read from a verified provider token."""
    subject: str
    username: Optional[str] = None
    email: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "ExternalProfile":
        return cls(
            subject=claims["sub"],
            username=claims.get("preferred_username") or claims.get("username"),
            email=claims.get("email"),
            given_name=claims.get("given_name"),
            family_name=claims.get("family_name"),
        )

    @property
    def display_name(self) -> str:
        full_name = " ".join(part for part in (self.given_name, self.family_name) if part)
        return full_name or self.username or self.email or self.subject


@dataclass(frozen=True)
class ResolvedCaller:
    """Who is calling, regardless of how they authenticated.

    account_id is None for a verified provider subject that has not been
    mapped to an account yet.
    """
    account_id: Optional[str]
    auth_scheme: AuthScheme
    identity_id: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    external_subject_id: Optional[str] = None
    role: Optional[IdentityRole] = None

    @property
    def is_admin(self) -> bool:
        return self.role == IdentityRole.ADMIN


@dataclass(frozen=True)
class ProvisionResult:
    right: Right
    created: bool
    account_id: str
    external_subject_id: str


class FederatedApplicationRequest(BaseModel):
    application_id: str = Field(..., description="Application ID")


class ProvisionResponse(BaseModel):
    right: RightResponse
    created: bool
    account_id: str
    external_subject_id: str


class CallerResponse(BaseModel):
    account_id: Optional[str]
    auth_scheme: AuthScheme
    identity_id: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    external_subject_id: Optional[str] = None
    role: Optional[IdentityRole] = None

    @classmethod
    def from_caller(cls, caller: ResolvedCaller) -> "CallerResponse":
        return cls(
            account_id=caller.account_id,
            auth_scheme=caller.auth_scheme,
            identity_id=caller.identity_id,
            username=caller.username,
            email=caller.email,
            external_subject_id=caller.external_subject_id,
            role=caller.role,
        )


class FederatedPermissionsRequest(BaseModel):
    application_id: str = Field(..., description="Application ID")
    permissions: List[str] = Field(..., description="Replacement permission set")
