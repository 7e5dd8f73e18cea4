"""
Identity federation: provider key sets, local sessions and caller resolution.
"""

from .adapter import IdentityFederationAdapter
from .credentials import (
    AuthScheme,
    FederatedToken,
    LocalSession,
    ProvisionResult,
    ResolvedCaller,
    credential_from_authorization,
)
from .jwks import JWKSClient
from .sessions import SessionTokenVerifier

__all__ = [
    "AuthScheme",
    "FederatedToken",
    "IdentityFederationAdapter",
    "JWKSClient",
    "LocalSession",
    "ProvisionResult",
    "ResolvedCaller",
    "SessionTokenVerifier",
    "credential_from_authorization",
]
