"""
Entitlement token codec.

Tokens are HS256 JWTs carrying a right's payload. Third parties holding the
signing key can verify them without asking the rights store.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, FrozenSet, Optional

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from shared.logging import get_logger
from ..errors import TokenExpired, TokenMalformed, TokenSignatureInvalid
from ..rights.models import Permission, Right, utcnow
from ..rights.status import ensure_utc

ALGORITHM = "HS256"


@dataclass(frozen=True)
class EntitlementPayload:
    """The claims an entitlement token vouches for."""
    application_id: str
    account_id: str
    permissions: FrozenSet[Permission]
    expires_at: Optional[datetime] = None

    @classmethod
    def from_right(cls, right: Right) -> "EntitlementPayload":
        return cls(
            application_id=right.application_id,
            account_id=right.account_id,
            permissions=frozenset(right.permissions),
            expires_at=right.expires_at,
        )


class EntitlementTokenCodec:
    """Encodes and decodes signed entitlement tokens."""

    def __init__(self, signing_key: str, issuer: str = "rights-service", default_validity: timedelta = timedelta(days=365)):
        if not signing_key:
            raise ValueError("Entitlement token signing key must be configured")
        self._signing_key = signing_key
        self.issuer = issuer
        self.default_validity = default_validity
        self.logger = get_logger("rights.tokens")

    def encode(self, payload: EntitlementPayload, now: Optional[datetime] = None) -> str:
        """Mint a token valid until the payload's expiry, or for the default window."""
        now = now or utcnow()
        expires_at = ensure_utc(payload.expires_at)
        valid_until = expires_at if expires_at is not None else now + self.default_validity

        claims: Dict[str, Any] = {
            "iss": self.issuer,
            "iat": int(now.timestamp()),
            "exp": int(valid_until.timestamp()),
            "applicationId": payload.application_id,
            "accountId": payload.account_id,
            "permissions": sorted(p.value for p in payload.permissions),
            "expiresAt": expires_at.isoformat() if expires_at is not None else None,
        }
        return jwt.encode(claims, self._signing_key, algorithm=ALGORITHM)

    def decode(self, token: str) -> EntitlementPayload:
        """Verify structure, signature and expiry, in that order."""
        try:
            jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError as e:
            raise TokenMalformed(details={"error": str(e)}) from e

        try:
            claims = jwt.decode(
                token,
                self._signing_key,
                algorithms=[ALGORITHM],
                issuer=self.issuer,
                options={"verify_aud": False},
            )
        except ExpiredSignatureError as e:
            raise TokenExpired() from e
        except JWTError as e:
            self.logger.warning("Entitlement token rejected", error=str(e))
            raise TokenSignatureInvalid(details={"error": str(e)}) from e

        return self._payload_from_claims(claims)

    def _payload_from_claims(self, claims: Dict[str, Any]) -> EntitlementPayload:
        application_id = claims.get("applicationId")
        account_id = claims.get("accountId")
        raw_permissions = claims.get("permissions")
        raw_expires_at = claims.get("expiresAt")

        if not isinstance(application_id, str) or not isinstance(account_id, str):
            raise TokenMalformed("Entitlement token is missing its subject claims")
        if not isinstance(raw_permissions, list):
            raise TokenMalformed("Entitlement token permissions claim must be a list")

        try:
            permissions = frozenset(Permission(p) for p in raw_permissions)
            expires_at = datetime.fromisoformat(raw_expires_at) if raw_expires_at is not None else None
        except (TypeError, ValueError) as e:
            raise TokenMalformed(details={"error": str(e)}) from e

        return EntitlementPayload(
            application_id=application_id,
            account_id=account_id,
            permissions=permissions,
            expires_at=ensure_utc(expires_at),
        )
