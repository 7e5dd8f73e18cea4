"""
Local session tokens: HS256 JWTs whose subject is a UserIdentity id.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from shared.errors import AuthenticationError
from ..rights.models import utcnow

ALGORITHM = "HS256"


class SessionTokenVerifier:

    def __init__(self, signing_key: str, issuer: str = "rights-service"):
        if not signing_key:
            raise ValueError("Session signing key must be configured")
        self._signing_key = signing_key
        self.issuer = issuer

    def issue(self, identity_id: str, ttl: timedelta = timedelta(hours=24), now: Optional[datetime] = None) -> str:
        now = now or utcnow()
        claims = {
            "sub": identity_id,
            "iss": self.issuer,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
        }
        return jwt.encode(claims, self._signing_key, algorithm=ALGORITHM)

    def verify(self, token: str) -> Dict[str, Any]:
        """Return the claims of a valid session token."""
        try:
            claims = jwt.decode(token, self._signing_key, algorithms=[ALGORITHM], issuer=self.issuer)
        except ExpiredSignatureError as e:
            raise AuthenticationError("Session has expired") from e
        except JWTError as e:
            raise AuthenticationError("Invalid session token", details={"error": str(e)}) from e

        if not isinstance(claims.get("sub"), str) or not claims["sub"]:
            raise AuthenticationError("Session token missing subject")
        return claims
