"""
Request and response models for token decoding.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from ..rights.models import Permission
from .codec import EntitlementPayload


class TokenDecodeRequest(BaseModel):
    token: str = Field(..., description="Entitlement token to verify")


class TokenDecodeResponse(BaseModel):
    application_id: str
    account_id: str
    permissions: List[Permission]
    expires_at: Optional[datetime]

    @classmethod
    def from_payload(cls, payload: EntitlementPayload) -> "TokenDecodeResponse":
        return cls(
            application_id=payload.application_id,
            account_id=payload.account_id,
            permissions=sorted(payload.permissions, key=lambda p: p.value),
            expires_at=payload.expires_at,
        )
