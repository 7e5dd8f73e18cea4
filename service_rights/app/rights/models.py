"""
Rights data models.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional
import uuid

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Permission(str, Enum):
    """Canonical permission values."""
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"
    OWNER = "owner"


class RightStatus(str, Enum):
    """Stored/derived status of a right."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"


@dataclass(frozen=True)
class Right:
    """A permission grant binding one account to one application."""
    application_id: str
    account_id: str
    permissions: FrozenSet[Permission] = frozenset()
    expires_at: Optional[datetime] = None
    entitlement_token: str = ""
    status: RightStatus = RightStatus.ACTIVE
    right_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    # Status as persisted, kept when ``status`` has been derived for a read.
    stored_status: Optional[RightStatus] = field(default=None, compare=False)

    @property
    def administrative_status(self) -> RightStatus:
        return self.stored_status or self.status


@dataclass(frozen=True)
class RightPatch:
    """Full replacement of a right's mutable fields, computed by the lifecycle engine."""
    permissions: FrozenSet[Permission]
    expires_at: Optional[datetime]
    entitlement_token: str
    status: RightStatus
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class RightsFilter:
    """Filter for listing rights; status is recomputed relative to status_as_of."""
    status_as_of: datetime
    application_id: Optional[str] = None
    account_id: Optional[str] = None


@dataclass
class RightsStats:
    total: int = 0
    active: int = 0
    inactive: int = 0
    expired: int = 0
    by_application: Dict[str, int] = field(default_factory=dict)


class GrantRequest(BaseModel):
    """Request model for granting rights."""
    application_id: str = Field(..., description="Application ID")
    account_id: str = Field(..., description="Account ID")
    permissions: List[str] = Field(..., description="Permissions to grant")
    expires_at: Optional[datetime] = Field(None, description="Expiration date; omit for no expiry")


class AmendRequest(BaseModel):
    """Request model for amending rights. An explicit null expires_at clears the expiry."""
    permissions: Optional[List[str]] = Field(None, description="Replacement permission set")
    expires_at: Optional[datetime] = Field(None, description="New expiration date")
    status: Optional[RightStatus] = Field(None, description="active or inactive")


class RightResponse(BaseModel):
    """Response model for rights operations."""
    id: str
    application_id: str
    account_id: str
    permissions: List[Permission]
    expires_at: Optional[datetime]
    status: RightStatus
    expiring_soon: bool = False
    entitlement_token: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_right(cls, right: Right, expiring_soon: bool = False) -> "RightResponse":
        return cls(
            id=right.right_id,
            application_id=right.application_id,
            account_id=right.account_id,
            permissions=sorted(right.permissions, key=lambda p: p.value),
            expires_at=right.expires_at,
            status=right.status,
            expiring_soon=expiring_soon,
            entitlement_token=right.entitlement_token,
            created_at=right.created_at,
            updated_at=right.updated_at,
        )


class RightListResponse(BaseModel):
    """Response model for rights list."""
    rights: List[RightResponse]
    total: int
    page: int
    limit: int
