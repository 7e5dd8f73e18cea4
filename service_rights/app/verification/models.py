"""
Verification request and verdict models.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from ..directory.models import ApplicationResponse
from ..rights.models import Permission


class VerdictReason(str, Enum):
    """Why access was granted or, for denials, the first blocking check."""
    ACCESS_GRANTED = "AccessGranted"
    APPLICATION_NOT_FOUND = "ApplicationNotFound"
    NO_RIGHTS_FOUND = "NoRightsFound"
    APPLICATION_INACTIVE = "ApplicationInactive"
    RIGHTS_EXPIRED = "RightsExpired"
    RIGHTS_INACTIVE = "RightsInactive"
    INSUFFICIENT_PERMISSIONS = "InsufficientPermissions"


VERDICT_MESSAGES = {
    VerdictReason.ACCESS_GRANTED: "Access granted",
    VerdictReason.APPLICATION_NOT_FOUND: "Application not found",
    VerdictReason.NO_RIGHTS_FOUND: "No rights found for this application and account",
    VerdictReason.APPLICATION_INACTIVE: "Application is not active",
    VerdictReason.RIGHTS_EXPIRED: "Rights have expired",
    VerdictReason.RIGHTS_INACTIVE: "Rights are inactive",
    VerdictReason.INSUFFICIENT_PERMISSIONS: "Insufficient permissions",
}


class Verdict(BaseModel):
    """Outcome of a single access check."""
    allowed: bool
    reason: str
    message: str
    account_id: str
    application_id: str
    required_permissions: List[str] = Field(default_factory=list)
    effective_permissions: Optional[List[Permission]] = None
    missing_permissions: List[Permission] = Field(default_factory=list)
    expires_at: Optional[datetime] = None


class VerifyRequest(BaseModel):
    """Request model for a single access check."""
    account_id: str = Field(..., description="Account ID")
    application_id: str = Field(..., description="Application ID")
    required_permissions: List[str] = Field(default_factory=list, description="Permissions the caller needs")


class BulkVerifyItem(BaseModel):
    application_id: str
    required_permissions: List[str] = Field(default_factory=list)


class BulkVerifyRequest(BaseModel):
    account_id: str = Field(..., description="Account ID")
    items: List[BulkVerifyItem] = Field(..., description="Checks to run, answered in the same order")


class BulkVerdict(BaseModel):
    results: List[Verdict]
    total: int
    allowed: int
    denied: int


class ApplicationAccess(BaseModel):
    """An application an account can currently reach."""
    right_id: str
    application: ApplicationResponse
    permissions: List[Permission]
    expires_at: Optional[datetime]
    expiring_soon: bool = False
