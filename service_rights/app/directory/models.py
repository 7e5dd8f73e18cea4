"""
Account, application and user-identity records consumed by the rights engine.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional
import uuid

from pydantic import BaseModel, Field

from ..rights.models import utcnow


class EntityStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class AccountType(str, Enum):
    PERSONAL = "Personal"
    BUSINESS = "Business"
    TEMPORARY = "Temporary"


class IdentityRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    USER = "user"


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Account:
    """A rights subject: a person or an organization."""
    external_account_id: str
    name: str
    email: Optional[str] = None
    account_type: AccountType = AccountType.PERSONAL
    status: EntityStatus = EntityStatus.ACTIVE
    description: Optional[str] = None
    shared_accounts: FrozenSet[str] = frozenset()
    account_id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Application:
    """A registered consuming system."""
    external_application_id: str
    name: str
    description: Optional[str] = None
    status: EntityStatus = EntityStatus.ACTIVE
    application_id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class UserIdentity:
    """A login identity mapped to an account, optionally linked to an external subject."""
    username: str
    email: Optional[str]
    account_id: str
    external_subject_id: Optional[str] = None
    status: EntityStatus = EntityStatus.ACTIVE
    role: IdentityRole = IdentityRole.USER
    identity_id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


class AccountCreateRequest(BaseModel):
    external_account_id: str = Field(..., description="Unique account slug")
    name: str = Field(..., description="Display name")
    email: Optional[str] = Field(None, description="Contact email")
    account_type: AccountType = Field(AccountType.PERSONAL, description="Account class")
    description: Optional[str] = None


class AccountResponse(BaseModel):
    id: str
    external_account_id: str
    name: str
    email: Optional[str]
    account_type: AccountType
    status: EntityStatus

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.account_id,
            external_account_id=account.external_account_id,
            name=account.name,
            email=account.email,
            account_type=account.account_type,
            status=account.status,
        )


class ApplicationCreateRequest(BaseModel):
    external_application_id: str = Field(..., description="Unique application slug")
    name: str = Field(..., description="Display name")
    description: Optional[str] = None


class ApplicationStatusRequest(BaseModel):
    status: EntityStatus


class ApplicationResponse(BaseModel):
    id: str
    external_application_id: str
    name: str
    description: Optional[str]
    status: EntityStatus

    @classmethod
    def from_application(cls, application: Application) -> "ApplicationResponse":
        return cls(
            id=application.application_id,
            external_application_id=application.external_application_id,
            name=application.name,
            description=application.description,
            status=application.status,
        )
