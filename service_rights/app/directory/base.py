"""
Directory collaborator contract: account registry, application registry and
user identities.
"""

from abc import ABC, abstractmethod
from typing import Optional

from .models import Account, Application, EntityStatus, UserIdentity


class Directory(ABC):
    """Lookups and the narrow set of writes the rights engine needs.

    Deletes are plain removals; callers check rights references first.
    """

    async def start(self):
        """Open connections. Optional."""

    async def stop(self):
        """Release connections. Optional."""

    # Accounts

    @abstractmethod
    async def find_account(self, account_id: str) -> Optional[Account]:
        ...

    @abstractmethod
    async def find_account_by_email(self, email: str) -> Optional[Account]:
        ...

    @abstractmethod
    async def get_or_create_account(self, account: Account) -> Account:
        """Insert keyed by external_account_id; return the stored record on conflict."""

    @abstractmethod
    async def delete_account(self, account_id: str) -> bool:
        ...

    # Applications

    @abstractmethod
    async def find_application(self, application_id: str) -> Optional[Application]:
        ...

    @abstractmethod
    async def create_application(self, application: Application) -> Application:
        ...

    @abstractmethod
    async def set_application_status(self, application_id: str, status: EntityStatus) -> Optional[Application]:
        ...

    @abstractmethod
    async def delete_application(self, application_id: str) -> bool:
        ...

    # Identities

    @abstractmethod
    async def find_identity(self, identity_id: str) -> Optional[UserIdentity]:
        ...

    @abstractmethod
    async def find_identity_by_subject(self, external_subject_id: str) -> Optional[UserIdentity]:
        ...

    @abstractmethod
    async def find_identity_by_email(self, email: str) -> Optional[UserIdentity]:
        ...

    @abstractmethod
    async def find_identity_by_username(self, username: str) -> Optional[UserIdentity]:
        ...

    @abstractmethod
    async def get_or_create_identity(self, identity: UserIdentity) -> UserIdentity:
        """Insert keyed by external_subject_id; return the stored record on conflict."""

    @abstractmethod
    async def link_external_subject(self, identity_id: str, external_subject_id: str) -> UserIdentity:
        ...
