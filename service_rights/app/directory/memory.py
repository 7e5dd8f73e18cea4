"""
In-memory directory for local runs and tests.
"""

import asyncio
from dataclasses import replace
from typing import Dict, Optional

from ..errors import DuplicateApplication
from ..rights.models import utcnow
from .base import Directory
from .models import Account, Application, EntityStatus, UserIdentity


class InMemoryDirectory(Directory):

    def __init__(self):
        self.accounts: Dict[str, Account] = {}
        self.applications: Dict[str, Application] = {}
        self.identities: Dict[str, UserIdentity] = {}
        self._lock = asyncio.Lock()

    async def find_account(self, account_id: str) -> Optional[Account]:
        return self.accounts.get(account_id)

    async def find_account_by_email(self, email: str) -> Optional[Account]:
        return next((a for a in self.accounts.values() if a.email == email), None)

    async def get_or_create_account(self, account: Account) -> Account:
        async with self._lock:
            for existing in self.accounts.values():
                if existing.external_account_id == account.external_account_id:
                    return existing
            self.accounts[account.account_id] = account
            return account

    async def delete_account(self, account_id: str) -> bool:
        return self.accounts.pop(account_id, None) is not None

    async def find_application(self, application_id: str) -> Optional[Application]:
        return self.applications.get(application_id)

    async def create_application(self, application: Application) -> Application:
        async with self._lock:
            for existing in self.applications.values():
                if existing.external_application_id == application.external_application_id:
                    raise DuplicateApplication(details={
                        "external_application_id": application.external_application_id,
                    })
            self.applications[application.application_id] = application
            return application

    async def set_application_status(self, application_id: str, status: EntityStatus) -> Optional[Application]:
        application = self.applications.get(application_id)
        if application is None:
            return None
        application = replace(application, status=status, updated_at=utcnow())
        self.applications[application_id] = application
        return application

    async def delete_application(self, application_id: str) -> bool:
        return self.applications.pop(application_id, None) is not None

    async def find_identity(self, identity_id: str) -> Optional[UserIdentity]:
        return self.identities.get(identity_id)

    async def find_identity_by_subject(self, external_subject_id: str) -> Optional[UserIdentity]:
        return next(
            (i for i in self.identities.values() if i.external_subject_id == external_subject_id),
            None,
        )

    async def find_identity_by_email(self, email: str) -> Optional[UserIdentity]:
        return next((i for i in self.identities.values() if i.email == email), None)

    async def find_identity_by_username(self, username: str) -> Optional[UserIdentity]:
        return next((i for i in self.identities.values() if i.username == username), None)

    async def get_or_create_identity(self, identity: UserIdentity) -> UserIdentity:
        async with self._lock:
            if identity.external_subject_id is not None:
                for existing in self.identities.values():
                    if existing.external_subject_id == identity.external_subject_id:
                        return existing
            self.identities[identity.identity_id] = identity
            return identity

    async def link_external_subject(self, identity_id: str, external_subject_id: str) -> UserIdentity:
        identity = replace(
            self.identities[identity_id],
            external_subject_id=external_subject_id,
            updated_at=utcnow(),
        )
        self.identities[identity_id] = identity
        return identity
