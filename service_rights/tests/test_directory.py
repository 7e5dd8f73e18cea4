"""
Unit tests for the account, application and identity directories.
"""

from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from service_rights.app.directory.memory import InMemoryDirectory
from service_rights.app.directory.models import (
    Account,
    AccountType,
    Application,
    EntityStatus,
    IdentityRole,
    UserIdentity,
)
from service_rights.app.directory.postgres import PostgreSQLDirectory
from service_rights.app.errors import DuplicateApplication
from service_rights.app.rights.models import utcnow


class TestInMemoryDirectory:

    @pytest.mark.asyncio
    async def test_duplicate_application_slug(self):
        directory = InMemoryDirectory()
        first = await directory.create_application(Application(external_application_id="crm", name="CRM"))

        with pytest.raises(DuplicateApplication) as exc_info:
            await directory.create_application(Application(external_application_id="crm", name="CRM v2"))

        assert exc_info.value.status_code == 409
        assert exc_info.value.details == {"external_application_id": "crm"}
        assert list(directory.applications) == [first.application_id]

    @pytest.mark.asyncio
    async def test_get_or_create_account_returns_existing(self):
        directory = InMemoryDirectory()
        first = await directory.get_or_create_account(Account(external_account_id="acme", name="Acme"))

        again = await directory.get_or_create_account(Account(external_account_id="acme", name="Other"))

        assert again is first
        assert len(directory.accounts) == 1


class TestPostgreSQLDirectory:
    """Test cases for PostgreSQLDirectory against a mocked pool."""

    @pytest.fixture
    def connection(self):
        return AsyncMock()

    @pytest.fixture
    def directory(self, connection):
        pool = MagicMock()
        pool.acquire.return_value.__aenter__ = AsyncMock(return_value=connection)
        pool.acquire.return_value.__aexit__ = AsyncMock(return_value=False)
        return PostgreSQLDirectory(pool=pool)

    @pytest.fixture
    def account_row(self):
        now = utcnow()
        return {
            "account_id": "acc-existing",
            "external_account_id": "acme",
            "name": "Acme",
            "email": "ops@acme.example.com",
            "description": None,
            "account_type": "Business",
            "status": "active",
            "shared_accounts": ["acc-partner"],
            "created_at": now,
            "updated_at": now,
        }

    @pytest.fixture
    def identity_row(self):
        now = utcnow()
        return {
            "identity_id": "ident-existing",
            "username": "alice",
            "email": "alice@acme.example.com",
            "account_id": "acc-existing",
            "external_subject_id": "sub-1",
            "status": "active",
            "role": "admin",
            "created_at": now,
            "updated_at": now,
        }

    @pytest.mark.asyncio
    async def test_create_application_unique_violation(self, directory, connection):
        connection.fetchrow.side_effect = asyncpg.UniqueViolationError("duplicate key value")

        with pytest.raises(DuplicateApplication) as exc_info:
            await directory.create_application(Application(external_application_id="crm", name="CRM"))

        assert exc_info.value.details == {"external_application_id": "crm"}

    @pytest.mark.asyncio
    async def test_get_or_create_account_inserts(self, directory, connection, account_row):
        connection.fetchrow.return_value = account_row

        account = await directory.get_or_create_account(Account(
            external_account_id="acme",
            name="Acme",
            shared_accounts=frozenset({"b", "a"}),
        ))

        assert connection.fetchrow.await_count == 1
        query, *args = connection.fetchrow.call_args.args
        assert "ON CONFLICT (external_account_id) DO NOTHING" in query
        assert args[1] == "acme"
        assert args[7] == ["a", "b"]
        assert account.account_type == AccountType.BUSINESS
        assert account.shared_accounts == frozenset({"acc-partner"})

    @pytest.mark.asyncio
    async def test_get_or_create_account_rereads_on_conflict(self, directory, connection, account_row):
        connection.fetchrow.side_effect = [None, account_row]

        account = await directory.get_or_create_account(Account(external_account_id="acme", name="Acme Again"))

        assert account.account_id == "acc-existing"
        assert account.name == "Acme"
        query, slug = connection.fetchrow.call_args.args
        assert query == "SELECT * FROM accounts WHERE external_account_id = $1"
        assert slug == "acme"

    @pytest.mark.asyncio
    async def test_get_or_create_identity_rereads_on_conflict(self, directory, connection, identity_row):
        connection.fetchrow.side_effect = [None, identity_row]

        identity = await directory.get_or_create_identity(UserIdentity(
            username="alice-again",
            email="alice@acme.example.com",
            account_id="acc-other",
            external_subject_id="sub-1",
        ))

        assert identity.identity_id == "ident-existing"
        assert identity.account_id == "acc-existing"
        assert identity.role == IdentityRole.ADMIN
        insert_args = connection.fetchrow.call_args_list[0].args
        assert insert_args[7] == "user"
        assert connection.fetchrow.call_args.args[1] == "sub-1"

    @pytest.mark.asyncio
    async def test_link_external_subject(self, directory, connection, identity_row):
        connection.fetchrow.return_value = dict(identity_row, external_subject_id="sub-2")

        identity = await directory.link_external_subject("ident-existing", "sub-2")

        query, identity_id, subject, updated_at = connection.fetchrow.call_args.args
        assert query.strip().startswith("UPDATE user_identities SET external_subject_id = $2")
        assert (identity_id, subject) == ("ident-existing", "sub-2")
        assert updated_at.tzinfo is not None
        assert identity.external_subject_id == "sub-2"

    @pytest.mark.asyncio
    async def test_set_application_status_missing(self, directory, connection):
        connection.fetchrow.return_value = None

        assert await directory.set_application_status("missing", EntityStatus.INACTIVE) is None

    @pytest.mark.asyncio
    async def test_delete_reports_whether_a_row_was_removed(self, directory, connection):
        connection.execute.side_effect = ["DELETE 1", "DELETE 0"]

        assert await directory.delete_account("acc-existing") is True
        assert await directory.delete_application("missing") is False

    @pytest.mark.asyncio
    async def test_find_identity_maps_role(self, directory, connection, identity_row):
        connection.fetchrow.return_value = identity_row

        identity = await directory.find_identity_by_email("alice@acme.example.com")

        assert identity.role == IdentityRole.ADMIN
        assert "WHERE email = $1" in connection.fetchrow.call_args.args[0]
