"""
PostgreSQL directory of accounts, applications and user identities.
"""

from typing import Optional

import asyncpg

from shared.logging import get_logger
from ..rights.models import utcnow
from .base import Directory
from ..errors import DuplicateApplication
from .models import Account, AccountType, Application, EntityStatus, IdentityRole, UserIdentity


class PostgreSQLDirectory(Directory):
    """asyncpg-backed directory sharing the rights store's pool."""

    def __init__(self, pool: Optional[asyncpg.Pool] = None):
        self.pool = pool
        self.logger = get_logger("rights.directory.postgres")

    async def start(self):
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS accounts (
                    account_id VARCHAR(64) PRIMARY KEY,
                    external_account_id VARCHAR(255) NOT NULL UNIQUE,
                    name VARCHAR(255) NOT NULL,
                    email VARCHAR(255),
                    description TEXT,
                    account_type VARCHAR(20) NOT NULL DEFAULT 'Personal',
                    status VARCHAR(20) NOT NULL DEFAULT 'active',
                    shared_accounts TEXT[] NOT NULL DEFAULT '{}',
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS applications (
                    application_id VARCHAR(64) PRIMARY KEY,
                    external_application_id VARCHAR(255) NOT NULL UNIQUE,
                    name VARCHAR(255) NOT NULL,
                    description TEXT,
                    status VARCHAR(20) NOT NULL DEFAULT 'active',
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS user_identities (
                    identity_id VARCHAR(64) PRIMARY KEY,
                    username VARCHAR(255) NOT NULL,
                    email VARCHAR(255),
                    account_id VARCHAR(64) NOT NULL REFERENCES accounts(account_id),
                    external_subject_id VARCHAR(255) UNIQUE,
                    status VARCHAR(20) NOT NULL DEFAULT 'active',
                    role VARCHAR(20) NOT NULL DEFAULT 'user',
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_user_identities_email ON user_identities(email);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_user_identities_username ON user_identities(username);
            """)
        self.logger.info("PostgreSQL directory started")

    # Accounts

    async def find_account(self, account_id: str) -> Optional[Account]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM accounts WHERE account_id = $1", account_id)
        return self._row_to_account(row) if row else None

    async def find_account_by_email(self, email: str) -> Optional[Account]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM accounts WHERE email = $1 LIMIT 1", email)
        return self._row_to_account(row) if row else None

    async def get_or_create_account(self, account: Account) -> Account:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO accounts (
                    account_id, external_account_id, name, email, description,
                    account_type, status, shared_accounts, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                ON CONFLICT (external_account_id) DO NOTHING
                RETURNING *
            """,
                account.account_id, account.external_account_id, account.name, account.email,
                account.description, account.account_type.value, account.status.value,
                sorted(account.shared_accounts), account.created_at, account.updated_at
            )
            if row is None:
                row = await conn.fetchrow(
                    "SELECT * FROM accounts WHERE external_account_id = $1",
                    account.external_account_id,
                )
        return self._row_to_account(row)

    async def delete_account(self, account_id: str) -> bool:
        async with self.pool.acquire() as conn:
            result = await conn.execute("DELETE FROM accounts WHERE account_id = $1", account_id)
        return result == "DELETE 1"

    # Applications

    async def find_application(self, application_id: str) -> Optional[Application]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM applications WHERE application_id = $1", application_id)
        return self._row_to_application(row) if row else None

    async def create_application(self, application: Application) -> Application:
        async with self.pool.acquire() as conn:
            try:
                row = await conn.fetchrow("""
                    INSERT INTO applications (
                        application_id, external_application_id, name, description, status, created_at, updated_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                    RETURNING *
                """,
                    application.application_id, application.external_application_id, application.name,
                    application.description, application.status.value, application.created_at, application.updated_at
                )
            except asyncpg.UniqueViolationError as e:
                raise DuplicateApplication(details={
                    "external_application_id": application.external_application_id,
                }) from e
        return self._row_to_application(row)

    async def set_application_status(self, application_id: str, status: EntityStatus) -> Optional[Application]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("""
                UPDATE applications SET status = $2, updated_at = $3
                WHERE application_id = $1
                RETURNING *
            """, application_id, status.value, utcnow())
        return self._row_to_application(row) if row else None

    async def delete_application(self, application_id: str) -> bool:
        async with self.pool.acquire() as conn:
            result = await conn.execute("DELETE FROM applications WHERE application_id = $1", application_id)
        return result == "DELETE 1"

    # Identities

    async def find_identity(self, identity_id: str) -> Optional[UserIdentity]:
        return await self._find_identity_where("identity_id", identity_id)

    async def find_identity_by_subject(self, external_subject_id: str) -> Optional[UserIdentity]:
        return await self._find_identity_where("external_subject_id", external_subject_id)

    async def find_identity_by_email(self, email: str) -> Optional[UserIdentity]:
        return await self._find_identity_where("email", email)

    async def find_identity_by_username(self, username: str) -> Optional[UserIdentity]:
        return await self._find_identity_where("username", username)

    async def _find_identity_where(self, column: str, value: str) -> Optional[UserIdentity]:
        # column is always one of the literals above
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT * FROM user_identities WHERE {column} = $1 ORDER BY created_at LIMIT 1",
                value,
            )
        return self._row_to_identity(row) if row else None

    async def get_or_create_identity(self, identity: UserIdentity) -> UserIdentity:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO user_identities (
                    identity_id, username, email, account_id, external_subject_id,
                    status, role, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (external_subject_id) DO NOTHING
                RETURNING *
            """,
                identity.identity_id, identity.username, identity.email, identity.account_id,
                identity.external_subject_id, identity.status.value, identity.role.value,
                identity.created_at, identity.updated_at
            )
            if row is None:
                row = await conn.fetchrow(
                    "SELECT * FROM user_identities WHERE external_subject_id = $1",
                    identity.external_subject_id,
                )
        return self._row_to_identity(row)

    async def link_external_subject(self, identity_id: str, external_subject_id: str) -> UserIdentity:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("""
                UPDATE user_identities SET external_subject_id = $2, updated_at = $3
                WHERE identity_id = $1
                RETURNING *
            """, identity_id, external_subject_id, utcnow())
        return self._row_to_identity(row)

    @staticmethod
    def _row_to_account(row) -> Account:
        return Account(
            account_id=row["account_id"],
            external_account_id=row["external_account_id"],
            name=row["name"],
            email=row["email"],
            description=row["description"],
            account_type=AccountType(row["account_type"]),
            status=EntityStatus(row["status"]),
            shared_accounts=frozenset(row["shared_accounts"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_application(row) -> Application:
        return Application(
            application_id=row["application_id"],
            external_application_id=row["external_application_id"],
            name=row["name"],
            description=row["description"],
            status=EntityStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_identity(row) -> UserIdentity:
        return UserIdentity(
            identity_id=row["identity_id"],
            username=row["username"],
            email=row["email"],
            account_id=row["account_id"],
            external_subject_id=row["external_subject_id"],
            status=EntityStatus(row["status"]),
            role=IdentityRole(row["role"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
