"""
Directory collaborators: the account registry, application registry and
user identities the rights engine resolves against.
"""

from .base import Directory
from .memory import InMemoryDirectory
from .models import Account, AccountType, Application, EntityStatus, IdentityRole, UserIdentity
from .postgres import PostgreSQLDirectory

__all__ = [
    "Account",
    "AccountType",
    "Application",
    "Directory",
    "EntityStatus",
    "IdentityRole",
    "InMemoryDirectory",
    "PostgreSQLDirectory",
    "UserIdentity",
]
