"""
Shared fixtures for Rights service tests.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwk, jwt

from shared.circuit_breaker import CircuitBreaker
from service_rights.app.directory.memory import InMemoryDirectory
from service_rights.app.directory.models import Account, Application, EntityStatus
from service_rights.app.federation.jwks import JWKSClient
from service_rights.app.persistence.memory import InMemoryRightsStore
from service_rights.app.rights.lifecycle import RightsLifecycleEngine
from service_rights.app.rights.models import utcnow
from service_rights.app.tokens.codec import EntitlementTokenCodec
from service_rights.app.verification.service import AccessVerificationService

SIGNING_KEY = "test-entitlement-signing-key"
SESSION_KEY = "test-session-signing-key"
JWKS_URL = "https://idp.example.com/realms/test/protocol/openid-connect/certs"
IDP_ISSUER = "https://idp.example.com/realms/test"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now=None):
        self.now = now or utcnow()

    def __call__(self):
        return self.now

    def advance(self, delta: timedelta):
        self.now = self.now + delta


class IdentityProvider:
    """RSA signer plus a JWKS endpoint served through httpx.MockTransport."""

    def __init__(self, kid: str = "key-1"):
        self.kid = kid
        self.private_keys: Dict[str, str] = {}
        self.published: List[Dict[str, Any]] = []
        self.requests: List[httpx.Request] = []
        self.status_code = 200
        self.payload: Optional[Dict[str, Any]] = None
        self.add_key(kid)

    def add_key(self, kid: str, publish: bool = True) -> None:
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.private_keys[kid] = private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ).decode()
        public_pem = private_key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode()
        public_jwk = jwk.construct(public_pem, "RS256").to_dict()
        public_jwk["kid"] = kid
        public_jwk["use"] = "sig"
        if publish:
            self.published.append(public_jwk)

    def token(self, subject: str = "subject-1", kid: Optional[str] = None, **claims) -> str:
        kid = kid or self.kid
        now = utcnow()
        payload = {
            "sub": subject,
            "iss": IDP_ISSUER,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=5)).timestamp()),
            "preferred_username": f"user-{subject}",
            "email": f"{subject}@example.com",
            "given_name": "Test",
            "family_name": "User",
        }
        payload.update(claims)
        payload = {key: value for key, value in payload.items() if value is not None}
        return jwt.encode(payload, self.private_keys[kid], algorithm="RS256", headers={"kid": kid})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": "unavailable"})
        return httpx.Response(200, json=self.payload if self.payload is not None else {"keys": self.published})

    def client(self, **kwargs) -> JWKSClient:
        kwargs.setdefault("issuer", IDP_ISSUER)
        kwargs.setdefault("circuit_breaker", CircuitBreaker(failure_threshold=5, recovery_timeout=30, name="test-jwks"))
        return JWKSClient(
            JWKS_URL,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)),
            **kwargs,
        )


@pytest.fixture(scope="session")
def shared_identity_provider():
    """Key generation is slow; tests reset the mutable parts."""
    return IdentityProvider()


@pytest.fixture
def identity_provider(shared_identity_provider):
    shared_identity_provider.requests.clear()
    shared_identity_provider.status_code = 200
    shared_identity_provider.payload = None
    shared_identity_provider.published = shared_identity_provider.published[:1]
    return shared_identity_provider


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def directory():
    """Directory with two active accounts, two active applications and one inactive one."""
    directory = InMemoryDirectory()
    for account_id in ("acc-1", "acc-2"):
        directory.accounts[account_id] = Account(
            external_account_id=account_id,
            name=f"Account {account_id}",
            email=f"{account_id}@example.com",
            account_id=account_id,
        )
    for application_id, status in (
        ("app-1", EntityStatus.ACTIVE),
        ("app-2", EntityStatus.ACTIVE),
        ("app-3", EntityStatus.INACTIVE),
    ):
        directory.applications[application_id] = Application(
            external_application_id=application_id,
            name=f"Application {application_id}",
            status=status,
            application_id=application_id,
        )
    return directory


@pytest.fixture
def store():
    return InMemoryRightsStore()


@pytest.fixture
def codec():
    return EntitlementTokenCodec(SIGNING_KEY)


@pytest.fixture
def engine(store, directory, codec, clock):
    return RightsLifecycleEngine(store, directory, codec, clock=clock)


@pytest.fixture
def verification(engine, directory):
    return AccessVerificationService(engine, directory, bulk_concurrency=2)
