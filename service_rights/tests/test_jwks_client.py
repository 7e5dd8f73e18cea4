"""
Unit tests for the JWKS client.
"""

from datetime import timedelta

import httpx
import pytest
from jose import jwt

from shared.circuit_breaker import CircuitBreaker
from service_rights.app.errors import ExternalIdentityUnverified, SigningKeyUnavailable
from service_rights.app.federation.jwks import JWKSClient
from service_rights.app.rights.models import utcnow

from conftest import IDP_ISSUER, JWKS_URL


class MonotonicStub:

    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value


class TestJWKSClient:
    """Test cases for JWKSClient."""

    @pytest.fixture
    def ticks(self):
        return MonotonicStub()

    @pytest.fixture
    def client(self, identity_provider, ticks):
        return identity_provider.client(cache_ttl=600, clock=ticks)

    @pytest.mark.asyncio
    async def test_verify_token(self, identity_provider, client):
        claims = await client.verify_token(identity_provider.token("subject-1"))

        assert claims["sub"] == "subject-1"
        assert claims["email"] == "subject-1@example.com"
        assert len(identity_provider.requests) == 1
        assert str(identity_provider.requests[0].url) == JWKS_URL

    @pytest.mark.asyncio
    async def test_keys_cached_within_ttl(self, identity_provider, client, ticks):
        await client.verify_token(identity_provider.token())
        ticks.value += 599
        await client.verify_token(identity_provider.token())

        assert len(identity_provider.requests) == 1

    @pytest.mark.asyncio
    async def test_keys_refetched_after_ttl(self, identity_provider, client, ticks):
        await client.verify_token(identity_provider.token())
        ticks.value += 600
        await client.verify_token(identity_provider.token())

        assert len(identity_provider.requests) == 2

    @pytest.mark.asyncio
    async def test_stale_keys_not_served_when_fetch_fails(self, identity_provider, client, ticks):
        await client.verify_token(identity_provider.token())
        ticks.value += 601
        identity_provider.status_code = 503

        with pytest.raises(SigningKeyUnavailable):
            await client.verify_token(identity_provider.token())

    @pytest.mark.asyncio
    async def test_unknown_kid_forces_single_refresh(self, identity_provider, client):
        await client.verify_token(identity_provider.token())
        identity_provider.add_key("key-rotated")

        claims = await client.verify_token(identity_provider.token(kid="key-rotated"))

        assert claims["sub"] == "subject-1"
        assert len(identity_provider.requests) == 2

    @pytest.mark.asyncio
    async def test_unpublished_kid_rejected(self, identity_provider, client):
        identity_provider.add_key("key-unpublished", publish=False)

        with pytest.raises(ExternalIdentityUnverified):
            await client.verify_token(identity_provider.token(kid="key-unpublished"))
        assert len(identity_provider.requests) == 1

    @pytest.mark.asyncio
    async def test_bad_signature(self, identity_provider, client):
        identity_provider.add_key("key-impostor", publish=False)
        token = jwt.encode(
            {"sub": "subject-1", "iss": IDP_ISSUER},
            identity_provider.private_keys["key-impostor"],
            algorithm="RS256",
            headers={"kid": "key-1"},
        )

        with pytest.raises(ExternalIdentityUnverified):
            await client.verify_token(token)

    @pytest.mark.asyncio
    async def test_expired_token(self, identity_provider, client):
        past = utcnow() - timedelta(hours=1)
        token = identity_provider.token(exp=int(past.timestamp()), iat=int(past.timestamp()) - 60)

        with pytest.raises(ExternalIdentityUnverified):
            await client.verify_token(token)

    @pytest.mark.asyncio
    async def test_missing_subject(self, identity_provider, client):
        with pytest.raises(ExternalIdentityUnverified):
            await client.verify_token(identity_provider.token(sub=None))

    @pytest.mark.asyncio
    async def test_issuer_checked(self, identity_provider, client):
        with pytest.raises(ExternalIdentityUnverified):
            await client.verify_token(identity_provider.token(iss="https://evil.example.com"))

    @pytest.mark.asyncio
    async def test_audience_checked_when_configured(self, identity_provider):
        client = identity_provider.client(audience="rights-api")

        assert (await client.verify_token(identity_provider.token(aud="rights-api")))["aud"] == "rights-api"
        with pytest.raises(ExternalIdentityUnverified):
            await client.verify_token(identity_provider.token(aud="other-api"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
    async def test_undecodable_header(self, client, token):
        with pytest.raises(ExternalIdentityUnverified):
            await client.verify_token(token)

    @pytest.mark.asyncio
    async def test_missing_kid(self, identity_provider, client):
        token = jwt.encode({"sub": "subject-1"}, identity_provider.private_keys["key-1"], algorithm="RS256")

        with pytest.raises(ExternalIdentityUnverified):
            await client.verify_token(token)
        assert identity_provider.requests == []

    @pytest.mark.asyncio
    async def test_http_error(self, identity_provider, client):
        identity_provider.status_code = 500

        with pytest.raises(SigningKeyUnavailable) as exc_info:
            await client.get_signing_key("key-1")
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_missing_keys_array(self, identity_provider, client):
        identity_provider.payload = {"issuer": IDP_ISSUER}

        with pytest.raises(SigningKeyUnavailable):
            await client.get_signing_key("key-1")

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = JWKSClient(
            JWKS_URL,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            circuit_breaker=CircuitBreaker(name="test-network"),
        )

        with pytest.raises(SigningKeyUnavailable):
            await client.get_signing_key("key-1")

    @pytest.mark.asyncio
    async def test_open_circuit_breaker(self, identity_provider):
        client = identity_provider.client(
            circuit_breaker=CircuitBreaker(failure_threshold=1, recovery_timeout=60, name="test-open"),
        )
        identity_provider.status_code = 500

        with pytest.raises(SigningKeyUnavailable):
            await client.get_signing_key("key-1")
        with pytest.raises(SigningKeyUnavailable):
            await client.get_signing_key("key-1")

        assert len(identity_provider.requests) == 1
        assert client.circuit_breaker.is_open()

    @pytest.mark.asyncio
    async def test_max_entries(self, identity_provider, ticks):
        keys = [dict(identity_provider.published[0], kid=f"kid-{i}") for i in range(7)]
        identity_provider.payload = {"keys": keys}
        client = identity_provider.client(max_entries=5, clock=ticks)

        await client.get_signing_key("kid-0")

        assert len(client._keys) == 5
        assert "kid-0" in client._keys

    @pytest.mark.asyncio
    async def test_health(self, identity_provider, client):
        assert await client.check_health() == "ok"
        identity_provider.status_code = 502
        assert await client.check_health() == "error"
