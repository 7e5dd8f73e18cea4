"""
JWKS client for the external identity provider.

Keys are cached by kid for a bounded time and a bounded entry count.
An unknown kid forces one refresh. Expired entries are dropped, never
served: if the provider cannot be reached the caller gets
SigningKeyUnavailable rather than a stale key.
"""

import asyncio
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

import httpx
from jose import JWTError, jwt

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException, circuit_breaker_manager
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..errors import ExternalIdentityUnverified, SigningKeyUnavailable

ALGORITHM = "RS256"


class JWKSClient:
    """Fetches, caches and applies the provider's signing keys."""

    def __init__(
        self,
        jwks_url: str,
        *,
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
        cache_ttl: float = 600,
        max_entries: int = 5,
        http_timeout: float = 5.0,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.jwks_url = jwks_url
        self.issuer = issuer
        self.audience = audience
        self.cache_ttl = cache_ttl
        self.max_entries = max(1, max_entries)
        self.metrics = metrics
        self.clock = clock
        self.logger = get_logger("rights.federation.jwks")

        # kid -> (jwk, fetched_at), least recently used first
        self._keys: "OrderedDict[str, Tuple[Dict[str, Any], float]]" = OrderedDict()
        self._lock = asyncio.Lock()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=http_timeout)
        self.circuit_breaker = circuit_breaker or circuit_breaker_manager.get_breaker(
            "idp-jwks",
            failure_threshold=5,
            recovery_timeout=30,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def check_health(self) -> str:
        """Return 'ok' if the key set can be fetched, otherwise 'error'."""
        try:
            await self.refresh()
            return "ok"
        except SigningKeyUnavailable as exc:
            self.logger.error("JWKS health check failed", error=exc.details.get("error"))
            return "error"

    async def verify_token(self, token: str) -> Dict[str, Any]:
        """Verify a provider-issued JWT and return its claims."""
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise ExternalIdentityUnverified("Token header could not be decoded") from exc

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise ExternalIdentityUnverified("Token header missing key id (kid)")

        key_data = await self.get_signing_key(kid)

        try:
            claims = jwt.decode(
                token,
                key_data,
                algorithms=[ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_aud": self.audience is not None},
            )
        except JWTError as exc:
            self.logger.warning("External token rejected", kid=kid, error=str(exc))
            raise ExternalIdentityUnverified("Token verification failed", {"error": str(exc)}) from exc

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise ExternalIdentityUnverified("Token missing subject claim")
        return claims

    async def get_signing_key(self, kid: str) -> Dict[str, Any]:
        """Return the JWK for kid, refreshing once if it is not cached."""
        key_data = self._cached(kid)
        if key_data is not None:
            return key_data

        async with self._lock:
            # Another waiter may have refreshed while we queued on the lock.
            key_data = self._cached(kid)
            if key_data is None:
                await self._refresh_locked(wanted=kid)
                key_data = self._cached(kid)

        if key_data is None:
            self.logger.warning("Signing key not found", kid=kid)
            raise ExternalIdentityUnverified("Signing key not found for token", {"kid": kid})
        return key_data

    async def refresh(self) -> None:
        async with self._lock:
            await self._refresh_locked()

    def clear_cache(self) -> None:
        self._keys.clear()

    def _cached(self, kid: str) -> Optional[Dict[str, Any]]:
        entry = self._keys.get(kid)
        if entry is None:
            return None
        key_data, fetched_at = entry
        if self.clock() - fetched_at >= self.cache_ttl:
            del self._keys[kid]
            return None
        self._keys.move_to_end(kid)
        return key_data

    async def _refresh_locked(self, wanted: Optional[str] = None) -> None:
        try:
            keys = await self.circuit_breaker.call(self._fetch_keys)
        except (httpx.HTTPError, ValueError, CircuitBreakerOpenException) as exc:
            self._record("failure")
            self.logger.error("Failed to fetch JWKS", jwks_url=self.jwks_url, error=str(exc))
            raise SigningKeyUnavailable(details={"jwks_url": self.jwks_url, "error": str(exc)}) from exc

        self._store(keys, wanted)
        self._record("success")
        self.logger.info("JWKS refreshed successfully", keys_count=len(self._keys))

    async def _fetch_keys(self) -> Iterable[Dict[str, Any]]:
        response = await self._client.get(self.jwks_url)
        response.raise_for_status()
        payload = response.json()
        keys = payload.get("keys") if isinstance(payload, dict) else None
        if not isinstance(keys, list):
            raise ValueError("JWKS response missing 'keys' array")
        return keys

    def _store(self, keys: Iterable[Dict[str, Any]], wanted: Optional[str]) -> None:
        fetched_at = self.clock()
        # A fresh key set replaces the old one; rotated-out keys go with it.
        self._keys.clear()
        for key_data in keys:
            kid = key_data.get("kid") if isinstance(key_data, dict) else None
            if isinstance(kid, str) and kid:
                self._keys[kid] = (key_data, fetched_at)
        if wanted in self._keys:
            self._keys.move_to_end(wanted)
        while len(self._keys) > self.max_entries:
            self._keys.popitem(last=False)

    def _record(self, status: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("jwks_refresh_total", status=status)
