"""
Configuration for the Rights service.
"""

from typing import Optional

from pydantic import Field

from shared.config import ServiceConfig


class RightsConfig(ServiceConfig):
    """Rights service configuration, read from RIGHTS_* environment variables."""

    # Storage
    storage_backend: str = Field(default="memory", validation_alias="RIGHTS_STORAGE_BACKEND")

    # Entitlement tokens. Rotating the signing key invalidates every issued token.
    token_signing_key: str = Field(default="change-me", validation_alias="RIGHTS_TOKEN_SIGNING_KEY")
    token_issuer: str = Field(default="rights-service", validation_alias="RIGHTS_TOKEN_ISSUER")
    token_default_validity_days: int = Field(default=365, validation_alias="RIGHTS_TOKEN_DEFAULT_VALIDITY_DAYS")

    # Lifecycle and verification
    expiring_soon_days: int = Field(default=7, validation_alias="RIGHTS_EXPIRING_SOON_DAYS")
    bulk_verify_concurrency: int = Field(default=10, validation_alias="RIGHTS_BULK_VERIFY_CONCURRENCY")

    # Local session tokens
    session_signing_key: str = Field(default="change-me-too", validation_alias="RIGHTS_SESSION_SIGNING_KEY")

    # External identity provider
    jwks_url: str = Field(
        default="http://localhost:8080/realms/master/protocol/openid-connect/certs",
        validation_alias="RIGHTS_JWKS_URL",
    )
    idp_issuer: Optional[str] = Field(default=None, validation_alias="RIGHTS_IDP_ISSUER")
    idp_audience: Optional[str] = Field(default=None, validation_alias="RIGHTS_IDP_AUDIENCE")
    jwks_cache_ttl_seconds: int = Field(default=600, validation_alias="RIGHTS_JWKS_CACHE_TTL_SECONDS")
    jwks_cache_max_entries: int = Field(default=5, validation_alias="RIGHTS_JWKS_CACHE_MAX_ENTRIES")
    jwks_http_timeout: float = Field(default=5.0, validation_alias="RIGHTS_JWKS_HTTP_TIMEOUT")


def get_rights_config(**overrides) -> RightsConfig:
    """Build the Rights service configuration."""
    return RightsConfig(service_name="rights", port=8013, **overrides)
