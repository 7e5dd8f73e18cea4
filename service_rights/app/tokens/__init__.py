"""
Entitlement token codec.

Signing key is process-wide configuration loaded once at startup.
"""

from .codec import EntitlementPayload, EntitlementTokenCodec

__all__ = ["EntitlementPayload", "EntitlementTokenCodec"]
