"""
Pure status and permission rules for rights.

Status is a derived fact: every read and write runs it through
derive_status rather than trusting what storage holds.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import FrozenSet, Iterable, Optional

from ..errors import InvalidPermissionSet
from .models import Permission, Right, RightStatus


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_past(expires_at: Optional[datetime], now: datetime) -> bool:
    return expires_at is not None and ensure_utc(expires_at) < now


def derive_status(expires_at: Optional[datetime], stored: RightStatus, now: datetime) -> RightStatus:
    """Status relative to ``now``.

    Past expiry always wins. A stored ``expired`` whose expiry is no longer
    in the past transitions back to ``active``; ``inactive`` is kept.
    """
    if is_past(expires_at, now):
        return RightStatus.EXPIRED
    if stored == RightStatus.EXPIRED:
        return RightStatus.ACTIVE
    return stored


def with_derived_status(right: Right, now: datetime) -> Right:
    stored = right.administrative_status
    status = derive_status(right.expires_at, stored, now)
    if status == right.status and right.stored_status is None:
        return right
    return replace(right, status=status, stored_status=stored)


def status_to_store(expires_at: Optional[datetime], requested: RightStatus, now: datetime) -> RightStatus:
    """Status to persist: ``inactive`` survives any expiry, everything else is derived."""
    if requested == RightStatus.INACTIVE:
        return requested
    return derive_status(expires_at, requested, now)


def is_expiring_soon(right: Right, now: datetime, window: timedelta) -> bool:
    """Read-time bucket over active rights; never persisted."""
    if right.expires_at is None:
        return False
    if derive_status(right.expires_at, right.status, now) != RightStatus.ACTIVE:
        return False
    return ensure_utc(right.expires_at) <= now + window


def normalize_permissions(values: Iterable, allow_empty: bool = False) -> FrozenSet[Permission]:
    """Validate permission names into a canonical set."""
    permissions = set()
    invalid = set()
    for value in values:
        if isinstance(value, Permission):
            permissions.add(value)
            continue
        try:
            permissions.add(Permission(value))
        except ValueError:
            invalid.add(str(value))

    if invalid:
        raise InvalidPermissionSet.for_values(invalid)
    if not permissions and not allow_empty:
        raise InvalidPermissionSet("Permission set must not be empty")
    return frozenset(permissions)
