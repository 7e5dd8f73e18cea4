"""
Unit tests for rights status and permission rules.
"""

from datetime import datetime, timedelta, timezone

import pytest

from service_rights.app.errors import InvalidPermissionSet
from service_rights.app.rights.models import Permission, Right, RightStatus, utcnow
from service_rights.app.rights.status import (
    derive_status,
    ensure_utc,
    is_expiring_soon,
    normalize_permissions,
    with_derived_status,
)


class TestDeriveStatus:
    """Status is recomputed from expires_at relative to now."""

    @pytest.fixture
    def now(self):
        return utcnow()

    def test_no_expiry_keeps_active(self, now):
        assert derive_status(None, RightStatus.ACTIVE, now) == RightStatus.ACTIVE

    def test_past_expiry_is_expired(self, now):
        assert derive_status(now - timedelta(seconds=1), RightStatus.ACTIVE, now) == RightStatus.EXPIRED

    def test_past_expiry_wins_over_inactive(self, now):
        assert derive_status(now - timedelta(days=1), RightStatus.INACTIVE, now) == RightStatus.EXPIRED

    def test_stored_expired_with_future_expiry_reactivates(self, now):
        assert derive_status(now + timedelta(days=1), RightStatus.EXPIRED, now) == RightStatus.ACTIVE

    def test_stored_expired_without_expiry_reactivates(self, now):
        assert derive_status(None, RightStatus.EXPIRED, now) == RightStatus.ACTIVE

    def test_inactive_is_preserved(self, now):
        assert derive_status(now + timedelta(days=1), RightStatus.INACTIVE, now) == RightStatus.INACTIVE

    def test_naive_expiry_treated_as_utc(self):
        now = datetime(2030, 1, 2, tzinfo=timezone.utc)
        assert derive_status(datetime(2030, 1, 1), RightStatus.ACTIVE, now) == RightStatus.EXPIRED

    def test_with_derived_status_returns_same_object_when_unchanged(self, now):
        right = Right("app-1", "acc-1", frozenset({Permission.READ}))
        assert with_derived_status(right, now) is right

    def test_with_derived_status_replaces_status(self, now):
        right = Right("app-1", "acc-1", frozenset({Permission.READ}), expires_at=now - timedelta(hours=1))
        assert with_derived_status(right, now).status == RightStatus.EXPIRED


class TestExpiringSoon:

    def test_within_window(self):
        now = utcnow()
        right = Right("app-1", "acc-1", expires_at=now + timedelta(days=3))
        assert is_expiring_soon(right, now, timedelta(days=7))

    def test_outside_window(self):
        now = utcnow()
        right = Right("app-1", "acc-1", expires_at=now + timedelta(days=30))
        assert not is_expiring_soon(right, now, timedelta(days=7))

    def test_expired_and_inactive_are_not_expiring_soon(self):
        now = utcnow()
        expired = Right("app-1", "acc-1", expires_at=now - timedelta(days=1))
        inactive = Right("app-1", "acc-1", expires_at=now + timedelta(days=1), status=RightStatus.INACTIVE)
        assert not is_expiring_soon(expired, now, timedelta(days=7))
        assert not is_expiring_soon(inactive, now, timedelta(days=7))


class TestNormalizePermissions:

    def test_canonical_set(self):
        assert normalize_permissions(["read", "write", "read"]) == frozenset({Permission.READ, Permission.WRITE})

    def test_accepts_enum_members(self):
        assert normalize_permissions([Permission.OWNER]) == frozenset({Permission.OWNER})

    def test_unknown_names_are_reported(self):
        with pytest.raises(InvalidPermissionSet) as exc_info:
            normalize_permissions(["read", "superuser", "Delete"])
        assert exc_info.value.details["invalid"] == ["Delete", "superuser"]
        assert exc_info.value.status_code == 422

    def test_empty_set_rejected_by_default(self):
        with pytest.raises(InvalidPermissionSet):
            normalize_permissions([])

    def test_empty_set_allowed_when_requested(self):
        assert normalize_permissions([], allow_empty=True) == frozenset()

    def test_ensure_utc_converts_offsets(self):
        value = datetime(2030, 1, 1, 12, tzinfo=timezone(timedelta(hours=2)))
        assert ensure_utc(value) == datetime(2030, 1, 1, 10, tzinfo=timezone.utc)
