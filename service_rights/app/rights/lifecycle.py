"""
Rights lifecycle engine.

Grant, amend and revoke are the only writes. Each write that touches
permissions or expiry re-mints the entitlement token before persisting,
so the stored token always encodes the stored fields.
"""

from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from shared.errors import ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..directory.base import Directory
from ..errors import (
    AccountNotFound,
    ApplicationNotFound,
    DuplicatePair,
    RightNotFound,
    RightsStillReferenced,
)
from ..persistence.base import RightsStore
from ..tokens.codec import EntitlementPayload, EntitlementTokenCodec
from .models import Right, RightPatch, RightsFilter, RightsStats, RightStatus, utcnow
from .status import (
    derive_status,
    ensure_utc,
    is_expiring_soon,
    normalize_permissions,
    status_to_store,
    with_derived_status,
)

# Marks an amend that leaves expires_at untouched; None means "clear the expiry".
UNSET = object()


class RightsLifecycleEngine:
    """Creates, amends and revokes rights and derives their status."""

    def __init__(
        self,
        store: RightsStore,
        directory: Directory,
        codec: EntitlementTokenCodec,
        expiring_soon_window: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = utcnow,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.directory = directory
        self.codec = codec
        self.expiring_soon_window = expiring_soon_window
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("rights.lifecycle")

    async def grant(
        self,
        application_id: str,
        account_id: str,
        permissions: Iterable,
        expires_at: Optional[datetime] = None,
    ) -> Right:
        """Create a right; the permission set must be non-empty."""
        return await self._create(application_id, account_id, permissions, expires_at, allow_empty=False)

    async def provision(self, application_id: str, account_id: str) -> Right:
        """Create a placeholder right with no permissions, for auto-provisioned callers."""
        return await self._create(application_id, account_id, (), None, allow_empty=True)

    async def _create(
        self,
        application_id: str,
        account_id: str,
        permissions: Iterable,
        expires_at: Optional[datetime],
        allow_empty: bool,
    ) -> Right:
        now = self.clock()

        if await self.directory.find_application(application_id) is None:
            raise ApplicationNotFound(details={"application_id": application_id})
        if await self.directory.find_account(account_id) is None:
            raise AccountNotFound(details={"account_id": account_id})

        permission_set = normalize_permissions(permissions, allow_empty=allow_empty)

        if await self.store.find_by_pair(application_id, account_id, now) is not None:
            raise DuplicatePair(details={"application_id": application_id, "account_id": account_id})

        expires_at = ensure_utc(expires_at)
        token = self.codec.encode(
            EntitlementPayload(application_id, account_id, permission_set, expires_at),
            now=now,
        )
        right = await self.store.insert(Right(
            application_id=application_id,
            account_id=account_id,
            permissions=permission_set,
            expires_at=expires_at,
            entitlement_token=token,
            status=derive_status(expires_at, RightStatus.ACTIVE, now),
            created_at=now,
            updated_at=now,
        ))

        self._record("grant" if not allow_empty else "provision")
        self.logger.info(
            "Rights granted",
            right_id=right.right_id,
            application_id=application_id,
            account_id=account_id,
            permissions=sorted(p.value for p in permission_set),
            status=right.status.value,
        )
        return right

    async def amend(
        self,
        right_id: str,
        permissions: Optional[Iterable] = None,
        expires_at=UNSET,
        status: Optional[RightStatus] = None,
    ) -> Right:
        """Change permissions, expiry and/or the administrative status of a right."""
        now = self.clock()
        # Always work from a fresh pre-image, never a caller-held copy.
        current = await self.store.get(right_id, now)
        if current is None:
            raise RightNotFound(details={"id": right_id})

        new_permissions = current.permissions if permissions is None else normalize_permissions(permissions)
        new_expires_at = current.expires_at if expires_at is UNSET else ensure_utc(expires_at)

        if status == RightStatus.EXPIRED:
            raise ValidationError("Expired status is derived from expires_at and cannot be set")
        # An administrative deactivation is only lifted by an explicit status change.
        requested_status = status or current.administrative_status
        new_status = status_to_store(new_expires_at, requested_status, now)

        token = current.entitlement_token
        if new_permissions != current.permissions or new_expires_at != current.expires_at:
            token = self.codec.encode(
                EntitlementPayload(current.application_id, current.account_id, new_permissions, new_expires_at),
                now=now,
            )

        updated = await self.store.update(right_id, RightPatch(
            permissions=new_permissions,
            expires_at=new_expires_at,
            entitlement_token=token,
            status=new_status,
            updated_at=now,
        ))

        if current.status == RightStatus.EXPIRED and new_status == RightStatus.ACTIVE:
            self.logger.info("Rights reactivated", right_id=right_id, expires_at=str(new_expires_at))

        self._record("amend")
        self.logger.info(
            "Rights amended",
            right_id=right_id,
            permissions=sorted(p.value for p in new_permissions),
            status=new_status.value,
            token_reissued=token != current.entitlement_token,
        )
        return with_derived_status(updated, now)

    async def revoke(self, right_id: str) -> None:
        """Delete a right unconditionally."""
        await self.store.delete(right_id)
        self._record("revoke")
        self.logger.info("Rights revoked", right_id=right_id)

    async def get(self, right_id: str) -> Right:
        right = await self.store.get(right_id, self.clock())
        if right is None:
            raise RightNotFound(details={"id": right_id})
        return right

    async def find(self, application_id: str, account_id: str) -> Optional[Right]:
        return await self.store.find_by_pair(application_id, account_id, self.clock())

    async def list(self, application_id: Optional[str] = None, account_id: Optional[str] = None) -> List[Right]:
        return await self.store.list(RightsFilter(
            status_as_of=self.clock(),
            application_id=application_id,
            account_id=account_id,
        ))

    async def list_expiring(self, window: Optional[timedelta] = None) -> List[Right]:
        window = self.expiring_soon_window if window is None else window
        return await self.store.list_expiring_within(window, self.clock())

    async def stats(self) -> RightsStats:
        return await self.store.stats(self.clock())

    def is_expiring_soon(self, right: Right) -> bool:
        return is_expiring_soon(right, self.clock(), self.expiring_soon_window)

    async def ensure_account_removable(self, account_id: str) -> None:
        """Deletion precondition for the account registry."""
        count = await self.store.count_for_account(account_id)
        if count:
            raise RightsStillReferenced(
                f"Account is referenced by {count} rights record(s)",
                {"account_id": account_id, "rights": count},
            )

    async def ensure_application_removable(self, application_id: str) -> None:
        """Deletion precondition for the application registry."""
        count = await self.store.count_for_application(application_id)
        if count:
            raise RightsStillReferenced(
                f"Application is referenced by {count} rights record(s)",
                {"application_id": application_id, "rights": count},
            )

    def _record(self, operation: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("rights_mutations_total", operation=operation)
