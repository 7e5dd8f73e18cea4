"""
Access verification service.

Answers "can account A do permission set P on application B right now?".
Checks run in a fixed order and the verdict names the first one that fails:

1. the application id resolves
2. a right exists for the (application, account) pair
3. the application is active
4. the right is neither expired nor inactive
5. the required permissions are a subset of the held ones
"""

import asyncio
import time
from typing import AsyncIterator, Iterable, List, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..directory.base import Directory
from ..directory.models import ApplicationResponse, EntityStatus
from ..errors import RightsError
from ..rights.lifecycle import RightsLifecycleEngine
from ..rights.models import Right, RightStatus
from ..rights.status import normalize_permissions
from .models import (
    VERDICT_MESSAGES,
    ApplicationAccess,
    BulkVerdict,
    BulkVerifyItem,
    Verdict,
    VerdictReason,
)


def _sorted_permissions(permissions) -> list:
    return sorted(permissions, key=lambda p: p.value)


class AccessVerificationService:
    """Single and bulk access checks over the rights store."""

    def __init__(
        self,
        engine: RightsLifecycleEngine,
        directory: Directory,
        bulk_concurrency: int = 10,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.engine = engine
        self.directory = directory
        self.bulk_concurrency = max(1, bulk_concurrency)
        self.metrics = metrics
        self.logger = get_logger("rights.verification")

    async def verify(self, account_id: str, application_id: str, required_permissions: Iterable) -> Verdict:
        """Run the ordered checks; raises InvalidPermissionSet for unknown permission names."""
        start_time = time.time()
        required = normalize_permissions(required_permissions, allow_empty=True)
        required_names = sorted(p.value for p in required)

        def deny(reason: VerdictReason, right: Optional[Right] = None, **extra) -> Verdict:
            return Verdict(
                allowed=False,
                reason=reason.value,
                message=VERDICT_MESSAGES[reason],
                account_id=account_id,
                application_id=application_id,
                required_permissions=required_names,
                effective_permissions=_sorted_permissions(right.permissions) if right else None,
                expires_at=right.expires_at if right else None,
                **extra,
            )

        application = await self.directory.find_application(application_id)
        right = await self.engine.find(application_id, account_id) if application else None

        if application is None:
            verdict = deny(VerdictReason.APPLICATION_NOT_FOUND)
        elif right is None:
            verdict = deny(VerdictReason.NO_RIGHTS_FOUND)
        elif application.status != EntityStatus.ACTIVE:
            verdict = deny(VerdictReason.APPLICATION_INACTIVE, right)
        elif right.status == RightStatus.EXPIRED:
            verdict = deny(VerdictReason.RIGHTS_EXPIRED, right)
        elif right.status == RightStatus.INACTIVE:
            verdict = deny(VerdictReason.RIGHTS_INACTIVE, right)
        elif not required <= right.permissions:
            verdict = deny(
                VerdictReason.INSUFFICIENT_PERMISSIONS,
                right,
                missing_permissions=_sorted_permissions(required - right.permissions),
            )
        else:
            verdict = Verdict(
                allowed=True,
                reason=VerdictReason.ACCESS_GRANTED.value,
                message=VERDICT_MESSAGES[VerdictReason.ACCESS_GRANTED],
                account_id=account_id,
                application_id=application_id,
                required_permissions=required_names,
                effective_permissions=_sorted_permissions(right.permissions),
                expires_at=right.expires_at,
            )

        self._record(verdict, time.time() - start_time)
        self.logger.info(
            "Access verified",
            account_id=account_id,
            application_id=application_id,
            allowed=verdict.allowed,
            reason=verdict.reason,
        )
        return verdict

    async def bulk_verify(self, account_id: str, items: List[BulkVerifyItem]) -> BulkVerdict:
        """Verify items concurrently; a typed failure on one item never aborts the others."""
        semaphore = asyncio.Semaphore(self.bulk_concurrency)

        async def run(item: BulkVerifyItem) -> Verdict:
            async with semaphore:
                try:
                    return await self.verify(account_id, item.application_id, item.required_permissions)
                except RightsError as e:
                    return Verdict(
                        allowed=False,
                        reason=e.code,
                        message=e.message,
                        account_id=account_id,
                        application_id=item.application_id,
                        required_permissions=list(item.required_permissions),
                    )

        # gather preserves input order, so results line up with items by index
        results = await asyncio.gather(*(run(item) for item in items))
        allowed = sum(1 for verdict in results if verdict.allowed)

        self.logger.info(
            "Bulk verification completed",
            account_id=account_id,
            total=len(results),
            allowed=allowed,
            denied=len(results) - allowed,
        )
        return BulkVerdict(
            results=list(results),
            total=len(results),
            allowed=allowed,
            denied=len(results) - allowed,
        )

    async def list_applications_for(self, account_id: str) -> AsyncIterator[ApplicationAccess]:
        """Active applications the account holds a live right for.

        Each call returns a fresh generator; iterate again by calling again.
        """
        for right in await self.engine.list(account_id=account_id):
            if right.status != RightStatus.ACTIVE:
                continue
            application = await self.directory.find_application(right.application_id)
            if application is None or application.status != EntityStatus.ACTIVE:
                continue
            yield ApplicationAccess(
                right_id=right.right_id,
                application=ApplicationResponse.from_application(application),
                permissions=_sorted_permissions(right.permissions),
                expires_at=right.expires_at,
                expiring_soon=self.engine.is_expiring_soon(right),
            )

    def _record(self, verdict: Verdict, duration: float) -> None:
        if not self.metrics:
            return
        self.metrics.increment_counter(
            "rights_verifications_total",
            decision="allow" if verdict.allowed else "deny",
        )
        histogram = self.metrics.get_metric("rights_verification_duration_seconds")
        if histogram is not None:
            histogram.observe(duration)
