"""
In-memory rights store for local runs and tests.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from shared.logging import get_logger
from ..errors import DuplicatePair, RightNotFound
from ..rights.models import Right, RightPatch, RightsFilter, RightsStats, RightStatus
from ..rights.status import ensure_utc, with_derived_status
from .base import RightsStore


class InMemoryRightsStore(RightsStore):
    """Dictionary-backed store; a lock makes the pair check and insert atomic."""

    def __init__(self):
        self.logger = get_logger("rights.persistence.memory")
        self._rights: Dict[str, Right] = {}
        self._pairs: Dict[Tuple[str, str], str] = {}
        self._lock = asyncio.Lock()

    async def get(self, right_id: str, now: datetime) -> Optional[Right]:
        right = self._rights.get(right_id)
        return with_derived_status(right, now) if right else None

    async def find_by_pair(self, application_id: str, account_id: str, now: datetime) -> Optional[Right]:
        right_id = self._pairs.get((application_id, account_id))
        if right_id is None:
            return None
        return await self.get(right_id, now)

    async def insert(self, right: Right) -> Right:
        pair = (right.application_id, right.account_id)
        async with self._lock:
            if pair in self._pairs:
                raise DuplicatePair(details={
                    "application_id": right.application_id,
                    "account_id": right.account_id,
                })
            self._rights[right.right_id] = right
            self._pairs[pair] = right.right_id

        self.logger.info("Right inserted", right_id=right.right_id)
        return right

    async def update(self, right_id: str, patch: RightPatch) -> Right:
        async with self._lock:
            existing = self._rights.get(right_id)
            if existing is None:
                raise RightNotFound(details={"id": right_id})
            updated = replace(
                existing,
                permissions=patch.permissions,
                expires_at=patch.expires_at,
                entitlement_token=patch.entitlement_token,
                status=patch.status,
                updated_at=patch.updated_at,
            )
            self._rights[right_id] = updated
        return updated

    async def delete(self, right_id: str) -> None:
        async with self._lock:
            right = self._rights.pop(right_id, None)
            if right is None:
                raise RightNotFound(details={"id": right_id})
            self._pairs.pop((right.application_id, right.account_id), None)

    async def list(self, rights_filter: RightsFilter) -> List[Right]:
        rights = [
            with_derived_status(right, rights_filter.status_as_of)
            for right in self._rights.values()
            if (rights_filter.application_id is None or right.application_id == rights_filter.application_id)
            and (rights_filter.account_id is None or right.account_id == rights_filter.account_id)
        ]
        rights.sort(key=lambda r: r.created_at, reverse=True)
        return rights

    async def list_expiring_within(self, window: timedelta, now: datetime) -> List[Right]:
        horizon = now + window
        rights = [
            derived
            for derived in (with_derived_status(right, now) for right in self._rights.values())
            if derived.status == RightStatus.ACTIVE
            and derived.expires_at is not None
            and now <= ensure_utc(derived.expires_at) <= horizon
        ]
        rights.sort(key=lambda r: r.expires_at)
        return rights

    async def count_for_account(self, account_id: str) -> int:
        return sum(1 for right in self._rights.values() if right.account_id == account_id)

    async def count_for_application(self, application_id: str) -> int:
        return sum(1 for right in self._rights.values() if right.application_id == application_id)

    async def stats(self, now: datetime) -> RightsStats:
        stats = RightsStats()
        for right in self._rights.values():
            status = with_derived_status(right, now).status
            stats.total += 1
            if status == RightStatus.ACTIVE:
                stats.active += 1
            elif status == RightStatus.EXPIRED:
                stats.expired += 1
            else:
                stats.inactive += 1
            stats.by_application[right.application_id] = stats.by_application.get(right.application_id, 0) + 1
        return stats
