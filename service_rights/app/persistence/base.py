"""
Rights store interface.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import List, Optional

from ..rights.models import Right, RightPatch, RightsFilter, RightsStats


class RightsStore(ABC):
    """Durable keyed storage for rights.

    Implementations must enforce (application_id, account_id) uniqueness
    atomically and must return rights with status recomputed for the
    caller-supplied instant, never the raw stored value.
    """

    async def start(self):
        """Open connections. Optional."""

    async def stop(self):
        """Release connections. Optional."""

    async def health_check(self) -> bool:
        return True

    @abstractmethod
    async def get(self, right_id: str, now: datetime) -> Optional[Right]:
        ...

    @abstractmethod
    async def find_by_pair(self, application_id: str, account_id: str, now: datetime) -> Optional[Right]:
        ...

    @abstractmethod
    async def insert(self, right: Right) -> Right:
        """Persist a new right; raises DuplicatePair when the pair is taken."""

    @abstractmethod
    async def update(self, right_id: str, patch: RightPatch) -> Right:
        """Apply a patch; raises RightNotFound."""

    @abstractmethod
    async def delete(self, right_id: str) -> None:
        """Remove a right; raises RightNotFound."""

    @abstractmethod
    async def list(self, rights_filter: RightsFilter) -> List[Right]:
        """Rights matching the filter, newest first."""

    @abstractmethod
    async def list_expiring_within(self, window: timedelta, now: datetime) -> List[Right]:
        """Non-expired rights whose expiry falls inside [now, now + window], soonest first."""

    @abstractmethod
    async def count_for_account(self, account_id: str) -> int:
        ...

    @abstractmethod
    async def count_for_application(self, application_id: str) -> int:
        ...

    @abstractmethod
    async def stats(self, now: datetime) -> RightsStats:
        ...
