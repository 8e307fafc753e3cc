"""
Per-user rolling search quotas.

Two gates exist with independent counters and reset clocks: a small daily
allowance checked before a search request is accepted, and a weekly ceiling
checked inside the workflow.

A search holds a slot in each gate from the moment it is admitted; the slot
is given back if the search does not complete, so only completed searches
count and concurrent searches can never overrun a limit.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from pricewatch.config import settings
from pricewatch.core.database import Database
from pricewatch.core.errors import UserLimitExceeded
from pricewatch.models import UserSearchQuota

logger = logging.getLogger(__name__)


class UserQuotaGate:
    """
    Checks and counts a user's searches against ``limit`` per ``window``.

    The window starts at the first counted search; once its reset time has
    passed, the counter is zeroed before anything else happens.
    """

    def __init__(
        self,
        database: Database,
        name: str,
        limit: int,
        window: timedelta,
        denial_message: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.database = database
        self.name = name
        self.limit = limit
        self.window = window
        self.denial_message = denial_message or f"You have exceeded your search limit of {limit} queries."
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _reset_if_expired(self, user_id: str, now: datetime):
        if await self.database.reset_expired_search_quota(user_id, self.name, now):
            logger.info(f"🔄 Reset {self.name} search quota for user {user_id}")

    def _denied(self, quota: UserSearchQuota) -> UserLimitExceeded:
        logger.info(f"🚫 User {quota.user_id} hit the {self.name} search limit ({quota.search_count}/{self.limit})")
        return UserLimitExceeded(self.limit, quota.resets_at, self.denial_message)

    async def check(self, user_id: str) -> UserSearchQuota:
        """
        Read-only admission check; does not take a slot.

        Raises:
            UserLimitExceeded: If the user has no searches left in this window
        """
        await self._reset_if_expired(user_id, self._clock())

        quota = await self.database.get_search_quota(user_id, self.name)
        if quota.search_count >= self.limit:
            raise self._denied(quota)
        return quota

    async def reserve(self, user_id: str) -> UserSearchQuota:
        """
        Take one search from the current window.

        Raises:
            UserLimitExceeded: If the window has no search left
        """
        now = self._clock()
        await self._reset_if_expired(user_id, now)

        quota = None
        if self.limit > 0:
            quota = await self.database.reserve_search_quota(user_id, self.name, self.limit, now + self.window)
        if quota is None:
            raise self._denied(await self.database.get_search_quota(user_id, self.name))
        return quota

    async def release(self, user_id: str):
        """Give back a search taken by ``reserve`` that did not complete."""
        await self.database.release_search_quota(user_id, self.name)


def create_request_gate(database: Database) -> UserQuotaGate:
    """Daily allowance enforced before a search request is accepted."""
    return UserQuotaGate(
        database,
        name="daily",
        limit=settings.SEARCH_LIMIT,
        window=timedelta(hours=settings.SEARCH_LIMIT_WINDOW_HOURS),
    )


def create_workflow_gate(database: Database) -> UserQuotaGate:
    """Weekly ceiling enforced by the workflow's first stage."""
    return UserQuotaGate(
        database,
        name="weekly",
        limit=settings.WEEKLY_SEARCH_LIMIT,
        window=timedelta(days=settings.WEEKLY_SEARCH_WINDOW_DAYS),
        denial_message="Search limit exceeded. Please wait for weekly reset.",
    )
