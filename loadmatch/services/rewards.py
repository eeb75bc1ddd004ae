"""BlCoins settlement for bid outcomes."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from loadmatch.config import settings
from loadmatch.domain.enums import LedgerReason
from loadmatch.infrastructure.repositories import LedgerRepository, UserRepository

logger = logging.getLogger(__name__)


class RewardLedger:
    """
    Credits the bidder on acceptance and debits on rejection.

    A ledger row keyed on ``(bid_id, reason)`` is written before the
    balance moves, so replaying a settlement never double-counts.
    """

    def __init__(self, session: AsyncSession, increment: Optional[int] = None):
        self.session = session
        self.increment = increment if increment is not None else settings.reward_increment
        self.ledger = LedgerRepository(session)
        self.users = UserRepository(session)

    def delta_for(self, reason: LedgerReason) -> int:
        if reason is LedgerReason.BID_ACCEPTED:
            return self.increment
        return -self.increment

    async def settle(self, user_id: int, bid_id: int, reason: LedgerReason) -> bool:
        """Returns False when this bid was already settled for *reason*."""
        reason = LedgerReason(reason)
        delta = self.delta_for(reason)
        if not await self.ledger.record(user_id, bid_id, delta, reason):
            logger.info("Bid %s already settled (%s)", bid_id, reason.value)
            return False
        await self.users.add_coins(user_id, delta)
        logger.info("User %s %+d BlCoins for bid %s", user_id, delta, bid_id)
        return True
