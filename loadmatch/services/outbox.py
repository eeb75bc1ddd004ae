"""
Outbox Processor
================

Drains ``outbox_events`` in id order.  Each event runs inside its own
SAVEPOINT so one failing handler cannot undo the others.

Retry policy
------------
* success           -> ``DONE``
* failure           -> ``attempts += 1``, error text kept
* attempts >= max   -> ``FAILED`` (left for manual inspection)

Every handler is idempotent, so an event processed twice (crash between
handler and status write) has no additional effect.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from loadmatch.config import settings
from loadmatch.domain.entities import utcnow
from loadmatch.domain.enums import LedgerReason, OutboxKind, OutboxStatus
from loadmatch.infrastructure.models import OutboxEventModel
from loadmatch.infrastructure.push import PushNotifier
from loadmatch.infrastructure.repositories import BidRepository, OutboxRepository
from loadmatch.services.chat import ChatBootstrap
from loadmatch.services.notifications import NotificationDispatcher
from loadmatch.services.rewards import RewardLedger

logger = logging.getLogger(__name__)


class OutboxProcessor:
    def __init__(
        self,
        session: AsyncSession,
        notifier: PushNotifier,
        max_attempts: Optional[int] = None,
    ):
        self.session = session
        self.max_attempts = max_attempts or settings.outbox_max_attempts
        self.outbox = OutboxRepository(session)
        self.bids = BidRepository(session)
        self.rewards = RewardLedger(session)
        self.chat = ChatBootstrap(session)
        self.notifications = NotificationDispatcher(session, notifier)

    async def _handle(self, kind: OutboxKind, bid_id: int, payload: dict) -> None:
        if kind is OutboxKind.SETTLE_REWARD:
            await self.rewards.settle(
                payload["user_id"], bid_id, LedgerReason(payload["reason"])
            )
            return

        bid = await self.bids.get_by_id(bid_id, fresh=True)
        if bid is None:
            logger.info("Bid %s no longer exists, dropping %s", bid_id, kind.value)
            return

        if kind is OutboxKind.BOOTSTRAP_CHAT:
            await self.chat.on_bid_accepted(bid)
        elif kind is OutboxKind.NOTIFY_BID_PLACED:
            await self.notifications.bid_placed(bid)
        elif kind is OutboxKind.NOTIFY_BID_ACCEPTED:
            await self.notifications.bid_accepted(bid)
        elif kind is OutboxKind.NOTIFY_BID_STATUS:
            await self.notifications.bid_status(bid)
        else:
            raise ValueError(f"Unknown outbox event kind: {kind}")

    async def drain(self, limit: Optional[int] = None) -> tuple[int, int]:
        """Process one batch.  Returns ``(done, failed_attempts)``."""
        events = await self.outbox.pending(limit or settings.outbox_batch_size)
        done = failed = 0
        for event in events:
            event_id, kind, bid_id = event.id, OutboxKind(event.kind), event.bid_id
            payload = dict(event.payload or {})
            attempts = event.attempts + 1
            try:
                async with self.session.begin_nested():
                    await self._handle(kind, bid_id, payload)
            except Exception as exc:
                failed += 1
                status = (
                    OutboxStatus.FAILED
                    if attempts >= self.max_attempts
                    else OutboxStatus.PENDING
                )
                logger.exception(
                    "Outbox event %s (%s, bid %s) failed, attempt %d/%d",
                    event_id, kind.value, bid_id, attempts, self.max_attempts,
                )
                values = {"attempts": attempts, "status": status, "last_error": str(exc)[:2000]}
            else:
                done += 1
                values = {"attempts": attempts, "status": OutboxStatus.DONE, "processed_at": utcnow()}
            await self.session.execute(
                update(OutboxEventModel)
                .where(OutboxEventModel.id == event_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        if events:
            logger.info("Outbox batch: %d done, %d failed", done, failed)
        return done, failed
