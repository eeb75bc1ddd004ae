"""
Bid notifications
=================

Builds the push payload for each bid transition and hands it to a
``PushNotifier``.  Invoked only by the outbox processor, after the
transition has committed.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from loadmatch.domain.entities import utcnow
from loadmatch.domain.enums import BidStatus, BidType
from loadmatch.infrastructure.models import BidModel, UserModel
from loadmatch.infrastructure.push import PushNotifier
from loadmatch.infrastructure.repositories import UserRepository

logger = logging.getLogger(__name__)

BID_UPDATES_CHANNEL = "bid-updates"


def _listing_word(bid: BidModel) -> str:
    return "truck" if bid.bid_type is BidType.LOAD_BID else "load"


def _tokens(user: Optional[UserModel]) -> list[str]:
    if user is None:
        return []
    tokens = []
    for device in user.device_tokens or []:
        token = device.get("token") if isinstance(device, dict) else device
        if token:
            tokens.append(token)
    return tokens


def _base_data(bid: BidModel, kind: str, sender: Optional[UserModel]) -> dict[str, Any]:
    return {
        "bidId": str(bid.id),
        "type": kind,
        "click_action": "BID_NOTIFICATION",
        "loadId": str(bid.load_id),
        "senderId": str(sender.id) if sender else "",
        "senderName": sender.name if sender else "",
        "timestamp": utcnow().isoformat(),
    }


class NotificationDispatcher:
    def __init__(self, session: AsyncSession, notifier: PushNotifier):
        self.users = UserRepository(session)
        self.notifier = notifier

    async def _deliver(
        self,
        recipient_id: int,
        title: str,
        body: str,
        data: dict[str, Any],
        channel_id: str = "chat-messages",
    ) -> int:
        recipient = await self.users.get_by_id(recipient_id)
        tokens = _tokens(recipient)
        if not tokens:
            logger.info("No device tokens for user %s, skipping %r", recipient_id, title)
            return 0
        return await self.notifier.send(tokens, title, body, data, channel_id)

    async def bid_placed(self, bid: BidModel) -> int:
        sender = await self.users.get_by_id(bid.bid_by)
        name = sender.name if sender else "Someone"
        body = (
            f"{name} has placed a bid of ₹{bid.bidded_total:g} for your "
            f"{_listing_word(bid)} from {bid.source_place} to {bid.destination_place}"
        )
        data = _base_data(bid, "BID_PLACED", sender)
        return await self._deliver(bid.offered_to, "New Bid Placed! 📦", body, data)

    async def bid_accepted(self, bid: BidModel) -> int:
        sender = await self.users.get_by_id(bid.offered_to)
        name = sender.name if sender else "The owner"
        body = (
            f"{name} has accepted your bid of ₹{bid.bidded_total:g} for the "
            f"{_listing_word(bid)} from {bid.source_place} to {bid.destination_place}"
        )
        data = _base_data(bid, "BID_ACCEPTED", sender)
        data.update(
            messageType="BID_ACCEPTED",
            materialType=bid.material_type.value,
            source=bid.source_place,
            destination=bid.destination_place,
            amount=f"{bid.bidded_total:g}",
        )
        return await self._deliver(
            bid.bid_by,
            "🎉 Congratulations! Bid Accepted",
            body,
            data,
            channel_id=BID_UPDATES_CHANNEL,
        )

    async def bid_status(self, bid: BidModel) -> int:
        sender = await self.users.get_by_id(bid.offered_to)
        route = (
            f"Your bid of ₹{bid.bidded_total:g} for the {_listing_word(bid)} "
            f"from {bid.source_place} to {bid.destination_place}"
        )
        if bid.status is BidStatus.ACCEPTED:
            title, body = "🎉 Bid Accepted!", f"{route} has been accepted!"
        else:
            title, body = "❌ Bid Rejected", f"{route} was not accepted."
        data = _base_data(bid, "BID_STATUS_UPDATE", sender)
        data.update(status=bid.status.value, materialType=bid.material_type.value)
        return await self._deliver(bid.bid_by, title, body, data)
