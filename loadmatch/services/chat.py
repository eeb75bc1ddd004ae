"""Chat bootstrap: one conversation per user pair, seeded on acceptance."""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loadmatch.domain.enums import MessageType
from loadmatch.infrastructure.models import BidModel, ChatModel, TruckModel
from loadmatch.infrastructure.repositories import ChatRepository, TruckRepository

logger = logging.getLogger(__name__)


def _fmt_amount(value: float) -> str:
    return f"{value:,.0f}" if float(value).is_integer() else f"{value:,.2f}"


def summarize_bid(bid: BidModel, truck: TruckModel | None) -> str:
    """Human-readable line describing an accepted bid."""
    parts = [f"Material: {bid.material_type.value}"]
    if bid.weight is not None:
        parts.append(f"Weight: {bid.weight:g} t")
    if truck is not None:
        parts.append(
            f"Vehicle: {truck.truck_number} ({truck.truck_type.value}, "
            f"{truck.vehicle_body_type.value})"
        )
    parts.append(f"Amount: ₹{_fmt_amount(bid.bidded_total)}")
    parts.append(f"Route: {bid.source_place} to {bid.destination_place}")
    return "Bid accepted. " + " | ".join(parts)


class ChatBootstrap:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.chats = ChatRepository(session)
        self.trucks = TruckRepository(session)

    async def find_or_create(self, user_a: int, user_b: int) -> ChatModel:
        chat = await self.chats.find_pair(user_a, user_b)
        if chat is not None:
            return chat
        try:
            async with self.session.begin_nested():
                chat = await self.chats.create_pair(user_a, user_b)
        except IntegrityError:
            # Another request created the pair first
            chat = await self.chats.find_pair(user_a, user_b)
            if chat is None:
                raise
        return chat

    async def on_bid_accepted(self, bid: BidModel) -> ChatModel:
        """Idempotent: the summary message and bid link are added once."""
        chat = await self.find_or_create(bid.bid_by, bid.offered_to)
        if not await self.chats.has_bid_message(chat.id, bid.id):
            truck = await self.trucks.get_by_id(bid.truck_id)
            await self.chats.add_message(
                chat,
                sender_id=bid.offered_to,
                content=summarize_bid(bid, truck),
                message_type=MessageType.BID_ACCEPTED,
                bid_id=bid.id,
            )
            logger.info("Chat %s seeded for bid %s", chat.id, bid.id)
        await self.chats.link_bid(chat.id, bid.id)
        return chat
