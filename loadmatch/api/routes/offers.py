"""
Incoming offer endpoints
========================

GET  /api/v1/offers                 -- bids addressed to me
POST /api/v1/offers/{bid_id}/accept -- accept one of them
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from loadmatch.api.dependencies import get_current_user, get_db
from loadmatch.api.middleware import limiter
from loadmatch.api.schemas import BidResponse
from loadmatch.config import settings
from loadmatch.domain.enums import BidStatus
from loadmatch.infrastructure.models import UserModel
from loadmatch.services.bidding import BidLifecycleEngine

router = APIRouter(prefix="/offers", tags=["offers"])


@router.get("", response_model=list[BidResponse], summary="List incoming offers")
@limiter.limit(settings.rate_limit)
async def list_offers(
    request: Request,
    status: Optional[BidStatus] = None,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await BidLifecycleEngine(db).list_offers(user, status)


@router.post(
    "/{bid_id}/accept", response_model=BidResponse, summary="Accept an offer"
)
@limiter.limit(settings.rate_limit)
async def accept_offer(
    request: Request,
    bid_id: int,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await BidLifecycleEngine(db).accept_offer(bid_id, user)
