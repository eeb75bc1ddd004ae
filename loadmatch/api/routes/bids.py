"""
Bid endpoints
=============

POST   /api/v1/bids                  -- place a bid (LOAD_BID | TRUCK_REQUEST)
GET    /api/v1/bids                  -- bids I placed
GET    /api/v1/bids/search           -- filter my bids
GET    /api/v1/bids/stats            -- count / total / average by status x type
GET    /api/v1/bids/load/{load_id}   -- bids on my load
GET    /api/v1/bids/{bid_id}         -- one bid (bidder or recipient)
PATCH  /api/v1/bids/{bid_id}         -- edit amount / note while PENDING
DELETE /api/v1/bids/{bid_id}         -- withdraw
PATCH  /api/v1/bids/{bid_id}/status  -- accept or reject
POST   /api/v1/bids/{bid_id}/accept
POST   /api/v1/bids/{bid_id}/reject
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from loadmatch.api.dependencies import get_current_user, get_db
from loadmatch.api.middleware import limiter
from loadmatch.api.schemas import (
    BidCreateRequest,
    BidRejectRequest,
    BidResponse,
    BidStatisticsRow,
    BidStatusRequest,
    BidUpdateRequest,
    MessageResponse,
)
from loadmatch.config import settings
from loadmatch.domain.enums import BidStatus, BidType, MaterialType
from loadmatch.infrastructure.models import UserModel
from loadmatch.services.bidding import BidLifecycleEngine

router = APIRouter(prefix="/bids", tags=["bids"])


@router.post(
    "",
    status_code=201,
    response_model=BidResponse,
    summary="Place a bid",
    description=(
        "``LOAD_BID``: the load's transporter offers it to a truck. "
        "``TRUCK_REQUEST``: the truck's owner requests a load."
    ),
)
@limiter.limit(settings.rate_limit)
async def create_bid(
    request: Request,
    body: BidCreateRequest,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    data = body.root
    return await BidLifecycleEngine(db).create_bid(
        user,
        BidType(data.bid_type),
        data.load_id,
        data.truck_id,
        data.bidded_total,
        advance_percentage=data.advance_percentage,
        diesel_liters=data.diesel_liters,
        note=data.note,
    )


@router.get("", response_model=list[BidResponse], summary="List my bids")
@limiter.limit(settings.rate_limit)
async def list_my_bids(
    request: Request,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await BidLifecycleEngine(db).list_my_bids(user)


@router.get("/search", response_model=list[BidResponse], summary="Search my bids")
@limiter.limit(settings.rate_limit)
async def search_bids(
    request: Request,
    status: Optional[BidStatus] = None,
    bid_type: Optional[BidType] = None,
    min_amount: Optional[float] = Query(None, ge=0),
    max_amount: Optional[float] = Query(None, ge=0),
    material_type: Optional[MaterialType] = None,
    source: Optional[str] = Query(None, max_length=255),
    destination: Optional[str] = Query(None, max_length=255),
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await BidLifecycleEngine(db).search_bids(
        user,
        status=status,
        bid_type=bid_type,
        min_amount=min_amount,
        max_amount=max_amount,
        material_type=material_type,
        source=source,
        destination=destination,
    )


@router.get(
    "/stats", response_model=list[BidStatisticsRow], summary="My bid statistics"
)
@limiter.limit(settings.rate_limit)
async def bid_statistics(
    request: Request,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await BidLifecycleEngine(db).bid_statistics(user)


@router.get(
    "/load/{load_id}",
    response_model=list[BidResponse],
    summary="Bids placed on one of my loads",
)
@limiter.limit(settings.rate_limit)
async def list_load_bids(
    request: Request,
    load_id: int,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await BidLifecycleEngine(db).list_load_bids(load_id, user)


@router.get("/{bid_id}", response_model=BidResponse, summary="Get a bid")
@limiter.limit(settings.rate_limit)
async def get_bid(
    request: Request,
    bid_id: int,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await BidLifecycleEngine(db).get_bid(bid_id, user)


@router.patch("/{bid_id}", response_model=BidResponse, summary="Edit a pending bid")
@limiter.limit(settings.rate_limit)
async def update_bid(
    request: Request,
    bid_id: int,
    body: BidUpdateRequest,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await BidLifecycleEngine(db).update_bid(
        bid_id, user, bidded_total=body.bidded_total, note=body.note
    )


@router.delete("/{bid_id}", response_model=MessageResponse, summary="Withdraw a bid")
@limiter.limit(settings.rate_limit)
async def delete_bid(
    request: Request,
    bid_id: int,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await BidLifecycleEngine(db).delete_bid(bid_id, user)
    return MessageResponse(message="Bid deleted successfully")


@router.patch(
    "/{bid_id}/status",
    response_model=BidResponse,
    summary="Accept or reject a bid",
    description=(
        "Accepting rejects every other pending bid on the same load or "
        "truck and credits the bidder; rejecting debits the bidder."
    ),
)
@limiter.limit(settings.rate_limit)
async def update_bid_status(
    request: Request,
    bid_id: int,
    body: BidStatusRequest,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await BidLifecycleEngine(db).update_status(
        bid_id, user, body.status, body.rejection_reason, body.rejection_note
    )


@router.post("/{bid_id}/accept", response_model=BidResponse, summary="Accept a bid")
@limiter.limit(settings.rate_limit)
async def accept_bid(
    request: Request,
    bid_id: int,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await BidLifecycleEngine(db).accept_bid(bid_id, user)


@router.post("/{bid_id}/reject", response_model=BidResponse, summary="Reject a bid")
@limiter.limit(settings.rate_limit)
async def reject_bid(
    request: Request,
    bid_id: int,
    body: BidRejectRequest,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await BidLifecycleEngine(db).reject_bid(
        bid_id, user, body.rejection_reason, body.rejection_note
    )
