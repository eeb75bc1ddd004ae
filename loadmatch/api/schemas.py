"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, RootModel

from loadmatch.domain.enums import (
    BidStatus,
    BidType,
    MaterialType,
    MatchType,
    RCStatus,
    RejectionReason,
    TruckBodyType,
    Urgency,
    VehicleBodyType,
    VehicleType,
)


# ── Shared ────────────────────────────────────────────────────────────


class Coordinates(BaseModel):
    latitude: float
    longitude: float


class PlaceIn(BaseModel):
    place_name: str = Field(..., min_length=1, max_length=255)
    coordinates: Coordinates


# ── Bids ──────────────────────────────────────────────────────────────


class _BidCreateBase(BaseModel):
    load_id: int
    truck_id: int
    bidded_total: float = Field(..., gt=0)
    advance_percentage: Optional[float] = Field(None, ge=0, le=100)
    diesel_liters: Optional[float] = Field(None, ge=0)
    note: Optional[str] = Field(None, max_length=1000)


class LoadBidCreate(_BidCreateBase):
    """Transporter offers their load to a posted truck."""

    bid_type: Literal["LOAD_BID"]


class TruckRequestCreate(_BidCreateBase):
    """Trucker requests a posted load for their truck."""

    bid_type: Literal["TRUCK_REQUEST"]


class BidCreateRequest(
    RootModel[
        Annotated[
            Union[LoadBidCreate, TruckRequestCreate],
            Field(discriminator="bid_type"),
        ]
    ]
):
    """Tagged on ``bid_type``; each variant carries its own direction."""


class BidUpdateRequest(BaseModel):
    bidded_total: Optional[float] = Field(None, gt=0)
    note: Optional[str] = Field(None, max_length=1000)


class BidStatusRequest(BaseModel):
    status: BidStatus
    rejection_reason: Optional[RejectionReason] = None
    rejection_note: Optional[str] = Field(None, max_length=1000)


class BidRejectRequest(BaseModel):
    rejection_reason: RejectionReason = RejectionReason.OTHER
    rejection_note: Optional[str] = Field(None, max_length=1000)


class BidResponse(BaseModel):
    id: int
    bid_type: BidType
    bid_by: int
    offered_to: int
    load_id: int
    truck_id: int
    bidded_total: float
    advance_percentage: Optional[float] = None
    diesel_liters: Optional[float] = None
    note: Optional[str] = None
    material_type: MaterialType
    weight: Optional[float] = None
    offered_total: float
    source_place: str
    destination_place: str
    status: BidStatus
    rejection_reason: Optional[RejectionReason] = None
    rejection_note: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BidStatisticsRow(BaseModel):
    status: BidStatus
    bid_type: BidType
    total_bids: int
    total_amount: float
    average_amount: float


# ── Loads ─────────────────────────────────────────────────────────────


class LoadCreateRequest(BaseModel):
    material_type: MaterialType
    weight: Optional[float] = Field(None, gt=0)
    source: PlaceIn
    destination: PlaceIn
    vehicle_body_type: VehicleBodyType
    vehicle_type: VehicleType
    number_of_wheels: int = Field(..., gt=0)
    offered_total: float = Field(..., gt=0)
    advance_percentage: float = Field(0, ge=0, le=100)
    diesel_liters: float = Field(0, ge=0)
    urgency: Urgency = Urgency.IMMEDIATE
    schedule_date: Optional[datetime] = None


class LoadUpdateRequest(BaseModel):
    material_type: Optional[MaterialType] = None
    weight: Optional[float] = Field(None, gt=0)
    source: Optional[PlaceIn] = None
    destination: Optional[PlaceIn] = None
    vehicle_body_type: Optional[VehicleBodyType] = None
    vehicle_type: Optional[VehicleType] = None
    number_of_wheels: Optional[int] = Field(None, gt=0)
    offered_total: Optional[float] = Field(None, gt=0)
    advance_percentage: Optional[float] = Field(None, ge=0, le=100)
    diesel_liters: Optional[float] = Field(None, ge=0)
    urgency: Optional[Urgency] = None
    schedule_date: Optional[datetime] = None


class LoadResponse(BaseModel):
    id: int
    transporter_id: int
    material_type: MaterialType
    weight: Optional[float] = None
    source_place: str
    source_lat: float
    source_lng: float
    destination_place: str
    destination_lat: float
    destination_lng: float
    vehicle_body_type: VehicleBodyType
    vehicle_type: VehicleType
    number_of_wheels: int
    offered_total: float
    advance_percentage: float
    diesel_liters: float
    urgency: Urgency
    schedule_date: Optional[datetime] = None
    is_active: bool
    expires_at: datetime
    current_bid_id: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class NearbyLoad(LoadResponse):
    distance_km: float


class DualSidedLoad(LoadResponse):
    match_type: MatchType
    source_distance_km: Optional[float] = None
    destination_distance_km: Optional[float] = None


# ── Trucks ────────────────────────────────────────────────────────────


class TruckCreateRequest(BaseModel):
    permit: str = Field(..., min_length=1, max_length=64)
    truck_number: str = Field(..., min_length=1, max_length=16)
    location: PlaceIn
    capacity: float = Field(..., gt=0)
    vehicle_body_type: VehicleBodyType
    truck_type: VehicleType
    truck_body_type: TruckBodyType
    tyre_count: int = Field(..., gt=0)
    rc_image: Optional[str] = Field(None, max_length=512)


class TruckUpdateRequest(BaseModel):
    permit: Optional[str] = Field(None, min_length=1, max_length=64)
    truck_number: Optional[str] = Field(None, min_length=1, max_length=16)
    location: Optional[PlaceIn] = None
    capacity: Optional[float] = Field(None, gt=0)
    vehicle_body_type: Optional[VehicleBodyType] = None
    truck_type: Optional[VehicleType] = None
    truck_body_type: Optional[TruckBodyType] = None
    tyre_count: Optional[int] = Field(None, gt=0)
    rc_image: Optional[str] = Field(None, max_length=512)


class TruckResponse(BaseModel):
    id: int
    owner_id: int
    permit: str
    truck_number: str
    location_place: str
    location_lat: float
    location_lng: float
    capacity: float
    vehicle_body_type: VehicleBodyType
    truck_type: VehicleType
    truck_body_type: TruckBodyType
    tyre_count: int
    rc_status: RCStatus
    is_rc_verified: bool
    total_bids: int
    current_bid_id: Optional[int] = None
    expires_at: datetime
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class NearbyTruck(TruckResponse):
    distance_km: float


class RCVerifyRequest(BaseModel):
    status: RCStatus


# ── Envelopes ─────────────────────────────────────────────────────────


class PageResponse(BaseModel):
    items: list[Any]
    total: int
    page: int
    limit: int
    pages: int


class NearbyLoadPage(PageResponse):
    items: list[NearbyLoad]


class DualSidedLoadPage(PageResponse):
    items: list[DualSidedLoad]


class NearbyTruckPage(PageResponse):
    items: list[NearbyTruck]


class LoadPage(PageResponse):
    items: list[LoadResponse]


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
