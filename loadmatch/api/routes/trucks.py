"""
Truck endpoints
===============

POST   /api/v1/trucks                   -- post a truck
GET    /api/v1/trucks/mine              -- my trucks
GET    /api/v1/trucks/nearby            -- fresh trucks within a radius
GET    /api/v1/trucks/{truck_id}
PATCH  /api/v1/trucks/{truck_id}
DELETE /api/v1/trucks/{truck_id}
POST   /api/v1/trucks/{truck_id}/repost -- new cycle: bid list + quota reset
POST   /api/v1/trucks/{truck_id}/pause
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from loadmatch.api.dependencies import get_current_user, get_db
from loadmatch.api.middleware import limiter
from loadmatch.api.schemas import (
    MessageResponse,
    NearbyTruck,
    NearbyTruckPage,
    TruckCreateRequest,
    TruckResponse,
    TruckUpdateRequest,
)
from loadmatch.config import settings
from loadmatch.domain.entities import GeoPoint
from loadmatch.domain.enums import NearbyKind, TruckBodyType, VehicleBodyType, VehicleType
from loadmatch.infrastructure.models import UserModel
from loadmatch.services.geo_search import GeoSearchService
from loadmatch.services.listings import ListingService

router = APIRouter(prefix="/trucks", tags=["trucks"])


@router.post("", status_code=201, response_model=TruckResponse, summary="Post a truck")
@limiter.limit(settings.rate_limit)
async def create_truck(
    request: Request,
    body: TruckCreateRequest,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    coords = body.location.coordinates
    return await ListingService(db).create_truck(
        user,
        permit=body.permit,
        truck_number=body.truck_number,
        location_place=body.location.place_name,
        location=GeoPoint.parse(coords.latitude, coords.longitude),
        capacity=body.capacity,
        vehicle_body_type=body.vehicle_body_type,
        truck_type=body.truck_type,
        truck_body_type=body.truck_body_type,
        tyre_count=body.tyre_count,
        rc_image=body.rc_image,
    )


@router.get("/mine", response_model=list[TruckResponse], summary="List my trucks")
@limiter.limit(settings.rate_limit)
async def list_my_trucks(
    request: Request,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ListingService(db).list_my_trucks(user)


@router.get("/nearby", response_model=NearbyTruckPage, summary="Trucks near a point")
@limiter.limit(settings.rate_limit)
async def nearby_trucks(
    request: Request,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    radius: float = 50,
    truck_type: Optional[VehicleType] = None,
    truck_body_type: Optional[TruckBodyType] = None,
    vehicle_body_type: Optional[VehicleBodyType] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await GeoSearchService(db).find_nearby(
        NearbyKind.TRUCK,
        GeoPoint.parse(lat, lng),
        radius,
        {
            "truck_type": truck_type,
            "truck_body_type": truck_body_type,
            "vehicle_body_type": vehicle_body_type,
        },
        page,
        limit,
    )
    items = [
        NearbyTruck(
            **TruckResponse.model_validate(match.item).model_dump(),
            distance_km=match.display_distance,
        )
        for match in result.items
    ]
    return NearbyTruckPage(
        items=items,
        total=result.total,
        page=result.page,
        limit=result.limit,
        pages=result.pages,
    )


@router.get("/{truck_id}", response_model=TruckResponse, summary="Get a truck")
@limiter.limit(settings.rate_limit)
async def get_truck(
    request: Request,
    truck_id: int,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ListingService(db).get_truck(truck_id)


@router.patch("/{truck_id}", response_model=TruckResponse, summary="Update my truck")
@limiter.limit(settings.rate_limit)
async def update_truck(
    request: Request,
    truck_id: int,
    body: TruckUpdateRequest,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    changes = body.model_dump(exclude_unset=True, exclude={"location"})
    if body.location is not None:
        coords = body.location.coordinates
        changes["location"] = GeoPoint.parse(coords.latitude, coords.longitude)
        changes["location_place"] = body.location.place_name
    return await ListingService(db).update_truck(user, truck_id, changes)


@router.delete("/{truck_id}", response_model=MessageResponse, summary="Delete my truck")
@limiter.limit(settings.rate_limit)
async def delete_truck(
    request: Request,
    truck_id: int,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await ListingService(db).delete_truck(user, truck_id)
    return MessageResponse(message="Truck deleted successfully")


@router.post("/{truck_id}/repost", response_model=TruckResponse, summary="Repost my truck")
@limiter.limit(settings.rate_limit)
async def repost_truck(
    request: Request,
    truck_id: int,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ListingService(db).repost_truck(user, truck_id)


@router.post("/{truck_id}/pause", response_model=TruckResponse, summary="Pause my truck")
@limiter.limit(settings.rate_limit)
async def pause_truck(
    request: Request,
    truck_id: int,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ListingService(db).pause_truck(user, truck_id)
