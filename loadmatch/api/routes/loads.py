"""
Load endpoints
==============

POST   /api/v1/loads                  -- post a load
GET    /api/v1/loads/mine             -- my loads
GET    /api/v1/loads/active           -- fresh loads, newest first
GET    /api/v1/loads/nearby           -- by source or destination radius
GET    /api/v1/loads/nearby/dual      -- BOTH > SOURCE > DESTINATION bands
GET    /api/v1/loads/{load_id}
PATCH  /api/v1/loads/{load_id}
DELETE /api/v1/loads/{load_id}
POST   /api/v1/loads/{load_id}/repost
POST   /api/v1/loads/{load_id}/pause
"""

from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from loadmatch.api.dependencies import get_current_user, get_db
from loadmatch.api.middleware import limiter
from loadmatch.api.schemas import (
    DualSidedLoad,
    DualSidedLoadPage,
    LoadCreateRequest,
    LoadPage,
    LoadResponse,
    LoadUpdateRequest,
    MessageResponse,
    NearbyLoad,
    NearbyLoadPage,
    PlaceIn,
)
from loadmatch.config import settings
from loadmatch.domain.distance import round_km
from loadmatch.domain.entities import GeoPoint
from loadmatch.domain.enums import MaterialType, NearbyKind, VehicleBodyType, VehicleType
from loadmatch.infrastructure.models import UserModel
from loadmatch.services.geo_search import GeoSearchService
from loadmatch.services.listings import ListingService

router = APIRouter(prefix="/loads", tags=["loads"])


def _point(place: PlaceIn) -> GeoPoint:
    return GeoPoint.parse(place.coordinates.latitude, place.coordinates.longitude)


def _optional_point(lat: Optional[float], lng: Optional[float]) -> Optional[GeoPoint]:
    if lat is None and lng is None:
        return None
    return GeoPoint.parse(lat, lng)


def _load_filters(material_type, vehicle_type, vehicle_body_type) -> dict[str, Any]:
    return {
        "material_type": material_type,
        "vehicle_type": vehicle_type,
        "vehicle_body_type": vehicle_body_type,
    }


def _optional_round(value: Optional[float]) -> Optional[float]:
    return round_km(value) if value is not None else None


@router.post("", status_code=201, response_model=LoadResponse, summary="Post a load")
@limiter.limit(settings.rate_limit)
async def create_load(
    request: Request,
    body: LoadCreateRequest,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ListingService(db).create_load(
        user,
        material_type=body.material_type,
        weight=body.weight,
        source_place=body.source.place_name,
        source=_point(body.source),
        destination_place=body.destination.place_name,
        destination=_point(body.destination),
        vehicle_body_type=body.vehicle_body_type,
        vehicle_type=body.vehicle_type,
        number_of_wheels=body.number_of_wheels,
        offered_total=body.offered_total,
        advance_percentage=body.advance_percentage,
        diesel_liters=body.diesel_liters,
        urgency=body.urgency,
        schedule_date=body.schedule_date,
    )


@router.get("/mine", response_model=list[LoadResponse], summary="List my loads")
@limiter.limit(settings.rate_limit)
async def list_my_loads(
    request: Request,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ListingService(db).list_my_loads(user)


@router.get("/active", response_model=LoadPage, summary="List active loads")
@limiter.limit(settings.rate_limit)
async def list_active_loads(
    request: Request,
    material_type: Optional[MaterialType] = None,
    vehicle_type: Optional[VehicleType] = None,
    vehicle_body_type: Optional[VehicleBodyType] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await GeoSearchService(db).active_loads(
        _load_filters(material_type, vehicle_type, vehicle_body_type), page, limit
    )
    return LoadPage(
        items=[LoadResponse.model_validate(load) for load in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        pages=result.pages,
    )


@router.get(
    "/nearby",
    response_model=NearbyLoadPage,
    summary="Loads near a point",
    description="``side=source`` matches pickup points, ``side=destination`` drop points.",
)
@limiter.limit(settings.rate_limit)
async def nearby_loads(
    request: Request,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    radius: float = 50,
    side: Literal["source", "destination"] = "source",
    material_type: Optional[MaterialType] = None,
    vehicle_type: Optional[VehicleType] = None,
    vehicle_body_type: Optional[VehicleBodyType] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    kind = NearbyKind.LOAD_SOURCE if side == "source" else NearbyKind.LOAD_DESTINATION
    result = await GeoSearchService(db).find_nearby(
        kind,
        GeoPoint.parse(lat, lng),
        radius,
        _load_filters(material_type, vehicle_type, vehicle_body_type),
        page,
        limit,
    )
    items = [
        NearbyLoad(
            **LoadResponse.model_validate(match.item).model_dump(),
            distance_km=match.display_distance,
        )
        for match in result.items
    ]
    return NearbyLoadPage(
        items=items,
        total=result.total,
        page=result.page,
        limit=result.limit,
        pages=result.pages,
    )


@router.get(
    "/nearby/dual",
    response_model=DualSidedLoadPage,
    summary="Loads near a source and/or destination",
)
@limiter.limit(settings.rate_limit)
async def nearby_loads_dual(
    request: Request,
    source_lat: Optional[float] = None,
    source_lng: Optional[float] = None,
    destination_lat: Optional[float] = None,
    destination_lng: Optional[float] = None,
    radius: float = 50,
    material_type: Optional[MaterialType] = None,
    vehicle_type: Optional[VehicleType] = None,
    vehicle_body_type: Optional[VehicleBodyType] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await GeoSearchService(db).find_nearby_dual_sided(
        _optional_point(source_lat, source_lng),
        _optional_point(destination_lat, destination_lng),
        radius,
        _load_filters(material_type, vehicle_type, vehicle_body_type),
        page,
        limit,
    )
    items = [
        DualSidedLoad(
            **LoadResponse.model_validate(match.item).model_dump(),
            match_type=match.match_type,
            source_distance_km=_optional_round(match.source_distance_km),
            destination_distance_km=_optional_round(match.destination_distance_km),
        )
        for match in result.items
    ]
    return DualSidedLoadPage(
        items=items,
        total=result.total,
        page=result.page,
        limit=result.limit,
        pages=result.pages,
    )


@router.get("/{load_id}", response_model=LoadResponse, summary="Get a load")
@limiter.limit(settings.rate_limit)
async def get_load(
    request: Request,
    load_id: int,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ListingService(db).get_load(load_id)


@router.patch("/{load_id}", response_model=LoadResponse, summary="Update my load")
@limiter.limit(settings.rate_limit)
async def update_load(
    request: Request,
    load_id: int,
    body: LoadUpdateRequest,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    changes = body.model_dump(exclude_unset=True, exclude={"source", "destination"})
    for side in ("source", "destination"):
        place = getattr(body, side)
        if place is not None:
            changes[side] = _point(place)
            changes[f"{side}_place"] = place.place_name
    return await ListingService(db).update_load(user, load_id, changes)


@router.delete("/{load_id}", response_model=MessageResponse, summary="Delete my load")
@limiter.limit(settings.rate_limit)
async def delete_load(
    request: Request,
    load_id: int,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await ListingService(db).delete_load(user, load_id)
    return MessageResponse(message="Load deleted successfully")


@router.post(
    "/{load_id}/repost",
    response_model=LoadResponse,
    summary="Repost my load",
    description="Clears the bid list and restarts the 12 h window.",
)
@limiter.limit(settings.rate_limit)
async def repost_load(
    request: Request,
    load_id: int,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ListingService(db).repost_load(user, load_id)


@router.post("/{load_id}/pause", response_model=LoadResponse, summary="Pause my load")
@limiter.limit(settings.rate_limit)
async def pause_load(
    request: Request,
    load_id: int,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ListingService(db).pause_load(user, load_id)
