"""
Geo Search
==========

Discovery of fresh loads and trucks around a point.

Pipeline per query
------------------
1. Validate center / radius / paging.
2. Store-side prefilter (PostGIS ``ST_DWithin`` or H3 cell cover) plus
   attribute filters and the freshness predicate.
3. Haversine narrowing and ranking (``domain.geo``).
4. In-memory pagination over the fully ranked list.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from loadmatch.config import settings
from loadmatch.domain.entities import GeoPoint, utcnow
from loadmatch.domain.enums import MatchType, NearbyKind
from loadmatch.domain.errors import ValidationError
from loadmatch.domain.geo import (
    DualSidedMatch,
    paginate,
    rank_by_distance,
    rank_dual_sided,
    validate_radius,
)
from loadmatch.infrastructure.repositories import LoadRepository, TruckRepository


@dataclass
class Page:
    items: list[Any]
    total: int
    page: int
    limit: int
    pages: int = field(default=0)


def validate_paging(page: Any, limit: Any) -> tuple[int, int]:
    try:
        page = int(page) if page is not None else 1
        limit = int(limit) if limit is not None else settings.default_page_size
    except (TypeError, ValueError):
        raise ValidationError("Page and limit must be integers") from None
    if page < 1:
        raise ValidationError("Page must be at least 1")
    if not 1 <= limit <= settings.max_page_size:
        raise ValidationError(
            f"Limit must be between 1 and {settings.max_page_size}"
        )
    return page, limit


def _source(load) -> GeoPoint:
    return GeoPoint(load.source_lat, load.source_lng)


def _destination(load) -> GeoPoint:
    return GeoPoint(load.destination_lat, load.destination_lng)


def _truck_location(truck) -> GeoPoint:
    return GeoPoint(truck.location_lat, truck.location_lng)


def _paged(ranked: list[Any], page: int, limit: int) -> Page:
    items, total, pages = paginate(ranked, page, limit)
    return Page(items=items, total=total, page=page, limit=limit, pages=pages)


class GeoSearchService:
    def __init__(self, session: AsyncSession):
        self.loads = LoadRepository(session)
        self.trucks = TruckRepository(session)

    async def find_nearby(
        self,
        kind: NearbyKind,
        center: GeoPoint,
        radius_km: Any,
        filters: Optional[dict[str, Any]] = None,
        page: Any = 1,
        limit: Any = None,
        now: Optional[datetime] = None,
    ) -> Page:
        """Listings whose *kind* point lies within *radius_km*, nearest first."""
        radius = validate_radius(radius_km)
        page, limit = validate_paging(page, limit)
        now = now or utcnow()
        kind = NearbyKind(kind)

        if kind is NearbyKind.TRUCK:
            candidates = await self.trucks.nearby_candidates(
                now, center, radius, filters
            )
            point_of = _truck_location
        elif kind is NearbyKind.LOAD_SOURCE:
            candidates = await self.loads.nearby_candidates(
                now, source=(center, radius), filters=filters
            )
            point_of = _source
        else:
            candidates = await self.loads.nearby_candidates(
                now, destination=(center, radius), filters=filters
            )
            point_of = _destination

        ranked = rank_by_distance(candidates, center, radius, point_of)
        return _paged(ranked, page, limit)

    async def find_nearby_dual_sided(
        self,
        source: Optional[GeoPoint],
        destination: Optional[GeoPoint],
        radius_km: Any,
        filters: Optional[dict[str, Any]] = None,
        page: Any = 1,
        limit: Any = None,
        now: Optional[datetime] = None,
    ) -> Page:
        """
        Loads near a source and/or destination, banded BOTH > SOURCE >
        DESTINATION.  With a single center every match lands in that
        side's band.
        """
        if source is None and destination is None:
            raise ValidationError(
                "Please provide source and/or destination coordinates"
            )
        radius = validate_radius(radius_km)
        page, limit = validate_paging(page, limit)
        now = now or utcnow()

        candidates = await self.loads.nearby_candidates(
            now,
            source=(source, radius) if source else None,
            destination=(destination, radius) if destination else None,
            filters=filters,
        )

        if source is not None and destination is not None:
            ranked = rank_dual_sided(
                candidates, source, destination, radius, _source, _destination
            )
        elif source is not None:
            ranked = [
                DualSidedMatch(m.item, MatchType.SOURCE, m.distance_km, None)
                for m in rank_by_distance(candidates, source, radius, _source)
            ]
        else:
            ranked = [
                DualSidedMatch(m.item, MatchType.DESTINATION, None, m.distance_km)
                for m in rank_by_distance(
                    candidates, destination, radius, _destination
                )
            ]
        return _paged(ranked, page, limit)

    async def active_loads(
        self,
        filters: Optional[dict[str, Any]] = None,
        page: Any = 1,
        limit: Any = None,
        now: Optional[datetime] = None,
    ) -> Page:
        page, limit = validate_paging(page, limit)
        loads = await self.loads.list_active(now or utcnow(), filters)
        return _paged(loads, page, limit)
