"""
Geo Index helpers
=================

Pure functions that turn a (center, radius) query into spatial
predicates and rank candidate listings by great-circle distance.

1. **Cell cover**      -- H3 ``grid_disk`` around the center cell, sized so
   the disk strictly contains the circle.  Used as an index prefilter on
   stores without PostGIS.
2. **Exact filter**    -- Haversine distance ``<= radius`` (inclusive).
3. **Ranking**         -- ascending distance (single-sided) or
   ``BOTH > SOURCE > DESTINATION`` priority bands (dual-sided), then
   in-memory pagination.

Complexity
----------
Let N = prefiltered candidates.

* Cell cover:  O(k^2) cells for ring size k = ceil(r / edge) + 1
* Filtering:   O(N)
* Ranking:     O(N log N)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Sequence

import h3

from .distance import haversine_km, round_km
from .entities import GeoPoint
from .enums import MATCH_PRIORITY, MatchType
from .errors import ValidationError


def validate_radius(radius_km: Any) -> float:
    if radius_km is None:
        raise ValidationError("Radius is required")
    try:
        value = float(radius_km)
    except (TypeError, ValueError):
        raise ValidationError("Radius must be a number") from None
    if not math.isfinite(value) or value <= 0:
        raise ValidationError("Radius must be greater than 0")
    return value


def point_cell(point: GeoPoint, resolution: int) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(point.latitude, point.longitude, resolution)


def covering_cells(
    center: GeoPoint,
    radius_km: float,
    resolution: int,
    max_ring: int,
) -> Optional[list[str]]:
    """
    H3 cells that together contain every point within *radius_km*.

    Adjacent cell centers are ~1.5 edge lengths apart along the
    narrowest direction, so a ring of ``ceil(r / edge) + 1`` covers the
    circle even where cells are distorted.  Returns ``None`` when the
    ring would exceed *max_ring* (caller should skip the prefilter).
    """
    edge_km = h3.average_hexagon_edge_length(resolution, unit="km")
    ring = math.ceil(radius_km / edge_km) + 1
    if ring > max_ring:
        return None
    origin = point_cell(center, resolution)
    return sorted(h3.grid_disk(origin, ring))


# ── Ranking ───────────────────────────────────────────────────────────


@dataclass
class NearbyMatch:
    item: Any
    distance_km: float

    @property
    def display_distance(self) -> float:
        return round_km(self.distance_km)


@dataclass
class DualSidedMatch:
    item: Any
    match_type: MatchType
    source_distance_km: Optional[float]
    destination_distance_km: Optional[float]

    def sort_key(self) -> tuple[int, float]:
        if self.match_type is MatchType.BOTH:
            distance = self.source_distance_km + self.destination_distance_km
        elif self.match_type is MatchType.SOURCE:
            distance = self.source_distance_km
        else:
            distance = self.destination_distance_km
        return MATCH_PRIORITY[self.match_type], distance


def _distance(center: GeoPoint, point: GeoPoint) -> float:
    return haversine_km(
        center.latitude, center.longitude, point.latitude, point.longitude
    )


def rank_by_distance(
    candidates: Iterable[Any],
    center: GeoPoint,
    radius_km: float,
    point_of: Callable[[Any], GeoPoint],
) -> list[NearbyMatch]:
    """Keep candidates inside the circle, nearest first."""
    matches = []
    for item in candidates:
        d = _distance(center, point_of(item))
        if d <= radius_km:
            matches.append(NearbyMatch(item=item, distance_km=d))
    matches.sort(key=lambda m: m.distance_km)
    return matches


def rank_dual_sided(
    candidates: Iterable[Any],
    source_center: GeoPoint,
    destination_center: GeoPoint,
    radius_km: float,
    source_of: Callable[[Any], GeoPoint],
    destination_of: Callable[[Any], GeoPoint],
) -> list[DualSidedMatch]:
    """
    Classify each candidate as BOTH / SOURCE / DESTINATION and order by
    priority band.  A candidate lands in exactly one band, so the
    concatenation never holds duplicates.
    """
    matches = []
    for item in candidates:
        ds = _distance(source_center, source_of(item))
        dd = _distance(destination_center, destination_of(item))
        near_source = ds <= radius_km
        near_destination = dd <= radius_km
        if near_source and near_destination:
            match_type = MatchType.BOTH
        elif near_source:
            match_type = MatchType.SOURCE
        elif near_destination:
            match_type = MatchType.DESTINATION
        else:
            continue
        matches.append(
            DualSidedMatch(
                item=item,
                match_type=match_type,
                source_distance_km=ds,
                destination_distance_km=dd,
            )
        )
    matches.sort(key=DualSidedMatch.sort_key)
    return matches


def paginate(items: Sequence[Any], page: int, limit: int) -> tuple[list[Any], int, int]:
    """Return ``(page_items, total, pages)`` for 1-based *page*."""
    total = len(items)
    pages = math.ceil(total / limit) if total else 0
    start = (page - 1) * limit
    return list(items[start : start + limit]), total, pages
