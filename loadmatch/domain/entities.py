"""
Domain value objects and business rules.

Patterns used
-------------
- **State Pattern** on bids: ``check_transition`` enforces
  PENDING -> ACCEPTED | REJECTED; both targets are terminal.
- ``GeoPoint`` validates coordinate ranges once, at construction.
- ``ListingWindow`` owns the 12 h expiry / scheduled activation rules
  shared by loads and trucks.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from .enums import BID_TARGETS, BID_TRANSITIONS, BidStatus, BidType, ListingKind, Urgency
from .errors import ConflictError, ValidationError


class InvalidStateTransition(ConflictError):
    """Raised when a bid status change violates the state machine."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        for name in ("latitude", "longitude"):
            value = getattr(self, name)
            if value is None:
                raise ValidationError(f"{name.capitalize()} is required")
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError(f"{name.capitalize()} must be a number")
            if not math.isfinite(value):
                raise ValidationError(f"{name.capitalize()} must be finite")
        if not -90 <= self.latitude <= 90:
            raise ValidationError("Latitude must be between -90 and 90 degrees")
        if not -180 <= self.longitude <= 180:
            raise ValidationError("Longitude must be between -180 and 180 degrees")

    @classmethod
    def parse(cls, latitude: Any, longitude: Any) -> "GeoPoint":
        """Build from loosely-typed input (query strings, JSON)."""
        if latitude is None or longitude is None:
            raise ValidationError(
                "Please provide both latitude and longitude coordinates"
            )
        try:
            lat, lng = float(latitude), float(longitude)
        except (TypeError, ValueError):
            raise ValidationError(
                "Invalid coordinate values. Please provide valid numbers"
            ) from None
        return cls(lat, lng)


@dataclass(frozen=True)
class ListingWindow:
    """Visibility window of a posted load or truck."""

    expires_at: datetime
    is_active: bool

    @classmethod
    def for_load(
        cls,
        urgency: Urgency,
        schedule_date: Optional[datetime],
        ttl: timedelta,
        now: Optional[datetime] = None,
    ) -> "ListingWindow":
        now = now or utcnow()
        if urgency is Urgency.SCHEDULED:
            if schedule_date is None:
                raise ValidationError("Scheduled loads require a schedule date")
            schedule_date = ensure_utc(schedule_date)
            if schedule_date <= now:
                raise ValidationError("Schedule date must be in the future")
            return cls(expires_at=schedule_date + ttl, is_active=False)
        return cls(expires_at=now + ttl, is_active=True)

    @classmethod
    def for_truck(
        cls, ttl: timedelta, now: Optional[datetime] = None
    ) -> "ListingWindow":
        return cls(expires_at=(now or utcnow()) + ttl, is_active=True)


def check_transition(current: BidStatus, new_status: BidStatus) -> None:
    """Raise unless *current* -> *new_status* is a legal bid transition."""
    allowed = BID_TRANSITIONS.get(BidStatus(current), set())
    if new_status not in allowed:
        raise InvalidStateTransition(
            f"Cannot transition bid from {BidStatus(current).value} "
            f"to {BidStatus(new_status).value}"
        )


def bid_target(bid_type: BidType) -> ListingKind:
    """The listing a bid of *bid_type* is placed on."""
    try:
        return BID_TARGETS[BidType(bid_type)]
    except (KeyError, ValueError):
        raise ValidationError(f"Invalid bid type: {bid_type}") from None


def initiator_side(bid_type: BidType) -> ListingKind:
    """The listing the initiator of a *bid_type* bid must own."""
    target = bid_target(bid_type)
    return ListingKind.LOAD if target is ListingKind.TRUCK else ListingKind.TRUCK
