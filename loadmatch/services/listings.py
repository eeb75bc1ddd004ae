"""
Listing Service
===============

Owner-scoped lifecycle of posted loads and trucks.

* create     -- validates enums / coordinates / amounts, computes H3 cells
                and the 12 h visibility window
* update     -- owner only; owner field immutable; re-derives cells and
                window when location or schedule changes
* repost     -- clears the bid list and restarts the window
* pause      -- ``expires_at = now`` (hidden from search, not deleted)
* delete     -- refused once a bid on the listing has been accepted

Scheduled loads are stored inactive and flipped by
``activate_scheduled_loads``, which the dispatcher worker runs every
cycle.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loadmatch.config import settings
from loadmatch.domain.entities import GeoPoint, ListingWindow, ensure_utc, utcnow
from loadmatch.domain.enums import (
    MaterialType,
    RCStatus,
    TruckBodyType,
    Urgency,
    UserType,
    VehicleBodyType,
    VehicleType,
)
from loadmatch.domain.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from loadmatch.domain.geo import point_cell
from loadmatch.infrastructure.models import LoadModel, TruckModel, UserModel
from loadmatch.infrastructure.repositories import LoadRepository, TruckRepository

logger = logging.getLogger(__name__)

TRUCK_NUMBER_MAX_LENGTH = 10

LOAD_UPDATABLE = {
    "material_type",
    "weight",
    "source_place",
    "source",
    "destination_place",
    "destination",
    "vehicle_body_type",
    "vehicle_type",
    "number_of_wheels",
    "offered_total",
    "advance_percentage",
    "diesel_liters",
    "urgency",
    "schedule_date",
}

TRUCK_UPDATABLE = {
    "permit",
    "truck_number",
    "location_place",
    "location",
    "capacity",
    "vehicle_body_type",
    "truck_type",
    "truck_body_type",
    "tyre_count",
    "rc_image",
}


def _enum_value(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Invalid {label}: {value}") from None


def _positive(value: Any, label: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number") from None
    if not math.isfinite(number) or number <= 0:
        raise ValidationError(f"{label} must be greater than 0")
    return number


def _non_negative(value: Any, label: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number") from None
    if not math.isfinite(number) or number < 0:
        raise ValidationError(f"{label} cannot be negative")
    return number


def _percentage(value: Any) -> float:
    number = _non_negative(value, "Advance percentage")
    if number > 100:
        raise ValidationError("Advance percentage cannot exceed 100")
    return number


def normalize_truck_number(value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError("Truck number is required")
    number = "".join(value.split()).upper()
    if not number:
        raise ValidationError("Truck number is required")
    if len(number) > TRUCK_NUMBER_MAX_LENGTH:
        raise ValidationError(
            f"Truck number cannot exceed {TRUCK_NUMBER_MAX_LENGTH} characters"
        )
    return number


def _require_owner(owner_id: int, user: UserModel, noun: str) -> None:
    if owner_id != user.id:
        raise AuthorizationError(f"You are not authorized to modify this {noun}")


class ListingService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.loads = LoadRepository(session)
        self.trucks = TruckRepository(session)
        self.ttl = timedelta(hours=settings.listing_ttl_hours)

    # ── Loads ─────────────────────────────────────────────────────────

    async def get_load(self, load_id: int, fresh: bool = False) -> LoadModel:
        load = await self.loads.get_by_id(load_id, fresh=fresh)
        if load is None:
            raise NotFoundError("Load not found")
        return load

    async def _owned_load(
        self, user: UserModel, load_id: int, fresh: bool = False
    ) -> LoadModel:
        load = await self.get_load(load_id, fresh)
        _require_owner(load.transporter_id, user, "load")
        return load

    async def list_my_loads(self, user: UserModel) -> list[LoadModel]:
        return await self.loads.list_by_transporter(user.id)

    async def create_load(
        self,
        user: UserModel,
        *,
        material_type,
        source_place: str,
        source: GeoPoint,
        destination_place: str,
        destination: GeoPoint,
        vehicle_body_type,
        vehicle_type,
        number_of_wheels: int,
        offered_total,
        advance_percentage=0,
        diesel_liters=0,
        urgency=Urgency.IMMEDIATE,
        schedule_date: Optional[datetime] = None,
        weight: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> LoadModel:
        if user.user_type is UserType.TRUCKER:
            raise AuthorizationError("Only transporters can post loads")
        urgency = _enum_value(Urgency, urgency, "urgency")
        window = ListingWindow.for_load(urgency, schedule_date, self.ttl, now)
        load = LoadModel(
            transporter_id=user.id,
            material_type=_enum_value(MaterialType, material_type, "material type"),
            weight=_positive(weight, "Weight") if weight is not None else None,
            source_place=source_place,
            source_lat=source.latitude,
            source_lng=source.longitude,
            source_cell=point_cell(source, settings.h3_resolution),
            destination_place=destination_place,
            destination_lat=destination.latitude,
            destination_lng=destination.longitude,
            destination_cell=point_cell(destination, settings.h3_resolution),
            vehicle_body_type=_enum_value(
                VehicleBodyType, vehicle_body_type, "vehicle body type"
            ),
            vehicle_type=_enum_value(VehicleType, vehicle_type, "vehicle type"),
            number_of_wheels=int(_positive(number_of_wheels, "Number of wheels")),
            offered_total=_positive(offered_total, "Offered amount"),
            advance_percentage=_percentage(advance_percentage),
            diesel_liters=_non_negative(diesel_liters, "Diesel liters"),
            urgency=urgency,
            schedule_date=ensure_utc(schedule_date) if schedule_date else None,
            is_active=window.is_active,
            expires_at=window.expires_at,
        )
        load = await self.loads.create(load)
        logger.info(
            "Load %s posted by user %s (%s)", load.id, user.id, urgency.value
        )
        return load

    async def update_load(
        self,
        user: UserModel,
        load_id: int,
        changes: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> LoadModel:
        load = await self._owned_load(user, load_id)
        unknown = set(changes) - LOAD_UPDATABLE
        if unknown:
            raise ValidationError(
                f"Cannot update field(s): {', '.join(sorted(unknown))}"
            )

        if "source" in changes:
            point: GeoPoint = changes["source"]
            load.source_lat, load.source_lng = point.latitude, point.longitude
            load.source_cell = point_cell(point, settings.h3_resolution)
        if "destination" in changes:
            point = changes["destination"]
            load.destination_lat, load.destination_lng = point.latitude, point.longitude
            load.destination_cell = point_cell(point, settings.h3_resolution)
        for place in ("source_place", "destination_place"):
            if place in changes:
                setattr(load, place, changes[place])

        if "material_type" in changes:
            load.material_type = _enum_value(
                MaterialType, changes["material_type"], "material type"
            )
        if "vehicle_body_type" in changes:
            load.vehicle_body_type = _enum_value(
                VehicleBodyType, changes["vehicle_body_type"], "vehicle body type"
            )
        if "vehicle_type" in changes:
            load.vehicle_type = _enum_value(
                VehicleType, changes["vehicle_type"], "vehicle type"
            )
        if "weight" in changes:
            weight = changes["weight"]
            load.weight = _positive(weight, "Weight") if weight is not None else None
        if "number_of_wheels" in changes:
            load.number_of_wheels = int(
                _positive(changes["number_of_wheels"], "Number of wheels")
            )
        if "offered_total" in changes:
            load.offered_total = _positive(changes["offered_total"], "Offered amount")
        if "advance_percentage" in changes:
            load.advance_percentage = _percentage(changes["advance_percentage"])
        if "diesel_liters" in changes:
            load.diesel_liters = _non_negative(changes["diesel_liters"], "Diesel liters")

        if "urgency" in changes or "schedule_date" in changes:
            urgency = _enum_value(
                Urgency, changes.get("urgency", load.urgency), "urgency"
            )
            schedule_date = changes.get("schedule_date", load.schedule_date)
            if urgency is Urgency.IMMEDIATE:
                schedule_date = None
            window = ListingWindow.for_load(urgency, schedule_date, self.ttl, now)
            load.urgency = urgency
            load.schedule_date = ensure_utc(schedule_date) if schedule_date else None
            load.is_active = window.is_active
            load.expires_at = window.expires_at

        await self.session.flush()
        return load

    async def delete_load(self, user: UserModel, load_id: int) -> None:
        load = await self._owned_load(user, load_id, fresh=True)
        if load.current_bid_id is not None:
            raise ConflictError("Cannot delete a load with an accepted bid")
        await self.loads.delete(load)
        logger.info("Load %s deleted by user %s", load_id, user.id)

    async def repost_load(
        self, user: UserModel, load_id: int, now: Optional[datetime] = None
    ) -> LoadModel:
        load = await self._owned_load(user, load_id)
        now = now or utcnow()
        await self.loads.clear_bids(load.id)
        load.expires_at = now + self.ttl
        if load.urgency is Urgency.IMMEDIATE or (
            load.schedule_date is not None and load.schedule_date <= now
        ):
            load.is_active = True
        await self.session.flush()
        logger.info("Load %s reposted", load.id)
        return load

    async def pause_load(
        self, user: UserModel, load_id: int, now: Optional[datetime] = None
    ) -> LoadModel:
        load = await self._owned_load(user, load_id)
        load.expires_at = now or utcnow()
        await self.session.flush()
        return load

    async def load_bid_ids(self, load_id: int) -> list[int]:
        return await self.loads.bid_ids(load_id)

    async def activate_scheduled_loads(self, now: Optional[datetime] = None) -> int:
        count = await self.loads.activate_due(now or utcnow())
        if count:
            logger.info("Activated %d scheduled load(s)", count)
        return count

    # ── Trucks ────────────────────────────────────────────────────────

    async def get_truck(self, truck_id: int, fresh: bool = False) -> TruckModel:
        truck = await self.trucks.get_by_id(truck_id, fresh=fresh)
        if truck is None:
            raise NotFoundError("Truck not found")
        return truck

    async def _owned_truck(
        self, user: UserModel, truck_id: int, fresh: bool = False
    ) -> TruckModel:
        truck = await self.get_truck(truck_id, fresh)
        _require_owner(truck.owner_id, user, "truck")
        return truck

    async def list_my_trucks(self, user: UserModel) -> list[TruckModel]:
        return await self.trucks.list_by_owner(user.id)

    async def _write_unique(self, truck_number: str, apply) -> None:
        """Run *apply* in a SAVEPOINT; the unique index decides duplicates."""
        await self.session.flush()
        try:
            async with self.session.begin_nested():
                apply()
                await self.session.flush()
        except IntegrityError:
            raise ConflictError(
                f"Truck number {truck_number} is already registered"
            ) from None

    async def create_truck(
        self,
        user: UserModel,
        *,
        permit: str,
        truck_number: str,
        location_place: str,
        location: GeoPoint,
        capacity,
        vehicle_body_type,
        truck_type,
        truck_body_type,
        tyre_count: int,
        rc_image: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TruckModel:
        if user.user_type is UserType.TRANSPORTER:
            raise AuthorizationError("Only truckers can post trucks")
        number = normalize_truck_number(truck_number)
        window = ListingWindow.for_truck(self.ttl, now)
        truck = TruckModel(
            owner_id=user.id,
            permit=permit,
            truck_number=number,
            location_place=location_place,
            location_lat=location.latitude,
            location_lng=location.longitude,
            location_cell=point_cell(location, settings.h3_resolution),
            capacity=_positive(capacity, "Truck capacity"),
            vehicle_body_type=_enum_value(
                VehicleBodyType, vehicle_body_type, "vehicle body type"
            ),
            truck_type=_enum_value(VehicleType, truck_type, "truck type"),
            truck_body_type=_enum_value(
                TruckBodyType, truck_body_type, "truck body type"
            ),
            tyre_count=int(_positive(tyre_count, "Tyre count")),
            rc_image=rc_image,
            rc_status=RCStatus.PENDING,
            is_rc_verified=False,
            ratings=[],
            total_bids=0,
            expires_at=window.expires_at,
        )
        await self._write_unique(number, lambda: self.session.add(truck))
        logger.info("Truck %s (%s) posted by user %s", truck.id, number, user.id)
        return truck

    async def update_truck(
        self, user: UserModel, truck_id: int, changes: dict[str, Any]
    ) -> TruckModel:
        truck = await self._owned_truck(user, truck_id)
        unknown = set(changes) - TRUCK_UPDATABLE
        if unknown:
            raise ValidationError(
                f"Cannot update field(s): {', '.join(sorted(unknown))}"
            )
        if "location" in changes:
            point: GeoPoint = changes["location"]
            truck.location_lat, truck.location_lng = point.latitude, point.longitude
            truck.location_cell = point_cell(point, settings.h3_resolution)
        for field in ("permit", "location_place", "rc_image"):
            if field in changes:
                setattr(truck, field, changes[field])
        if "capacity" in changes:
            truck.capacity = _positive(changes["capacity"], "Truck capacity")
        if "tyre_count" in changes:
            truck.tyre_count = int(_positive(changes["tyre_count"], "Tyre count"))
        if "vehicle_body_type" in changes:
            truck.vehicle_body_type = _enum_value(
                VehicleBodyType, changes["vehicle_body_type"], "vehicle body type"
            )
        if "truck_type" in changes:
            truck.truck_type = _enum_value(
                VehicleType, changes["truck_type"], "truck type"
            )
        if "truck_body_type" in changes:
            truck.truck_body_type = _enum_value(
                TruckBodyType, changes["truck_body_type"], "truck body type"
            )
        if "truck_number" in changes:
            number = normalize_truck_number(changes["truck_number"])
            if number != truck.truck_number:
                await self._write_unique(
                    number, lambda: setattr(truck, "truck_number", number)
                )
        await self.session.flush()
        return truck

    async def delete_truck(self, user: UserModel, truck_id: int) -> None:
        truck = await self._owned_truck(user, truck_id, fresh=True)
        if truck.current_bid_id is not None:
            raise ConflictError("Cannot delete a truck with an accepted bid")
        await self.trucks.delete(truck)
        logger.info("Truck %s deleted by user %s", truck_id, user.id)

    async def repost_truck(
        self, user: UserModel, truck_id: int, now: Optional[datetime] = None
    ) -> TruckModel:
        """Start a new posting cycle: fresh window, empty bid list, quota reset.

        A matched truck stays matched; ``current_bid_id`` is left untouched.
        """
        truck = await self._owned_truck(user, truck_id)
        await self.trucks.clear_bids(truck.id)
        await self.trucks.restart_cycle(truck.id, (now or utcnow()) + self.ttl)
        truck = await self.trucks.get_by_id(truck.id, fresh=True)
        logger.info("Truck %s reposted", truck.id)
        return truck

    async def pause_truck(
        self, user: UserModel, truck_id: int, now: Optional[datetime] = None
    ) -> TruckModel:
        truck = await self._owned_truck(user, truck_id)
        truck.expires_at = now or utcnow()
        await self.session.flush()
        return truck

    async def truck_bid_ids(self, truck_id: int) -> list[int]:
        return await self.trucks.bid_ids(truck_id)

    async def verify_rc(
        self, admin: UserModel, truck_id: int, status: RCStatus
    ) -> TruckModel:
        if admin.user_type is not UserType.ADMIN:
            raise AuthorizationError("Only admins can verify registration certificates")
        status = _enum_value(RCStatus, status, "RC status")
        if status is RCStatus.PENDING:
            raise ValidationError("RC status must be APPROVED or REJECTED")
        truck = await self.get_truck(truck_id)
        truck.rc_status = status
        truck.is_rc_verified = status is RCStatus.APPROVED
        await self.session.flush()
        logger.info("Truck %s RC %s by admin %s", truck.id, status.value, admin.id)
        return truck
