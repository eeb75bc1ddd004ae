"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 8 sample users (transporters, truckers, one admin)
  - 6 sample loads (Delhi NCR and Mumbai lanes, one scheduled)
  - 6 sample trucks (spread around Delhi and Mumbai)
  - 2 sample bids, one of them accepted
"""

import asyncio
from datetime import timedelta

from sqlalchemy import text

from loadmatch.domain.entities import GeoPoint, utcnow
from loadmatch.domain.enums import (
    BidType,
    MaterialType,
    TruckBodyType,
    Urgency,
    UserType,
    VehicleBodyType,
    VehicleType,
)
from loadmatch.infrastructure.database import async_session_factory
from loadmatch.infrastructure.models import UserModel
from loadmatch.services.bidding import BidLifecycleEngine
from loadmatch.services.listings import ListingService

PLACES = {
    "Delhi": (28.6139, 77.2090),
    "Gurgaon": (28.4595, 77.0266),
    "Noida": (28.5355, 77.3910),
    "Jaipur": (26.9124, 75.7873),
    "Mumbai": (19.0760, 72.8777),
    "Pune": (18.5204, 73.8567),
    "Nashik": (19.9975, 73.7898),
}


USERS = [
    {"name": "Aarav Sharma", "mobile": "9810000001", "user_type": UserType.TRANSPORTER, "company_name": "Sharma Logistics"},
    {"name": "Priya Patel", "mobile": "9810000002", "user_type": UserType.TRANSPORTER, "company_name": "Patel Freight"},
    {"name": "Rohan Mehta", "mobile": "9810000003", "user_type": UserType.TRANSPORTER, "company_name": None},
    {"name": "Vikram Singh", "mobile": "9810000004", "user_type": UserType.TRUCKER, "company_name": None},
    {"name": "Karan Joshi", "mobile": "9810000005", "user_type": UserType.TRUCKER, "company_name": None},
    {"name": "Meera Nair", "mobile": "9810000006", "user_type": UserType.TRUCKER, "company_name": "Nair Carriers"},
    {"name": "Arjun Kumar", "mobile": "9810000007", "user_type": UserType.TRUCKER, "company_name": None},
    {"name": "Diya Iyer", "mobile": "9810000008", "user_type": UserType.ADMIN, "company_name": None},
]

LOADS = [
    # (transporter index, material, weight, source, destination, offered)
    (0, MaterialType.STEEL, 18.0, "Delhi", "Jaipur", 42000),
    (0, MaterialType.PACKAGED_FOOD, 9.5, "Gurgaon", "Delhi", 12000),
    (1, MaterialType.CEMENT, 25.0, "Noida", "Jaipur", 48000),
    (1, MaterialType.VEGETABLES, 12.0, "Mumbai", "Pune", 18000),
    (2, MaterialType.INDUSTRIAL_EQUIPMENT, 6.0, "Pune", "Mumbai", 16000),
    (2, MaterialType.TEXTILES, 8.0, "Nashik", "Mumbai", 15000),
]

TRUCKS = [
    # (trucker index, number, place, capacity, type, body)
    (3, "DL01AB1234", "Delhi", 20.0, VehicleType.TRUCK, TruckBodyType.OPEN_FULL_BODY),
    (3, "HR26CD5678", "Gurgaon", 12.0, VehicleType.HYVA, TruckBodyType.FULL_CLOSED_BODY),
    (4, "UP16EF9012", "Noida", 28.0, VehicleType.TRAILER, TruckBodyType.OPEN_FULL_BODY),
    (5, "MH01GH3456", "Mumbai", 14.0, VehicleType.TRUCK, TruckBodyType.FULL_CLOSED_BODY),
    (5, "MH12IJ7890", "Pune", 10.0, VehicleType.HYVA, TruckBodyType.OPEN_FULL_BODY),
    (6, "MH15KL2345", "Nashik", 16.0, VehicleType.TRUCK, TruckBodyType.OPEN_FULL_BODY),
]


def _point(place: str) -> GeoPoint:
    lat, lng = PLACES[place]
    return GeoPoint(latitude=lat, longitude=lng)


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users ─────────────────────────────────────────────────────
        user_models = []
        for i, u in enumerate(USERS):
            m = UserModel(
                name=u["name"],
                mobile=u["mobile"],
                company_name=u["company_name"],
                user_type=u["user_type"],
                bl_coins=500,
                device_tokens=[{"token": f"ExponentPushToken[seed-{i + 1}]"}],
            )
            session.add(m)
            user_models.append(m)
        await session.flush()
        print(f"  Created {len(user_models)} users")

        listings = ListingService(session)

        # ── Loads ─────────────────────────────────────────────────────
        load_models = []
        for owner, material, weight, src, dst, offered in LOADS:
            load = await listings.create_load(
                user_models[owner],
                material_type=material,
                weight=weight,
                source_place=src,
                source=_point(src),
                destination_place=dst,
                destination=_point(dst),
                vehicle_body_type=VehicleBodyType.OPEN_BODY,
                vehicle_type=VehicleType.TRUCK,
                number_of_wheels=10,
                offered_total=offered,
                advance_percentage=20,
                diesel_liters=50,
            )
            load_models.append(load)

        scheduled = await listings.create_load(
            user_models[0],
            material_type=MaterialType.OTHERS,
            weight=5.0,
            source_place="Delhi",
            source=_point("Delhi"),
            destination_place="Noida",
            destination=_point("Noida"),
            vehicle_body_type=VehicleBodyType.CLOSED_BODY,
            vehicle_type=VehicleType.HYVA,
            number_of_wheels=6,
            offered_total=6000,
            urgency=Urgency.SCHEDULED,
            schedule_date=utcnow() + timedelta(days=1),
        )
        load_models.append(scheduled)
        print(f"  Created {len(load_models)} loads (1 scheduled)")

        # ── Trucks ────────────────────────────────────────────────────
        truck_models = []
        for owner, number, place, capacity, truck_type, body in TRUCKS:
            truck = await listings.create_truck(
                user_models[owner],
                permit="NATIONAL",
                truck_number=number,
                location_place=place,
                location=_point(place),
                capacity=capacity,
                vehicle_body_type=VehicleBodyType.OPEN_BODY,
                truck_type=truck_type,
                truck_body_type=body,
                tyre_count=10,
            )
            truck_models.append(truck)
        print(f"  Created {len(truck_models)} trucks")

        # ── Bids ──────────────────────────────────────────────────────
        engine = BidLifecycleEngine(session)
        offer = await engine.create_bid(
            user_models[0],
            BidType.LOAD_BID,
            load_models[0].id,
            truck_models[0].id,
            40000,
            note="Can load tomorrow morning",
        )
        await engine.create_bid(
            user_models[5],
            BidType.TRUCK_REQUEST,
            load_models[3].id,
            truck_models[3].id,
            17500,
        )
        await engine.accept_bid(offer.id, user_models[3])
        print("  Created 2 bids (1 accepted)")

        await session.commit()
        print("Seed complete!")


if __name__ == "__main__":
    asyncio.run(seed())
