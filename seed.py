"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 6 sample passengers
  - 12 sample drivers (spread around central Lima, all three service types)
  - 3 sample coupons (percentage, fixed, disabled)
  - the "main" pricing settings and one special-fare rule
"""

import asyncio
from datetime import date, timedelta

from sqlalchemy import text

from ridecore.config import settings
from ridecore.domain.enums import CouponStatus, DiscountType, DriverStatus, ServiceType
from ridecore.domain.matching import location_cell
from ridecore.infrastructure.database import async_session_factory, engine, utcnow
from ridecore.infrastructure.models import (
    CouponModel,
    DriverModel,
    PassengerModel,
    PricingSettingsModel,
    SpecialFareRuleModel,
)

# Plaza de Armas, Lima (approx)
CENTER_LAT, CENTER_LNG = -12.0464, -77.0428


PASSENGERS = [
    {"name": "Lucía Quispe", "email": "lucia@example.com"},
    {"name": "Mateo Huamán", "email": "mateo@example.com"},
    {"name": "Valeria Rojas", "email": "valeria@example.com"},
    {"name": "Diego Flores", "email": "diego@example.com"},
    {"name": "Camila Torres", "email": "camila@example.com"},
    {"name": "Sebastián Vargas", "email": "sebastian@example.com"},
]

DRIVERS = [
    # Economy
    {"name": "Jorge Mamani", "service_type": ServiceType.ECONOMY, "lat": -12.0470, "lng": -77.0420},
    {"name": "Rosa Chávez", "service_type": ServiceType.ECONOMY, "lat": -12.0455, "lng": -77.0440},
    {"name": "Luis Ramos", "service_type": ServiceType.ECONOMY, "lat": -12.0490, "lng": -77.0400},
    {"name": "Ana Castillo", "service_type": ServiceType.ECONOMY, "lat": -12.0510, "lng": -77.0460},
    {"name": "Pedro Salazar", "service_type": ServiceType.ECONOMY, "lat": -12.0430, "lng": -77.0390},
    # Comfort
    {"name": "Carmen Vega", "service_type": ServiceType.COMFORT, "lat": -12.0468, "lng": -77.0432},
    {"name": "Miguel Paredes", "service_type": ServiceType.COMFORT, "lat": -12.0500, "lng": -77.0415},
    {"name": "Sofía Medina", "service_type": ServiceType.COMFORT, "lat": -12.0440, "lng": -77.0450},
    {"name": "Andrés Ríos", "service_type": ServiceType.COMFORT, "lat": -12.0520, "lng": -77.0380},
    # Exclusive
    {"name": "Elena Cruz", "service_type": ServiceType.EXCLUSIVE, "lat": -12.0460, "lng": -77.0425},
    {"name": "Raúl Gutiérrez", "service_type": ServiceType.EXCLUSIVE, "lat": -12.0485, "lng": -77.0445},
    {"name": "Patricia León", "service_type": ServiceType.EXCLUSIVE, "lat": -12.0420, "lng": -77.0410},
]

COUPONS = [
    {"code": "WELCOME10", "discount_type": DiscountType.PERCENTAGE, "value": 10.0,
     "days": 90, "status": CouponStatus.ACTIVE, "min_spend": None, "usage_limit": 100},
    {"code": "FLAT5", "discount_type": DiscountType.FIXED, "value": 5.0,
     "days": 30, "status": CouponStatus.ACTIVE, "min_spend": 15.0, "usage_limit": None},
    {"code": "OLDPROMO", "discount_type": DiscountType.PERCENTAGE, "value": 50.0,
     "days": 365, "status": CouponStatus.DISABLED, "min_spend": None, "usage_limit": None},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM passengers"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        now = utcnow()

        # ── Passengers ────────────────────────────────────────────────
        for p in PASSENGERS:
            session.add(PassengerModel(name=p["name"], email=p["email"]))
        await session.flush()
        print(f"  Created {len(PASSENGERS)} passengers")

        # ── Drivers ───────────────────────────────────────────────────
        for d in DRIVERS:
            session.add(
                DriverModel(
                    name=d["name"],
                    service_type=d["service_type"],
                    status=DriverStatus.AVAILABLE,
                    lat=d["lat"],
                    lng=d["lng"],
                    h3_cell=location_cell(d["lat"], d["lng"], settings.h3_resolution),
                    location_updated_at=now,
                )
            )
        await session.flush()
        print(f"  Created {len(DRIVERS)} drivers (all available)")

        # ── Coupons ───────────────────────────────────────────────────
        for c in COUPONS:
            session.add(
                CouponModel(
                    code=c["code"],
                    discount_type=c["discount_type"],
                    value=c["value"],
                    expiry_date=now + timedelta(days=c["days"]),
                    status=c["status"],
                    min_spend=c["min_spend"],
                    usage_limit=c["usage_limit"],
                )
            )
        print(f"  Created {len(COUPONS)} coupons")

        # ── Pricing ───────────────────────────────────────────────────
        session.add(
            PricingSettingsModel(
                id="main",
                base_fare=settings.default_base_fare,
                per_km_fare=settings.default_per_km_fare,
                per_minute_fare=settings.default_per_minute_fare,
                negotiation_range_percent=settings.default_negotiation_range_percent,
                service_multipliers=dict(settings.default_service_multipliers),
                peak_time_rules=list(settings.default_peak_time_rules),
            )
        )
        year = date.today().year
        session.add(
            SpecialFareRuleModel(
                position=0,
                name="Fiestas Patrias",
                start_date=date(year, 7, 28),
                end_date=date(year, 7, 29),
                surcharge_percent=20.0,
            )
        )
        print("  Created pricing settings and 1 special-fare rule")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
