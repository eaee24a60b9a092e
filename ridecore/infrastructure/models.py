"""
SQLAlchemy ORM models.

Tables
------
* ``passengers``          -- riders and their completed-ride counter
* ``drivers``             -- availability flag, service type, last position
* ``rides``               -- the ride aggregate (assignment + lifecycle + fare)
* ``ride_rejections``     -- append-only set of drivers who declined / timed out
* ``coupons``             -- discount codes
* ``pricing_settings``    -- single-row tariff ("main")
* ``special_fare_rules``  -- ordered date-range surcharges

Indexes
-------
* **B-Tree** on ``drivers(status, service_type)`` and ``drivers.h3_cell`` for
  candidate lookup by H3 search disk.
* **B-Tree** on ``rides.status``, ``rides.offered_to_id``,
  ``rides.offer_expires_at`` for the coordinator and the offer sweeper.
* **Unique** ``(ride_id, driver_id)`` on ``ride_rejections`` -- a driver is
  rejected at most once per ride, rows are never deleted.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)

from .database import Base
from ridecore.domain.enums import (
    CancelActor,
    CouponStatus,
    DiscountType,
    DriverStatus,
    NegotiationStatus,
    PaymentMethod,
    RideStatus,
    ServiceType,
)


def _enum(enum_cls, name: str) -> Enum:
    """Store enum *values* ("in-progress"), not member names."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )


class PassengerModel(Base):
    __tablename__ = "passengers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    completed_rides = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    service_type = Column(_enum(ServiceType, "service_type"), nullable=False)
    status = Column(
        _enum(DriverStatus, "driver_status"),
        default=DriverStatus.UNAVAILABLE,
        nullable=False,
    )
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    h3_cell = Column(String(20), nullable=True)
    location_updated_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("idx_drivers_status_service", "status", "service_type"),
        Index("idx_drivers_cell", "h3_cell"),
    )


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    passenger_id = Column(Integer, ForeignKey("passengers.id"), nullable=False)

    pickup_address = Column(String(255), nullable=False, default="")
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    dropoff_address = Column(String(255), nullable=False, default="")
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)

    service_type = Column(_enum(ServiceType, "service_type"), nullable=False)
    payment_method = Column(_enum(PaymentMethod, "payment_method"), nullable=False)
    status = Column(
        _enum(RideStatus, "ride_status"), default=RideStatus.SEARCHING, nullable=False
    )

    # Assignment: at most one live offer, then one driver.
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)
    offered_to_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)
    offer_expires_at = Column(DateTime, nullable=True)
    driver_counter_fare = Column(Float, nullable=True)
    search_exhausted = Column(Boolean, default=False, nullable=False)

    # Fare: reference (pre-coupon quote) -> agreed (pre-coupon) -> final (paid).
    fare_breakdown = Column(JSON, nullable=False)
    reference_fare = Column(Float, nullable=False)
    agreed_fare = Column(Float, nullable=False)
    final_fare = Column(Float, nullable=False)
    coupon_code = Column(String(64), nullable=True)
    coupon_discount_type = Column(_enum(DiscountType, "discount_type"), nullable=True)
    coupon_value = Column(Float, nullable=True)

    # Passenger-side negotiation.
    negotiation_status = Column(
        _enum(NegotiationStatus, "negotiation_status"), nullable=True
    )
    negotiation_rounds = Column(Integer, default=0, nullable=False)
    proposed_fare = Column(Float, nullable=True)
    counter_fare = Column(Float, nullable=True)
    negotiation_expires_at = Column(DateTime, nullable=True)

    cancellation_reason = Column(String(64), nullable=True)
    cancelled_by = Column(_enum(CancelActor, "cancel_actor"), nullable=True)
    is_rateable = Column(Boolean, default=False, nullable=False)
    idempotency_key = Column(String(64), unique=True, nullable=True)

    requested_at = Column(DateTime, nullable=False)
    accepted_at = Column(DateTime, nullable=True)
    arrived_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    updated_at = Column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_passenger", "passenger_id"),
        Index("idx_rides_driver", "driver_id"),
        Index("idx_rides_offered_to", "offered_to_id"),
        Index("idx_rides_offer_expiry", "offer_expires_at"),
    )


class RideRejectionModel(Base):
    __tablename__ = "ride_rejections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False)
    reason = Column(String(32), nullable=False)  # rejected | timeout | counter_declined | unavailable
    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("ride_id", "driver_id", name="uq_ride_rejections_ride_driver"),
        Index("idx_ride_rejections_ride", "ride_id"),
    )


class CouponModel(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(64), unique=True, nullable=False)
    discount_type = Column(_enum(DiscountType, "discount_type"), nullable=False)
    value = Column(Float, nullable=False)
    expiry_date = Column(DateTime, nullable=False)
    status = Column(
        _enum(CouponStatus, "coupon_status"), default=CouponStatus.ACTIVE, nullable=False
    )
    min_spend = Column(Float, nullable=True)
    usage_limit = Column(Integer, nullable=True)
    times_used = Column(Integer, default=0, nullable=False)


class PricingSettingsModel(Base):
    __tablename__ = "pricing_settings"

    id = Column(String(32), primary_key=True, default="main")
    base_fare = Column(Float, nullable=False)
    per_km_fare = Column(Float, nullable=False)
    per_minute_fare = Column(Float, nullable=False)
    negotiation_range_percent = Column(Float, nullable=False)
    service_multipliers = Column(JSON, nullable=False)
    peak_time_rules = Column(JSON, nullable=False)  # ordered list of dicts
    updated_at = Column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )


class SpecialFareRuleModel(Base):
    __tablename__ = "special_fare_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    position = Column(Integer, nullable=False, default=0)  # declaration order
    name = Column(String(120), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    surcharge_percent = Column(Float, nullable=False)

    __table_args__ = (Index("idx_special_fare_rules_position", "position"),)
