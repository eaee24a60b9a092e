"""Initial schema: passengers, drivers, rides, rejections, coupons, pricing.

Revision ID: 001
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

_ENUMS = {
    "ride_status": (
        "searching",
        "counter-offered",
        "accepted",
        "arrived",
        "in-progress",
        "completed",
        "cancelled",
    ),
    "service_type": ("economy", "comfort", "exclusive"),
    "payment_method": ("cash", "yape", "plin"),
    "driver_status": ("available", "unavailable", "on-ride"),
    "discount_type": ("percentage", "fixed"),
    "coupon_status": ("active", "expired", "disabled"),
    "cancel_actor": ("passenger", "driver", "system"),
    "negotiation_status": ("negotiating", "accepted", "counter-offered", "rejected"),
}


def _enum(name: str) -> postgresql.ENUM:
    """Reference a type created once in ``upgrade``; columns never re-create it."""
    return postgresql.ENUM(*_ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in _ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # ── passengers ────────────────────────────────────────────────────
    op.create_table(
        "passengers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("completed_rides", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("service_type", _enum("service_type"), nullable=False),
        sa.Column(
            "status",
            _enum("driver_status"),
            nullable=False,
            server_default="unavailable",
        ),
        sa.Column("lat", sa.Float, nullable=True),
        sa.Column("lng", sa.Float, nullable=True),
        sa.Column("h3_cell", sa.String(20), nullable=True),
        sa.Column("location_updated_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index(
        "idx_drivers_status_service", "drivers", ["status", "service_type"]
    )
    op.create_index("idx_drivers_cell", "drivers", ["h3_cell"])

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "passenger_id", sa.Integer, sa.ForeignKey("passengers.id"), nullable=False
        ),
        sa.Column("pickup_address", sa.String(255), nullable=False, server_default=""),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("dropoff_address", sa.String(255), nullable=False, server_default=""),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("service_type", _enum("service_type"), nullable=False),
        sa.Column(
            "payment_method",
            _enum("payment_method"),
            nullable=False,
        ),
        sa.Column(
            "status",
            _enum("ride_status"),
            nullable=False,
            server_default="searching",
        ),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column(
            "offered_to_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True
        ),
        sa.Column("offer_expires_at", sa.DateTime, nullable=True),
        sa.Column("driver_counter_fare", sa.Float, nullable=True),
        sa.Column(
            "search_exhausted", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column("fare_breakdown", sa.JSON, nullable=False),
        sa.Column("reference_fare", sa.Float, nullable=False),
        sa.Column("agreed_fare", sa.Float, nullable=False),
        sa.Column("final_fare", sa.Float, nullable=False),
        sa.Column("coupon_code", sa.String(64), nullable=True),
        sa.Column("coupon_discount_type", _enum("discount_type"), nullable=True),
        sa.Column("coupon_value", sa.Float, nullable=True),
        sa.Column(
            "negotiation_status",
            _enum("negotiation_status"),
            nullable=True,
        ),
        sa.Column("negotiation_rounds", sa.Integer, nullable=False, server_default="0"),
        sa.Column("proposed_fare", sa.Float, nullable=True),
        sa.Column("counter_fare", sa.Float, nullable=True),
        sa.Column("negotiation_expires_at", sa.DateTime, nullable=True),
        sa.Column("cancellation_reason", sa.String(64), nullable=True),
        sa.Column(
            "cancelled_by",
            _enum("cancel_actor"),
            nullable=True,
        ),
        sa.Column("is_rateable", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("idempotency_key", sa.String(64), unique=True, nullable=True),
        sa.Column("requested_at", sa.DateTime, nullable=False),
        sa.Column("accepted_at", sa.DateTime, nullable=True),
        sa.Column("arrived_at", sa.DateTime, nullable=True),
        sa.Column("started_at", sa.DateTime, nullable=True),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.Column("cancelled_at", sa.DateTime, nullable=True),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_passenger", "rides", ["passenger_id"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])
    op.create_index("idx_rides_offered_to", "rides", ["offered_to_id"])
    op.create_index("idx_rides_offer_expiry", "rides", ["offer_expires_at"])

    # ── ride_rejections (append-only) ─────────────────────────────────
    op.create_table(
        "ride_rejections",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("ride_id", sa.Integer, sa.ForeignKey("rides.id"), nullable=False),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=False),
        sa.Column("reason", sa.String(32), nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "ride_id", "driver_id", name="uq_ride_rejections_ride_driver"
        ),
    )
    op.create_index("idx_ride_rejections_ride", "ride_rejections", ["ride_id"])

    # ── coupons ───────────────────────────────────────────────────────
    op.create_table(
        "coupons",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(64), unique=True, nullable=False),
        sa.Column("discount_type", _enum("discount_type"), nullable=False),
        sa.Column("value", sa.Float, nullable=False),
        sa.Column("expiry_date", sa.DateTime, nullable=False),
        sa.Column(
            "status",
            _enum("coupon_status"),
            nullable=False,
            server_default="active",
        ),
        sa.Column("min_spend", sa.Float, nullable=True),
        sa.Column("usage_limit", sa.Integer, nullable=True),
        sa.Column("times_used", sa.Integer, nullable=False, server_default="0"),
    )

    # ── pricing_settings / special_fare_rules ─────────────────────────
    op.create_table(
        "pricing_settings",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("base_fare", sa.Float, nullable=False),
        sa.Column("per_km_fare", sa.Float, nullable=False),
        sa.Column("per_minute_fare", sa.Float, nullable=False),
        sa.Column("negotiation_range_percent", sa.Float, nullable=False),
        sa.Column("service_multipliers", sa.JSON, nullable=False),
        sa.Column("peak_time_rules", sa.JSON, nullable=False),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_table(
        "special_fare_rules",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("start_date", sa.Date, nullable=False),
        sa.Column("end_date", sa.Date, nullable=False),
        sa.Column("surcharge_percent", sa.Float, nullable=False),
    )
    op.create_index(
        "idx_special_fare_rules_position", "special_fare_rules", ["position"]
    )


def downgrade() -> None:
    op.drop_table("special_fare_rules")
    op.drop_table("pricing_settings")
    op.drop_table("coupons")
    op.drop_table("ride_rejections")
    op.drop_table("rides")
    op.drop_table("drivers")
    op.drop_table("passengers")
    for name in _ENUMS:
        op.execute(f"DROP TYPE IF EXISTS {name}")
