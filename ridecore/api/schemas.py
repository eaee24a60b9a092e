"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ridecore.domain.enums import (
    CancelActor,
    DriverStatus,
    NegotiationStatus,
    OfferDecision,
    PaymentMethod,
    RideStatus,
    ServiceType,
)
from ridecore.domain.errors import ConfigurationError
from ridecore.domain.pricing import parse_clock


# ── Requests ──────────────────────────────────────────────────────────


class QuoteRequest(BaseModel):
    distance_km: float = Field(..., ge=0)
    duration_minutes: float = Field(..., ge=0)
    service_type: ServiceType
    ride_timestamp: Optional[datetime] = Field(
        None,
        description="Defaults to now.  A naive value is read as service-local time.",
    )
    coupon_code: Optional[str] = Field(None, max_length=64)


class RideCreateRequest(BaseModel):
    passenger_id: int
    pickup_lat: float = Field(..., ge=-90, le=90)
    pickup_lng: float = Field(..., ge=-180, le=180)
    dropoff_lat: float = Field(..., ge=-90, le=90)
    dropoff_lng: float = Field(..., ge=-180, le=180)
    pickup_address: str = Field("", max_length=255)
    dropoff_address: str = Field("", max_length=255)
    distance_km: float = Field(..., ge=0)
    duration_minutes: float = Field(..., ge=0)
    service_type: ServiceType
    payment_method: PaymentMethod = PaymentMethod.CASH
    ride_timestamp: Optional[datetime] = None
    coupon_code: Optional[str] = Field(None, max_length=64)
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent double-booking on retries.",
    )


class FareProposalRequest(BaseModel):
    passenger_id: int
    amount: float = Field(..., gt=0)


class OfferResponseRequest(BaseModel):
    driver_id: int
    decision: OfferDecision
    amount: Optional[float] = Field(None, gt=0, description="Required for a counter.")


class CounterOfferResponseRequest(BaseModel):
    passenger_id: int
    accept: bool


class StatusUpdateRequest(BaseModel):
    driver_id: int
    status: RideStatus


class CancelRequest(BaseModel):
    actor: CancelActor
    actor_id: Optional[int] = None
    reason_code: Optional[str] = Field(None, max_length=64)


class DriverAvailabilityRequest(BaseModel):
    available: bool


class DriverLocationRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class PeakTimeRuleSchema(BaseModel):
    name: str
    start_time: str = Field(..., description="HH:mm")
    end_time: str = Field(..., description="HH:mm, may wrap past midnight")
    surcharge_percent: float = Field(..., ge=0)

    @field_validator("start_time", "end_time")
    @classmethod
    def _clock(cls, value: str) -> str:
        try:
            parse_clock(value)
        except ConfigurationError as exc:
            raise ValueError(str(exc)) from exc
        return value


class SpecialFareRuleSchema(BaseModel):
    name: str
    start_date: date
    end_date: date
    surcharge_percent: float = Field(..., ge=0)

    @model_validator(mode="after")
    def _ordered(self) -> "SpecialFareRuleSchema":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class PricingSettingsPayload(BaseModel):
    base_fare: float = Field(..., ge=0)
    per_km_fare: float = Field(..., ge=0)
    per_minute_fare: float = Field(..., ge=0)
    negotiation_range_percent: float = Field(15.0, ge=0, lt=100)
    service_multipliers: dict[str, float]
    peak_time_rules: list[PeakTimeRuleSchema] = []
    special_fare_rules: list[SpecialFareRuleSchema] = []

    @field_validator("service_multipliers")
    @classmethod
    def _multipliers(cls, value: dict[str, float]) -> dict[str, float]:
        if any(m < 0 for m in value.values()):
            raise ValueError("service multipliers must be >= 0")
        return value


# ── Responses ─────────────────────────────────────────────────────────


class QuoteResponse(BaseModel):
    base_fare: float
    distance_cost: float
    duration_cost: float
    service_multiplier: float
    service_cost: float
    peak_surcharge: float
    special_day_surcharge: float
    coupon_discount: float
    subtotal: float
    fare_before_discount: float
    total: float
    coupon_code: Optional[str] = None
    coupon_reason: Optional[str] = None
    special_rule_name: Optional[str] = None
    is_peak: bool = False
    warnings: list[str] = []
    pricing_source: str = "database"


class RideResponse(BaseModel):
    id: int
    passenger_id: int
    status: RideStatus
    service_type: ServiceType
    payment_method: PaymentMethod
    pickup_address: str = ""
    pickup_lat: float
    pickup_lng: float
    dropoff_address: str = ""
    dropoff_lat: float
    dropoff_lng: float
    driver_id: Optional[int] = None
    offered_to_id: Optional[int] = None
    offer_expires_at: Optional[datetime] = None
    driver_counter_fare: Optional[float] = None
    search_exhausted: bool = False
    fare_breakdown: dict[str, Any] = {}
    reference_fare: float
    agreed_fare: float
    final_fare: float
    coupon_code: Optional[str] = None
    negotiation_status: Optional[NegotiationStatus] = None
    negotiation_rounds: int = 0
    proposed_fare: Optional[float] = None
    counter_fare: Optional[float] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[CancelActor] = None
    is_rateable: bool = False
    requested_at: datetime
    accepted_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RideActionResponse(BaseModel):
    ride: RideResponse
    message: str = ""
    details: dict[str, Any] = {}


class DriverResponse(BaseModel):
    id: int
    name: str
    service_type: ServiceType
    status: DriverStatus
    lat: Optional[float] = None
    lng: Optional[float] = None
    h3_cell: Optional[str] = None
    location_updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PricingSettingsResponse(PricingSettingsPayload):
    source: str


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
