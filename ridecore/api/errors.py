"""Translate structured service results into HTTP responses."""

from fastapi import HTTPException

from ridecore.api.schemas import RideActionResponse, RideResponse
from ridecore.domain.errors import (
    AssignmentConflict,
    CouponError,
    InvalidTransition,
    ValidationError,
)
from ridecore.services.results import RIDE_NOT_FOUND, RideResult

STATUS_BY_CODE = {
    RIDE_NOT_FOUND: 404,
    ValidationError.code: 422,
    CouponError.code: 422,
    InvalidTransition.code: 409,
    AssignmentConflict.code: 409,
}


def raise_for_result(result: RideResult) -> None:
    if result.success:
        return
    status = STATUS_BY_CODE.get(result.error_code, 409)
    raise HTTPException(
        status_code=status,
        detail={"code": result.error_code, "message": result.message},
    )


def action_response(result: RideResult) -> RideActionResponse:
    raise_for_result(result)
    return RideActionResponse(
        ride=RideResponse.model_validate(result.ride),
        message=result.message,
        details=result.extra,
    )
