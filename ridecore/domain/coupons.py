"""
Coupon evaluation.

A coupon is valid iff it is active, not past its expiry date, the amount
reaches ``min_spend`` (when set) and its usage limit is not exhausted.
Evaluation is read-only: the usage counter is consumed by the booking
operation through ``CouponRepository.consume``, never at quote time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .entities import Coupon
from .enums import CouponStatus, DiscountType
from .errors import CouponError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CouponResult:
    applied: bool
    discount: float = 0.0
    reason: Optional[str] = None


def validate_coupon(coupon: Optional[Coupon], amount: float, now: datetime) -> Coupon:
    """Return *coupon* if it may be applied to *amount*, else raise ``CouponError``."""
    if coupon is None:
        raise CouponError(CouponError.NOT_FOUND, "Coupon not found")
    if coupon.status == CouponStatus.DISABLED:
        raise CouponError(CouponError.DISABLED, f"Coupon {coupon.code} is disabled")
    if coupon.status == CouponStatus.EXPIRED or now > coupon.expiry_date:
        raise CouponError(CouponError.EXPIRED, f"Coupon {coupon.code} has expired")
    if coupon.min_spend is not None and amount < coupon.min_spend:
        raise CouponError(
            CouponError.BELOW_MIN_SPEND,
            f"Coupon {coupon.code} requires a minimum spend of {coupon.min_spend}",
        )
    if coupon.usage_limit is not None and coupon.times_used >= coupon.usage_limit:
        raise CouponError(
            CouponError.USAGE_LIMIT_REACHED,
            f"Coupon {coupon.code} has no uses left",
        )
    return coupon


def apply_discount(discount_type: DiscountType, value: float, amount: float) -> float:
    """Discount for *amount*, clamped to ``[0, amount]``."""
    if discount_type == DiscountType.PERCENTAGE:
        discount = amount * (value / 100)
    else:
        discount = value
    return max(0.0, min(amount, discount))


def evaluate_coupon(
    code: Optional[str],
    coupon: Optional[Coupon],
    amount: float,
    now: datetime,
) -> CouponResult:
    """Never raises: a rejected coupon yields ``applied=False`` with a reason."""
    if not code:
        return CouponResult(applied=False)
    try:
        valid = validate_coupon(coupon, amount, now)
    except CouponError as exc:
        logger.info("Coupon %s not applied: %s", code, exc.reason)
        return CouponResult(applied=False, reason=exc.reason)
    return CouponResult(
        applied=True,
        discount=apply_discount(valid.discount_type, valid.value, amount),
    )
