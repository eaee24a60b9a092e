"""
Price grid normalisation.

Rule
----
1. Round half-up to the nearest 0.10.
2. Round half-up to the nearest multiple of the grid step (default 0.50).

Both steps are monotonic, so their composition is monotonic; grid points are
multiples of 0.10, so the result is a fixed point (idempotent).  The combined
error never exceeds half a grid step.

Arithmetic is done on ``Decimal(str(x))`` so that binary float artefacts such
as ``22.75 -> 22.749999...`` cannot flip a rounding boundary.
"""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal

from .errors import ValidationError

DEFAULT_GRID_STEP = 0.50
_TENTH = Decimal("0.1")


def _grid(step: float) -> Decimal:
    grid = Decimal(str(step))
    if grid <= 0:
        raise ValidationError(f"grid step must be positive, got {step}")
    return grid


def normalize_price(amount: float, step: float = DEFAULT_GRID_STEP) -> float:
    """Snap *amount* to the quotable price grid."""
    if amount < 0:
        raise ValidationError(f"cannot normalize a negative amount: {amount}")
    grid = _grid(step)
    tenths = Decimal(str(amount)).quantize(_TENTH, rounding=ROUND_HALF_UP)
    units = (tenths / grid).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return float(units * grid)


def ceil_to_grid(amount: float, step: float = DEFAULT_GRID_STEP) -> float:
    """Smallest grid point that is >= *amount*."""
    if amount < 0:
        raise ValidationError(f"cannot align a negative amount: {amount}")
    grid = _grid(step)
    units = (Decimal(str(amount)) / grid).quantize(Decimal(1), rounding=ROUND_CEILING)
    return float(units * grid)


def round_money(amount: float) -> float:
    """Two-decimal display rounding (half-up, not banker's)."""
    return float(Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
