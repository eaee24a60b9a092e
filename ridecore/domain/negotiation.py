"""
Fare Negotiation  (Strategy Pattern)
====================================

The passenger proposes a price inside their window::

    reference x (1 - negotiation_range%)  <=  proposal  <=  reference

and a ``NegotiationPolicy`` answers on behalf of the driver side, whose
tolerance band ``[min_fare, max_fare]`` is wider (default 90 %-120 % of the
reference fare).

``BandNegotiationPolicy`` is the deterministic default:

* ``proposal >= min_fare``                          -> Accept
* ``proposal >= min_fare x (1 - tolerance%)``       -> Counter at min_fare (grid-aligned up)
* otherwise                                         -> Reject "offer too low"

Termination does not depend on the policy: ``NegotiationState`` caps the
number of rounds and clamps any counter into the band, so a pluggable policy
(e.g. one backed by an external judgment service) cannot loop forever or
counter outside the allowed range.

Negotiation always works on the pre-coupon reference fare; the coupon is
re-applied to whatever amount is finally agreed.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Optional

from .enums import NegotiationStatus
from .errors import ValidationError
from .normalizer import DEFAULT_GRID_STEP, ceil_to_grid, normalize_price

logger = logging.getLogger(__name__)

OFFER_TOO_LOW = "offer too low"
ROUND_LIMIT_REACHED = "round limit reached"
NEGOTIATION_CLOSED = "negotiation closed"


@dataclass(frozen=True)
class NegotiationOutcome:
    decision: NegotiationStatus  # ACCEPTED | COUNTER_OFFERED | REJECTED
    amount: Optional[float] = None
    reason: str = ""

    @classmethod
    def accept(cls, amount: float) -> "NegotiationOutcome":
        return cls(NegotiationStatus.ACCEPTED, amount)

    @classmethod
    def counter(cls, amount: float, reason: str = "") -> "NegotiationOutcome":
        return cls(NegotiationStatus.COUNTER_OFFERED, amount, reason)

    @classmethod
    def reject(cls, reason: str) -> "NegotiationOutcome":
        return cls(NegotiationStatus.REJECTED, None, reason)


# ── Strategy hierarchy ────────────────────────────────────────────────


class NegotiationPolicy(ABC):
    @abstractmethod
    def decide(
        self,
        reference_fare: float,
        proposed_fare: float,
        min_fare: float,
        max_fare: float,
    ) -> NegotiationOutcome: ...


class BandNegotiationPolicy(NegotiationPolicy):
    def __init__(
        self,
        counter_tolerance_percent: float = 10.0,
        grid_step: float = DEFAULT_GRID_STEP,
    ):
        self.counter_tolerance_percent = counter_tolerance_percent
        self.grid_step = grid_step

    def decide(
        self,
        reference_fare: float,
        proposed_fare: float,
        min_fare: float,
        max_fare: float,
    ) -> NegotiationOutcome:
        if proposed_fare >= min_fare:
            return NegotiationOutcome.accept(proposed_fare)

        counter_floor = min_fare * (1 - self.counter_tolerance_percent / 100)
        if proposed_fare >= counter_floor:
            amount = min(
                ceil_to_grid(clamp(proposed_fare, min_fare, max_fare), self.grid_step),
                max_fare,
            )
            return NegotiationOutcome.counter(amount, "close to the minimum fare")

        return NegotiationOutcome.reject(OFFER_TOO_LOW)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# ── Bands ─────────────────────────────────────────────────────────────


def driver_band(
    reference_fare: float,
    min_percent: float = 90.0,
    max_percent: float = 120.0,
) -> tuple[float, float]:
    """The driver side's acceptable ``(min_fare, max_fare)``."""
    return reference_fare * min_percent / 100, reference_fare * max_percent / 100


def passenger_window(
    reference_fare: float, negotiation_range_percent: float
) -> tuple[float, float]:
    """The passenger may bargain down by the range, never above the quote."""
    return reference_fare * (1 - negotiation_range_percent / 100), reference_fare


def driver_counter_band(
    reference_fare: float,
    max_decrease_percent: float = 10.0,
    max_increase_percent: float = 25.0,
    grid_step: float = DEFAULT_GRID_STEP,
) -> tuple[float, float]:
    """Range a driver may counter with when holding an offer."""
    low = normalize_price(reference_fare * (1 - max_decrease_percent / 100), grid_step)
    high = normalize_price(reference_fare * (1 + max_increase_percent / 100), grid_step)
    return max(grid_step, low), high


# ── Session state ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class NegotiationState:
    reference_fare: float
    min_fare: float
    max_fare: float
    floor: float
    rounds: int = 0
    max_rounds: int = 3
    status: NegotiationStatus = NegotiationStatus.NEGOTIATING
    proposed_fare: Optional[float] = None
    counter_fare: Optional[float] = None

    @classmethod
    def open(
        cls,
        reference_fare: float,
        negotiation_range_percent: float,
        min_percent: float = 90.0,
        max_percent: float = 120.0,
        max_rounds: int = 3,
    ) -> "NegotiationState":
        min_fare, max_fare = driver_band(reference_fare, min_percent, max_percent)
        floor, _ = passenger_window(reference_fare, negotiation_range_percent)
        return cls(
            reference_fare=reference_fare,
            min_fare=min_fare,
            max_fare=max_fare,
            floor=floor,
            max_rounds=max_rounds,
        )

    @property
    def is_final(self) -> bool:
        return self.status in (NegotiationStatus.ACCEPTED, NegotiationStatus.REJECTED)

    def propose(
        self, amount: float, policy: NegotiationPolicy
    ) -> tuple["NegotiationState", NegotiationOutcome]:
        """
        Run one round.  Returns the new state and the outcome; ``self`` is not
        modified.  Raises ``ValidationError`` for a proposal outside the
        passenger window or on a closed negotiation.
        """
        if self.is_final:
            raise ValidationError(NEGOTIATION_CLOSED)
        if amount < self.floor or amount > self.reference_fare:
            raise ValidationError(
                f"Proposal {amount} outside allowed range "
                f"[{self.floor:.2f}, {self.reference_fare:.2f}]"
            )

        # Taking the pending counter closes the deal without another round.
        if (
            self.status == NegotiationStatus.COUNTER_OFFERED
            and self.counter_fare is not None
            and amount == self.counter_fare
        ):
            outcome = NegotiationOutcome.accept(amount)
            return self._settle(amount, outcome, rounds=self.rounds), outcome

        rounds = self.rounds + 1
        if rounds > self.max_rounds:
            outcome = NegotiationOutcome.reject(ROUND_LIMIT_REACHED)
            return self._settle(amount, outcome, rounds=self.rounds), outcome

        outcome = policy.decide(self.reference_fare, amount, self.min_fare, self.max_fare)
        if outcome.decision == NegotiationStatus.COUNTER_OFFERED:
            bounded = clamp(
                outcome.amount if outcome.amount is not None else self.min_fare,
                self.min_fare,
                min(self.max_fare, self.reference_fare),
            )
            outcome = replace(outcome, amount=bounded)
        elif outcome.decision == NegotiationStatus.ACCEPTED:
            outcome = replace(outcome, amount=amount)

        logger.debug(
            "Negotiation round %d/%d: proposed=%.2f -> %s",
            rounds, self.max_rounds, amount, outcome.decision.value,
        )
        return self._settle(amount, outcome, rounds=rounds), outcome

    def _settle(
        self, amount: float, outcome: NegotiationOutcome, rounds: int
    ) -> "NegotiationState":
        if (
            outcome.decision == NegotiationStatus.REJECTED
            and outcome.reason != ROUND_LIMIT_REACHED
            and rounds < self.max_rounds
        ):
            # Passenger may try again while rounds remain.
            status = NegotiationStatus.NEGOTIATING
        else:
            status = outcome.decision
        return replace(
            self,
            rounds=rounds,
            status=status,
            proposed_fare=amount,
            counter_fare=(
                outcome.amount
                if outcome.decision == NegotiationStatus.COUNTER_OFFERED
                else None
            ),
        )
