"""Unit tests for fare negotiation (Strategy Pattern)."""

import pytest

from ridecore.domain.enums import NegotiationStatus
from ridecore.domain.errors import ValidationError
from ridecore.domain.negotiation import (
    NEGOTIATION_CLOSED,
    OFFER_TOO_LOW,
    ROUND_LIMIT_REACHED,
    BandNegotiationPolicy,
    NegotiationOutcome,
    NegotiationPolicy,
    NegotiationState,
    driver_band,
    driver_counter_band,
    passenger_window,
)


class GreedyPolicy(NegotiationPolicy):
    """Always counters far above the band."""

    def decide(self, reference_fare, proposed_fare, min_fare, max_fare):
        return NegotiationOutcome.counter(100.0)


class TestBands:
    def test_driver_band(self):
        assert driver_band(20.0) == pytest.approx((18.0, 24.0))

    def test_passenger_window(self):
        assert passenger_window(20.0, 15.0) == pytest.approx((17.0, 20.0))

    def test_driver_counter_band(self):
        assert driver_counter_band(20.0) == (18.0, 25.0)

    def test_driver_counter_band_is_grid_aligned(self):
        assert driver_counter_band(17.5) == (16.0, 22.0)


class TestNegotiationState:
    def setup_method(self):
        self.policy = BandNegotiationPolicy()
        self.state = NegotiationState.open(20.0, 15.0)

    def test_open_state(self):
        assert self.state.floor == pytest.approx(17.0)
        assert self.state.min_fare == pytest.approx(18.0)
        assert self.state.max_fare == pytest.approx(24.0)
        assert self.state.rounds == 0
        assert self.state.status == NegotiationStatus.NEGOTIATING

    def test_full_price_is_accepted(self):
        state, outcome = self.state.propose(20.0, self.policy)
        assert outcome.decision == NegotiationStatus.ACCEPTED
        assert outcome.amount == 20.0
        assert state.status == NegotiationStatus.ACCEPTED
        assert state.rounds == 1

    def test_min_fare_is_accepted(self):
        _, outcome = self.state.propose(18.0, self.policy)
        assert outcome.decision == NegotiationStatus.ACCEPTED

    def test_close_offer_is_countered_at_min_fare(self):
        state, outcome = self.state.propose(17.0, self.policy)
        assert outcome.decision == NegotiationStatus.COUNTER_OFFERED
        assert outcome.amount == 18.0
        assert state.counter_fare == 18.0
        assert state.rounds == 1

    def test_taking_the_counter_closes_without_a_new_round(self):
        state, _ = self.state.propose(17.0, self.policy)
        state, outcome = state.propose(18.0, self.policy)
        assert outcome.decision == NegotiationStatus.ACCEPTED
        assert state.status == NegotiationStatus.ACCEPTED
        assert state.rounds == 1

    def test_round_limit(self):
        state = self.state
        for amount in (17.0, 17.5, 17.0):
            state, outcome = state.propose(amount, self.policy)
            assert outcome.decision == NegotiationStatus.COUNTER_OFFERED
        state, outcome = state.propose(17.5, self.policy)
        assert outcome.decision == NegotiationStatus.REJECTED
        assert outcome.reason == ROUND_LIMIT_REACHED
        assert state.status == NegotiationStatus.REJECTED
        assert state.rounds == 3

    def test_closed_negotiation_refuses_proposals(self):
        state, _ = self.state.propose(20.0, self.policy)
        with pytest.raises(ValidationError, match=NEGOTIATION_CLOSED):
            state.propose(19.0, self.policy)

    @pytest.mark.parametrize("amount", [16.99, 20.01])
    def test_proposal_outside_window(self, amount):
        with pytest.raises(ValidationError):
            self.state.propose(amount, self.policy)

    def test_low_offer_rejected_but_negotiation_stays_open(self):
        state = NegotiationState.open(20.0, 30.0)
        state, outcome = state.propose(15.0, self.policy)
        assert outcome.decision == NegotiationStatus.REJECTED
        assert outcome.reason == OFFER_TOO_LOW
        assert state.status == NegotiationStatus.NEGOTIATING
        assert not state.is_final

    def test_policy_counter_is_clamped_to_reference(self):
        _, outcome = self.state.propose(17.0, GreedyPolicy())
        assert outcome.decision == NegotiationStatus.COUNTER_OFFERED
        assert outcome.amount == 20.0

    def test_state_is_not_mutated(self):
        self.state.propose(17.0, self.policy)
        assert self.state.rounds == 0
        assert self.state.counter_fare is None
