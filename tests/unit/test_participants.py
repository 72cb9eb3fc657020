"""
Unit tests for participants and the roster.

Verifies:
- Duplicate ids rejected at insertion
- Roster order preserved
- Switching split method rebuilds inputs instead of keeping stale ones
"""

from decimal import Decimal

import pytest

from split_kernel.domain.participants import (
    ExactInput,
    NoInput,
    Participant,
    ParticipantRoster,
    PercentInput,
    ShareInput,
)
from split_kernel.domain.strategies import SplitMethod, switch_strategy
from split_kernel.domain.values import Currency, Money
from split_kernel.exceptions import SplitValidationError
from split_kernel.invariants import SplitInvariant


class TestParticipant:
    def test_default_input_is_none(self):
        assert Participant("a", "A").split_input == NoInput()

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError):
            Participant("", "Nobody")

    def test_percent_rejects_float(self):
        with pytest.raises(TypeError):
            PercentInput(33.3)

    def test_percent_normalized_to_decimal(self):
        assert PercentInput("33.34").percent == Decimal("33.34")

    def test_share_count_must_be_int(self):
        with pytest.raises(TypeError):
            ShareInput("2")


class TestParticipantRoster:
    def test_preserves_insertion_order(self):
        roster = ParticipantRoster([Participant("c", "C"), Participant("a", "A"), Participant("b", "B")])
        assert roster.ids == ("c", "a", "b")

    def test_duplicate_id_rejected(self):
        with pytest.raises(SplitValidationError) as exc_info:
            ParticipantRoster([Participant("a", "A"), Participant("a", "Again")])
        assert exc_info.value.invariant is SplitInvariant.UNIQUE_PARTICIPANTS

    def test_with_participant_rejects_existing_id(self):
        roster = ParticipantRoster([Participant("a", "A")])
        with pytest.raises(SplitValidationError):
            roster.with_participant(Participant("a", "A2"))

    def test_with_participant_returns_new_roster(self):
        roster = ParticipantRoster([Participant("a", "A")])
        grown = roster.with_participant(Participant("b", "B"))
        assert len(roster) == 1
        assert grown.ids == ("a", "b")

    def test_membership_and_lookup(self):
        roster = ParticipantRoster([Participant("a", "A")])
        assert "a" in roster
        assert "z" not in roster
        assert roster.get("a").display_name == "A"
        assert roster.get("z") is None


class TestStrategySwitch:
    def test_switch_discards_previous_inputs(self):
        usd = Currency("USD")
        roster = ParticipantRoster(
            [
                Participant("a", "A", PercentInput(Decimal(60))),
                Participant("b", "B", PercentInput(Decimal(40))),
            ]
        )
        as_shares = switch_strategy(roster, SplitMethod.SHARES, usd)
        assert [p.split_input for p in as_shares] == [ShareInput(1), ShareInput(1)]

        back = switch_strategy(as_shares, SplitMethod.PERCENTAGE, usd)
        assert [p.split_input for p in back] == [PercentInput(Decimal(0))] * 2

    def test_switch_to_exact_starts_at_zero(self):
        usd = Currency("USD")
        roster = ParticipantRoster([Participant("a", "A")])
        switched = switch_strategy(roster, SplitMethod.EXACT_AMOUNTS, usd)
        assert switched.get("a").split_input == ExactInput(Money.zero(usd))

    def test_switch_to_equally_clears_inputs(self):
        usd = Currency("USD")
        roster = ParticipantRoster([Participant("a", "A", ShareInput(3))])
        switched = switch_strategy(roster, SplitMethod.EQUALLY, usd)
        assert switched.get("a").split_input == NoInput()
