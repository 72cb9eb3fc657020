"""
Hypothesis-based fuzzing of splits, balances and settlement.

Properties checked for random rosters (1-20 participants) and totals:
- Distribution completeness: owed amounts plus any unallocated amount
  equal the total for every distributing strategy
- Remainder placement: shares never differ by more than one minor unit
  for EQUALLY, and the larger shares come first
- Conservation: net balances sum to zero for any split of payers
- Settlement never exceeds what is owed, and debtor payments equal
  creditor receipts when settling through the debtor entry point
"""

from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from split_kernel.domain.expense import ExpenseAggregate
from split_kernel.domain.participants import (
    NoInput,
    Participant,
    ParticipantRoster,
    PercentInput,
    ShareInput,
)
from split_kernel.domain.payers import MultiplePayers, SinglePayer
from split_kernel.domain.settlement import SettlementLedger
from split_kernel.domain.strategies import (
    ItemizedLine,
    SplitContext,
    SplitMethod,
    SplitStrategyRegistry,
)
from split_kernel.domain.values import Currency, Money, sum_money
from split_kernel.exceptions import SettlementRangeError

USD = Currency("USD")

FUZZ_SETTINGS = settings(
    max_examples=150,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

participant_counts = st.integers(min_value=1, max_value=20)
totals = st.integers(min_value=0, max_value=10_000_000)


def usd(minor_units: int) -> Money:
    return Money.from_minor(minor_units, USD)


def roster(inputs) -> ParticipantRoster:
    return ParticipantRoster(Participant(f"p{i}", f"P{i}", value) for i, value in enumerate(inputs))


def owed_sum(result) -> Money:
    return sum_money(result.owed.values(), USD)


@st.composite
def percent_inputs(draw):
    """Percents with two decimals summing to exactly 100."""
    count = draw(participant_counts)
    cuts = sorted(draw(st.lists(st.integers(0, 10_000), min_size=count - 1, max_size=count - 1)))
    bounds = [0, *cuts, 10_000]
    return [PercentInput(Decimal(hi - lo) / 100) for lo, hi in zip(bounds, bounds[1:])]


@st.composite
def share_inputs(draw):
    count = draw(participant_counts)
    shares = draw(st.lists(st.integers(0, 50), min_size=count, max_size=count))
    if sum(shares) == 0:
        shares[0] = 1
    return [ShareInput(s) for s in shares]


@st.composite
def itemized_contexts(draw):
    count = draw(participant_counts)
    ids = [f"p{i}" for i in range(count)]
    lines = []
    for n in range(draw(st.integers(1, 6))):
        weights = draw(st.dictionaries(st.sampled_from(ids), st.integers(0, 5), max_size=count))
        lines.append(
            ItemizedLine(
                f"item{n}",
                usd(draw(st.integers(0, 500_000))),
                {pid: Decimal(w) for pid, w in weights.items()},
            )
        )
    context = SplitContext(
        currency=USD,
        items=tuple(lines),
        tax_rate_percent=Decimal(draw(st.integers(0, 2500))) / 100,
        tip_rate_percent=Decimal(draw(st.integers(0, 3000))) / 100,
    )
    return count, context


class TestDistributionCompleteness:
    @FUZZ_SETTINGS
    @given(count=participant_counts, total=totals)
    def test_equally(self, count, total):
        result = SplitStrategyRegistry.get(SplitMethod.EQUALLY).compute_owed(
            roster([NoInput()] * count), usd(total), SplitContext(currency=USD)
        )
        units = [m.minor_units for m in result.owed.values()]
        assert owed_sum(result) == usd(total)
        assert max(units) - min(units) <= 1
        assert units == sorted(units, reverse=True)

    @FUZZ_SETTINGS
    @given(inputs=percent_inputs(), total=totals)
    def test_percentage(self, inputs, total):
        result = SplitStrategyRegistry.get(SplitMethod.PERCENTAGE).compute_owed(
            roster(inputs), usd(total), SplitContext(currency=USD)
        )
        assert owed_sum(result) == usd(total)
        assert all(not m.is_negative for m in result.owed.values())

    @FUZZ_SETTINGS
    @given(inputs=share_inputs(), total=totals)
    def test_shares(self, inputs, total):
        result = SplitStrategyRegistry.get(SplitMethod.SHARES).compute_owed(
            roster(inputs), usd(total), SplitContext(currency=USD)
        )
        assert owed_sum(result) == usd(total)
        for value, owed in zip(inputs, result.owed.values()):
            if value.count == 0:
                assert owed.is_zero

    @FUZZ_SETTINGS
    @given(case=itemized_contexts())
    def test_itemized(self, case):
        count, context = case
        strategy = SplitStrategyRegistry.get(SplitMethod.ITEMIZED)
        total = strategy.compute_totals(context).total
        result = strategy.compute_owed(roster([NoInput()] * count), total, context)

        assert owed_sum(result) + result.unallocated == total
        assert not result.unallocated.is_negative


class TestConservation:
    @FUZZ_SETTINGS
    @given(data=st.data(), inputs=share_inputs(), total=totals)
    def test_net_balances_sum_to_zero(self, data, inputs, total):
        ids = [f"p{i}" for i in range(len(inputs))]
        payer_count = data.draw(st.integers(1, len(ids)))
        payers = ids[:payer_count]
        parts = usd(total).distribute_evenly(payer_count)

        expense = ExpenseAggregate.create(
            expense_id="fuzz",
            currency=USD,
            method=SplitMethod.SHARES,
            payer_spec=MultiplePayers.of(zip(payers, parts)),
            participants=roster(inputs),
            total=usd(total),
        )
        assert expense.balances.net_sum == usd(0)
        owed = sum_money((b.owed for b in expense.balances), USD)
        paid = sum_money((b.paid for b in expense.balances), USD)
        assert owed == paid == usd(total)


class TestSettlementBounds:
    @FUZZ_SETTINGS
    @given(
        count=st.integers(2, 10),
        total=st.integers(1, 1_000_000),
        payments=st.lists(st.tuples(st.integers(1, 9), st.integers(0, 200_000)), max_size=30),
    )
    def test_settled_never_exceeds_owed(self, count, total, payments):
        expense = ExpenseAggregate.create(
            expense_id="fuzz",
            currency=USD,
            method=SplitMethod.EQUALLY,
            payer_spec=SinglePayer("p0"),
            participants=roster([NoInput()] * count),
            total=usd(total),
        )
        ledger = SettlementLedger.open(expense)
        for index, units in payments:
            pid = f"p{index % (count - 1) + 1}"
            if not ledger.record(pid).is_debtor:
                continue
            try:
                ledger.settle_own_debt(pid, usd(units))
            except SettlementRangeError:
                assert usd(units) > ledger.record(pid).remaining

        records = ledger.records()
        for record in records:
            assert record.settled_amount <= record.bound
        paid_by_debtors = sum_money((r.settled_amount for r in records if r.is_debtor), USD)
        received = ledger.record("p0").settled_amount
        assert paid_by_debtors == received
