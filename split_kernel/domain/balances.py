"""
BalanceCalculator -- paid, owed and net per participant.

Composes a SplitStrategy with the payer allocation and checks the two
structural invariants every valid expense satisfies:

    distribution completeness   sum(owed) + unallocated == total
    conservation                sum(net) == unallocated

Completeness is exact for every method except EXACT_AMOUNTS, whose owed
amounts are passed through and already checked against the amount
tolerance. Conservation is checked within the combined tolerance of the
owed and paid sums.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from split_kernel.domain.participants import ParticipantRoster
from split_kernel.domain.payers import PayerSpec, compute_paid
from split_kernel.domain.strategies import (
    ItemizedTotals,
    SplitContext,
    SplitMethod,
    SplitStrategyRegistry,
    SplitWarning,
)
from split_kernel.domain.values import Money, sum_money
from split_kernel.exceptions import SplitValidationError
from split_kernel.invariants import SplitInvariant

if TYPE_CHECKING:
    from split_kernel.domain.expense import ExpenseAggregate


@dataclass(frozen=True, slots=True)
class ParticipantBalance:
    """Paid, owed and net (paid - owed) for one participant."""

    participant_id: str
    paid: Money
    owed: Money

    @property
    def net(self) -> Money:
        return self.paid - self.owed

    def to_wire(self) -> dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "paid": self.paid.to_wire(),
            "owed": self.owed.to_wire(),
            "net": self.net.to_wire(),
        }


@dataclass(frozen=True)
class BalanceSheet:
    """Per-participant balances of one expense, in roster order."""

    total: Money
    balances: dict[str, ParticipantBalance]
    unallocated: Money
    warnings: tuple[SplitWarning, ...] = ()
    itemized: ItemizedTotals | None = None

    def __getitem__(self, participant_id: str) -> ParticipantBalance:
        return self.balances[participant_id]

    def __iter__(self) -> Iterator[ParticipantBalance]:
        return iter(self.balances.values())

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self.balances

    def net_of(self, participant_id: str) -> Money:
        return self.balances[participant_id].net

    @property
    def creditor_ids(self) -> tuple[str, ...]:
        """Participants the group owes money to (net > 0)."""
        return tuple(b.participant_id for b in self if b.net.is_positive)

    @property
    def debtor_ids(self) -> tuple[str, ...]:
        """Participants who owe the group money (net < 0)."""
        return tuple(b.participant_id for b in self if b.net.is_negative)

    @property
    def net_sum(self) -> Money:
        return sum_money((b.net for b in self), self.total.currency)


class BalanceCalculator:
    """
    Pure composition of split strategy and payer allocation.

    Contract:
        Returns a BalanceSheet or raises SplitValidationError /
        PayerValidationError. Callers must not persist an expense whose
        computation raised.
    """

    @staticmethod
    def compute(expense: ExpenseAggregate) -> BalanceSheet:
        """Recompute the balance sheet of an existing expense."""
        return BalanceCalculator.compute_for(
            participants=expense.participants,
            total=expense.total,
            method=expense.method,
            payer_spec=expense.payer_spec,
            context=expense.split_context,
        )

    @staticmethod
    def compute_for(
        *,
        participants: ParticipantRoster,
        total: Money,
        method: SplitMethod,
        payer_spec: PayerSpec,
        context: SplitContext,
    ) -> BalanceSheet:
        strategy = SplitStrategyRegistry.get(method)
        split = strategy.compute_owed(participants, total, context)
        paid = compute_paid(payer_spec, participants, total, context.policy)

        owed_sum = sum_money(split.owed.values(), total.currency)
        if method is not SplitMethod.EXACT_AMOUNTS and owed_sum + split.unallocated != total:
            raise SplitValidationError(
                SplitInvariant.DISTRIBUTION_COMPLETENESS,
                f"Owed amounts {owed_sum} plus unallocated {split.unallocated} "
                f"do not add up to {total}",
                {"owed_sum": owed_sum, "unallocated": split.unallocated, "total": total},
            )

        balances = {
            pid: ParticipantBalance(participant_id=pid, paid=paid[pid], owed=split.owed[pid])
            for pid in participants.ids
        }
        sheet = BalanceSheet(
            total=total,
            balances=balances,
            unallocated=split.unallocated,
            warnings=split.warnings,
            itemized=split.itemized,
        )

        tolerance = context.policy.conservation_tolerance_minor_units
        if not sheet.net_sum.compare_with_epsilon(split.unallocated, tolerance):
            raise SplitValidationError(
                SplitInvariant.CONSERVATION,
                f"Net balances sum to {sheet.net_sum}, expected {split.unallocated}",
                {"net_sum": sheet.net_sum, "unallocated": split.unallocated},
            )
        return sheet
