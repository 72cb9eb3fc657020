"""
Split strategies -- pure functions from participants and a total to owed amounts.

A SplitStrategy has NO side effects and NO access to:
- Database
- Clock/time
- I/O
- External services

Everything a strategy reads arrives in its arguments (participants, total,
SplitContext). Every proportional division goes through
``Money.distribute_evenly`` or ``Money.allocate`` so owed amounts always
sum exactly to what was distributed.

Variants:
    EQUALLY        total / N, remainder to the first participants
    PERCENTAGE     total x percent / 100, percents must sum to 100
    EXACT_AMOUNTS  pass-through, amounts must sum to the total
    SHARES         total x share / sum(shares), sum(shares) > 0
    ITEMIZED       per-line weighted split, tax and tip split equally
    TWO_PERSON     the designated ower owes everything
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import ClassVar

from split_kernel.domain.participants import (
    ExactInput,
    NoInput,
    Participant,
    ParticipantRoster,
    PercentInput,
    ShareInput,
    SplitInput,
)
from split_kernel.domain.policy import DEFAULT_POLICY, ValidationPolicy
from split_kernel.domain.values import Currency, Money, sum_money
from split_kernel.exceptions import SplitValidationError
from split_kernel.invariants import SplitInvariant


class SplitMethod(str, Enum):
    """The rule that decides each participant's owed share."""

    EQUALLY = "EQUALLY"
    PERCENTAGE = "PERCENTAGE"
    EXACT_AMOUNTS = "EXACT_AMOUNTS"
    SHARES = "SHARES"
    ITEMIZED = "ITEMIZED"
    TWO_PERSON = "TWO_PERSON"


@dataclass(frozen=True, slots=True)
class ItemizedLine:
    """One receipt line: an amount split by relative weight between participants."""

    name: str
    amount: Money
    share_weights: Mapping[str, Decimal] = field(default_factory=dict)

    def __post_init__(self) -> None:
        weights: dict[str, Decimal] = {}
        for participant_id, weight in dict(self.share_weights).items():
            if isinstance(weight, float):
                raise TypeError(f"weight for {participant_id} must not be float")
            weights[participant_id] = Decimal(str(weight))
        object.__setattr__(self, "share_weights", weights)

    def __hash__(self) -> int:
        return hash((self.name, self.amount, tuple(sorted(self.share_weights.items()))))

    def weight_of(self, participant_id: str) -> Decimal:
        return self.share_weights.get(participant_id, Decimal(0))


@dataclass(frozen=True, slots=True)
class ItemizedTotals:
    """Breakdown of an itemized total."""

    subtotal: Money
    tax: Money
    tip: Money

    @property
    def total(self) -> Money:
        return self.subtotal + self.tax + self.tip


@dataclass(frozen=True, slots=True)
class SplitWarning:
    """Non-fatal finding reported alongside a successful split."""

    code: str
    message: str


@dataclass(frozen=True)
class SplitContext:
    """Expense parameters a strategy may read besides participants and total."""

    currency: Currency
    items: tuple[ItemizedLine, ...] = ()
    tax_rate_percent: Decimal = Decimal(0)
    tip_rate_percent: Decimal = Decimal(0)
    full_ower_id: str | None = None
    policy: ValidationPolicy = DEFAULT_POLICY


@dataclass(frozen=True)
class SplitResult:
    """
    Owed amount per participant, in roster order.

    ``unallocated`` is non-zero only for ITEMIZED expenses with all-zero
    weight lines; ``sum(owed) + unallocated == total`` always holds for
    every strategy except EXACT_AMOUNTS within the amount tolerance.
    """

    owed: dict[str, Money]
    unallocated: Money
    warnings: tuple[SplitWarning, ...] = ()
    itemized: ItemizedTotals | None = None


def _fail(invariant: SplitInvariant, message: str, **details: object) -> SplitValidationError:
    return SplitValidationError(invariant, message, dict(details))


def _require_input(
    participant: Participant, expected: type, method: SplitMethod,
) -> SplitInput:
    if not isinstance(participant.split_input, expected):
        raise _fail(
            SplitInvariant.STRATEGY_INPUT_PRESENT,
            f"{method.value} needs {expected.__name__} for participant {participant.id}",
            participant_id=participant.id,
            method=method.value,
        )
    return participant.split_input


class SplitStrategy(ABC):
    """
    Base class for split strategies.

    Contract:
        ``compute_owed`` returns one owed amount per participant, keyed by
        id, in roster order, or raises SplitValidationError naming the
        violated invariant. It never partially succeeds.
    """

    @property
    @abstractmethod
    def method(self) -> SplitMethod:
        """The split method this strategy implements."""

    def compute_owed(
        self,
        participants: ParticipantRoster,
        total: Money,
        context: SplitContext,
    ) -> SplitResult:
        if len(participants) == 0:
            raise _fail(
                SplitInvariant.NON_EMPTY_PARTICIPANTS,
                f"{self.method.value} needs at least one participant",
            )
        if total.currency != context.currency:
            raise ValueError(
                f"Total currency {total.currency} differs from expense currency "
                f"{context.currency}"
            )
        return self._compute(participants, total, context)

    @abstractmethod
    def _compute(
        self,
        participants: ParticipantRoster,
        total: Money,
        context: SplitContext,
    ) -> SplitResult:
        """Strategy-specific computation on a non-empty roster."""

    @staticmethod
    def _result(
        participants: ParticipantRoster,
        parts: Sequence[Money],
        currency: Currency,
    ) -> SplitResult:
        return SplitResult(
            owed=dict(zip(participants.ids, parts, strict=True)),
            unallocated=Money.zero(currency),
        )


class EqualSplit(SplitStrategy):
    """Everyone owes the same, the first participants absorb the remainder."""

    method = SplitMethod.EQUALLY

    def _compute(self, participants, total, context):
        return self._result(participants, total.distribute_evenly(len(participants)), context.currency)


class PercentageSplit(SplitStrategy):
    """Each participant owes their percent of the total."""

    method = SplitMethod.PERCENTAGE

    def _compute(self, participants, total, context):
        percents: list[Decimal] = []
        for participant in participants:
            split_input = _require_input(participant, PercentInput, self.method)
            if split_input.percent < 0:
                raise _fail(
                    SplitInvariant.NON_NEGATIVE_INPUT,
                    f"Percent for {participant.id} is negative: {split_input.percent}",
                    participant_id=participant.id,
                )
            percents.append(split_input.percent)

        percent_sum = sum(percents, Decimal(0))
        if abs(percent_sum - 100) > context.policy.percent_tolerance:
            raise _fail(
                SplitInvariant.PERCENT_SUM,
                f"Percents sum to {percent_sum}, expected 100",
                percent_sum=str(percent_sum),
            )
        return self._result(participants, total.allocate(percents), context.currency)


class ExactAmountsSplit(SplitStrategy):
    """Each participant owes the amount given for them."""

    method = SplitMethod.EXACT_AMOUNTS

    def _compute(self, participants, total, context):
        amounts: list[Money] = []
        for participant in participants:
            split_input = _require_input(participant, ExactInput, self.method)
            amount = split_input.amount
            if amount.is_negative:
                raise _fail(
                    SplitInvariant.NON_NEGATIVE_INPUT,
                    f"Exact amount for {participant.id} is negative: {amount}",
                    participant_id=participant.id,
                )
            amounts.append(amount)

        exact_sum = sum_money(amounts, context.currency)
        if not exact_sum.compare_with_epsilon(total, context.policy.amount_tolerance_minor_units):
            raise _fail(
                SplitInvariant.EXACT_SUM,
                f"Exact amounts sum to {exact_sum}, expected {total}",
                exact_sum=exact_sum,
                total=total,
            )
        return self._result(participants, amounts, context.currency)


class SharesSplit(SplitStrategy):
    """Each participant owes total x share / sum(shares)."""

    method = SplitMethod.SHARES

    def _compute(self, participants, total, context):
        counts: list[int] = []
        for participant in participants:
            split_input = _require_input(participant, ShareInput, self.method)
            if split_input.count < 0:
                raise _fail(
                    SplitInvariant.NON_NEGATIVE_INPUT,
                    f"Share count for {participant.id} is negative: {split_input.count}",
                    participant_id=participant.id,
                )
            counts.append(split_input.count)

        if sum(counts) <= 0:
            raise _fail(
                SplitInvariant.POSITIVE_SHARE_TOTAL,
                "Share counts must sum to more than zero",
                share_total=sum(counts),
            )
        return self._result(participants, total.allocate(counts), context.currency)


class ItemizedSplit(SplitStrategy):
    """
    Per-line weighted split, then tax and tip split equally.

    Contract:
        - Each line is allocated by its own weights; a zero weight owes
          nothing from that line.
        - tax = subtotal x tax_rate / 100, tip = (subtotal + tax) x
          tip_rate / 100, each rounded half-up to the minor unit.
        - tax + tip is distributed evenly across all participants.
        - A line whose weights are all zero stays in the subtotal, is
          reported as unallocated and raises a warning.

    Preconditions:
        ``total`` equals subtotal + tax + tip within the amount tolerance.
    """

    method = SplitMethod.ITEMIZED

    @staticmethod
    def compute_totals(context: SplitContext) -> ItemizedTotals:
        """Subtotal, tax and tip for the context's itemized lines."""
        for rate_name, rate in (
            ("tax_rate_percent", context.tax_rate_percent),
            ("tip_rate_percent", context.tip_rate_percent),
        ):
            if rate < 0:
                raise _fail(
                    SplitInvariant.NON_NEGATIVE_INPUT,
                    f"{rate_name} is negative: {rate}",
                )
        subtotal = sum_money((line.amount for line in context.items), context.currency)
        tax = subtotal.scale_by_rational(context.tax_rate_percent, 100)
        tip = (subtotal + tax).scale_by_rational(context.tip_rate_percent, 100)
        return ItemizedTotals(subtotal=subtotal, tax=tax, tip=tip)

    def _compute(self, participants, total, context):
        owed = {pid: Money.zero(context.currency) for pid in participants.ids}
        unallocated = Money.zero(context.currency)
        warnings: list[SplitWarning] = []

        for index, line in enumerate(context.items):
            if line.amount.is_negative:
                raise _fail(
                    SplitInvariant.NON_NEGATIVE_INPUT,
                    f"Line '{line.name}' has a negative amount: {line.amount}",
                    line_index=index,
                )
            strangers = sorted(set(line.share_weights) - set(participants.ids))
            if strangers:
                raise _fail(
                    SplitInvariant.ITEM_PARTICIPANTS,
                    f"Line '{line.name}' weights unknown participants: {strangers}",
                    line_index=index,
                    participant_ids=strangers,
                )
            weights = [line.weight_of(pid) for pid in participants.ids]
            if any(w < 0 for w in weights):
                raise _fail(
                    SplitInvariant.NON_NEGATIVE_INPUT,
                    f"Line '{line.name}' has a negative weight",
                    line_index=index,
                )
            if all(w == 0 for w in weights):
                unallocated = unallocated + line.amount
                warnings.append(
                    SplitWarning(
                        code="zero_weight_line",
                        message=(
                            f"Line '{line.name}' ({line.amount}) has no weighted "
                            "participants and is not owed by anyone"
                        ),
                    )
                )
                continue
            for pid, part in zip(participants.ids, line.amount.allocate(weights), strict=True):
                owed[pid] = owed[pid] + part

        totals = self.compute_totals(context)
        if not total.compare_with_epsilon(totals.total, context.policy.amount_tolerance_minor_units):
            raise _fail(
                SplitInvariant.ITEMIZED_TOTAL,
                f"Total {total} does not match subtotal + tax + tip = {totals.total}",
                total=total,
                computed_total=totals.total,
            )

        extras = totals.tax + totals.tip
        for pid, part in zip(participants.ids, extras.distribute_evenly(len(participants)), strict=True):
            owed[pid] = owed[pid] + part

        return SplitResult(
            owed=owed,
            unallocated=unallocated,
            warnings=tuple(warnings),
            itemized=totals,
        )


class TwoPersonSplit(SplitStrategy):
    """One of exactly two participants owes the whole total."""

    method = SplitMethod.TWO_PERSON

    def _compute(self, participants, total, context):
        if len(participants) != 2:
            raise _fail(
                SplitInvariant.TWO_PERSON_COUNT,
                f"TWO_PERSON needs exactly 2 participants, got {len(participants)}",
                participant_count=len(participants),
            )
        if context.full_ower_id not in participants:
            raise _fail(
                SplitInvariant.TWO_PERSON_COUNT,
                f"Full ower {context.full_ower_id!r} is not one of the participants",
                full_ower_id=context.full_ower_id,
            )
        zero = Money.zero(context.currency)
        parts = [total if pid == context.full_ower_id else zero for pid in participants.ids]
        return self._result(participants, parts, context.currency)


class SplitStrategyRegistry:
    """Dispatch from SplitMethod to its strategy."""

    _strategies: ClassVar[dict[SplitMethod, SplitStrategy]] = {}

    @classmethod
    def register(cls, strategy: SplitStrategy) -> None:
        if strategy.method in cls._strategies:
            existing = cls._strategies[strategy.method]
            raise ValueError(
                f"Strategy already registered for {strategy.method.value}: "
                f"{existing.__class__.__name__}"
            )
        cls._strategies[strategy.method] = strategy

    @classmethod
    def get(cls, method: SplitMethod | str) -> SplitStrategy:
        method = SplitMethod(method)
        return cls._strategies[method]

    @classmethod
    def methods(cls) -> frozenset[SplitMethod]:
        return frozenset(cls._strategies)


for _strategy in (
    EqualSplit(),
    PercentageSplit(),
    ExactAmountsSplit(),
    SharesSplit(),
    ItemizedSplit(),
    TwoPersonSplit(),
):
    SplitStrategyRegistry.register(_strategy)


def blank_input(method: SplitMethod, currency: Currency) -> SplitInput:
    """Fresh per-participant input for ``method``."""
    if method is SplitMethod.PERCENTAGE:
        return PercentInput(Decimal(0))
    if method is SplitMethod.EXACT_AMOUNTS:
        return ExactInput(Money.zero(currency))
    if method is SplitMethod.SHARES:
        return ShareInput(1)
    return NoInput()


def switch_strategy(
    participants: ParticipantRoster,
    method: SplitMethod,
    currency: Currency,
) -> ParticipantRoster:
    """
    Rebuild every participant with a fresh input for ``method``.

    Inputs of the previous method are discarded, never carried over, so
    switching back starts from blank values again.
    """
    method = SplitMethod(method)
    return ParticipantRoster(
        p.with_input(blank_input(method, currency)) for p in participants
    )
