"""
Payer allocation -- how much of the total each participant paid in.

Pure functions, no I/O. The sum check on MultiplePayers belongs to expense
creation: it is validated once here and never re-checked after settlement.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Union

from split_kernel.domain.participants import ParticipantRoster
from split_kernel.domain.policy import DEFAULT_POLICY, ValidationPolicy
from split_kernel.domain.values import Money, sum_money
from split_kernel.exceptions import PayerValidationError


@dataclass(frozen=True, slots=True)
class SinglePayer:
    """One participant paid the whole total."""

    participant_id: str

    @property
    def payer_ids(self) -> tuple[str, ...]:
        return (self.participant_id,)


@dataclass(frozen=True, slots=True)
class MultiplePayers:
    """Several participants each paid part of the total."""

    payments: tuple[tuple[str, Money], ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "payments", tuple((pid, amount) for pid, amount in self.payments))

    @classmethod
    def of(cls, payments: Iterable[tuple[str, Money]]) -> MultiplePayers:
        return cls(tuple(payments))

    @property
    def payer_ids(self) -> tuple[str, ...]:
        return tuple(pid for pid, _ in self.payments)


PayerSpec = Union[SinglePayer, MultiplePayers]


def compute_paid(
    payer_spec: PayerSpec,
    participants: ParticipantRoster,
    total: Money,
    policy: ValidationPolicy = DEFAULT_POLICY,
) -> dict[str, Money]:
    """
    Paid amount per participant, in roster order.

    Contract:
        SinglePayer credits its participant with ``total``; MultiplePayers
        passes the given amounts through. Participants that are not payers
        get zero.

    Raises:
        PayerValidationError: If a payer is not a participant, is listed
            twice, paid a negative amount, or the paid sum differs from
            ``total`` by more than the amount tolerance.
    """
    zero = Money.zero(total.currency)
    paid = {pid: zero for pid in participants.ids}

    if isinstance(payer_spec, SinglePayer):
        if payer_spec.participant_id not in participants:
            raise PayerValidationError(
                f"Payer {payer_spec.participant_id} is not a participant of the expense"
            )
        paid[payer_spec.participant_id] = total
        return paid

    if not isinstance(payer_spec, MultiplePayers):
        raise TypeError(f"Unsupported payer spec: {type(payer_spec).__name__}")

    if not payer_spec.payments:
        raise PayerValidationError("MultiplePayers needs at least one payer", total=total)

    seen: set[str] = set()
    for pid, amount in payer_spec.payments:
        if pid not in participants:
            raise PayerValidationError(f"Payer {pid} is not a participant of the expense")
        if pid in seen:
            raise PayerValidationError(f"Payer {pid} is listed more than once")
        if amount.is_negative:
            raise PayerValidationError(f"Payer {pid} paid a negative amount: {amount}")
        seen.add(pid)
        paid[pid] = amount

    paid_sum = sum_money((amount for _, amount in payer_spec.payments), total.currency)
    if not paid_sum.compare_with_epsilon(total, policy.amount_tolerance_minor_units):
        raise PayerValidationError(
            f"Payers paid {paid_sum} in total, expected {total}",
            total=total,
            paid_sum=paid_sum,
        )
    return paid
