"""
SettlementLedger -- repayment tracking for one expense.

Responsibility:
    Holds one SettlementRecord per participant and applies the two
    settlement entry points:

    settle_own_debt           a debtor (net < 0) pays part or all of what
                              they owe; the payment is spread over the
                              creditors in proportion to what each is
                              still owed.
    record_payments_received  a creditor (net > 0) records payments from
                              one or more debtors; each debtor's payment is
                              scaled by the creditor's share of the total
                              paid in, then clamped to what that debtor
                              still owes this creditor.

Architecture position:
    Kernel > Domain -- pure state transitions, zero I/O. Exclusive access
    to the records is the persistence adapter's job (see
    split_services.ports.ExpenseRepository.settlement_update); the ledger
    only guarantees each call is all-or-nothing.

Invariants enforced:
    - 0 <= settled_amount <= bound (= |original net|) on every record.
    - settled_amount never decreases; state never returns to UNSETTLED.
    - fully_settled is recomputed with the settlement epsilon after every
      mutation.
    - A call that raises leaves every record untouched.
    - A replayed idempotency key is a no-op.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Union

from split_kernel.domain.expense import ExpenseAggregate
from split_kernel.domain.policy import ValidationPolicy
from split_kernel.domain.strategies import SplitWarning
from split_kernel.domain.values import Money, sum_money
from split_kernel.exceptions import (
    NotEligibleError,
    ParticipantNotFoundError,
    SettlementRangeError,
)


class SettlementState(str, Enum):
    """Lifecycle of one settlement record. Transitions only move forward."""

    UNSETTLED = "UNSETTLED"
    PARTIALLY_SETTLED = "PARTIALLY_SETTLED"
    FULLY_SETTLED = "FULLY_SETTLED"


class _FullSettlement:
    """Sentinel type for ``FULL``."""

    _instance: _FullSettlement | None = None

    def __new__(cls) -> _FullSettlement:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "FULL"


FULL = _FullSettlement()
"""Settle everything that remains."""

SettlementAmount = Union[Money, _FullSettlement]


@dataclass(frozen=True, slots=True)
class SettlementRecord:
    """
    Settlement state of one participant on one expense.

    ``allocations`` maps counterparties to amounts: for a debtor, what was
    credited toward each creditor; for a creditor, what was received from
    each debtor.
    """

    expense_id: str
    participant_id: str
    net: Money
    settled_amount: Money
    fully_settled: bool
    version: int = 0
    allocations: Mapping[str, Money] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "allocations", dict(self.allocations))
        if self.settled_amount.is_negative or self.settled_amount > self.bound:
            raise ValueError(
                f"settled_amount {self.settled_amount} outside [0, {self.bound}] "
                f"for {self.participant_id}"
            )

    def __hash__(self) -> int:
        return hash((self.expense_id, self.participant_id, self.version))

    @classmethod
    def opening(
        cls,
        expense_id: str,
        participant_id: str,
        net: Money,
        epsilon_minor_units: int,
    ) -> SettlementRecord:
        """Zero-state record at expense creation. Net 0 starts fully settled."""
        zero = Money.zero(net.currency)
        return cls(
            expense_id=expense_id,
            participant_id=participant_id,
            net=net,
            settled_amount=zero,
            fully_settled=zero.compare_with_epsilon(abs(net), epsilon_minor_units),
        )

    @property
    def bound(self) -> Money:
        """Upper limit of settled_amount: |original net|."""
        return abs(self.net)

    @property
    def is_debtor(self) -> bool:
        return self.net.is_negative

    @property
    def is_creditor(self) -> bool:
        return self.net.is_positive

    @property
    def remaining(self) -> Money:
        if self.fully_settled:
            return Money.zero(self.net.currency)
        return self.bound - self.settled_amount

    @property
    def state(self) -> SettlementState:
        if self.fully_settled:
            return SettlementState.FULLY_SETTLED
        if self.settled_amount.is_zero:
            return SettlementState.UNSETTLED
        return SettlementState.PARTIALLY_SETTLED

    def allocated_to(self, counterparty_id: str) -> Money:
        return self.allocations.get(counterparty_id, Money.zero(self.net.currency))


@dataclass(frozen=True)
class SettlementOutcome:
    """Result of one settlement call."""

    applied: Money
    changed_participant_ids: tuple[str, ...] = ()
    replayed: bool = False
    per_counterparty: Mapping[str, Money] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ParticipantBalanceView:
    """Paid, owed and net of one participant plus their settlement progress."""

    participant_id: str
    display_name: str
    paid: Money
    owed: Money
    net: Money
    settled_amount: Money
    remaining: Money
    state: SettlementState
    version: int

    def to_wire(self) -> dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "display_name": self.display_name,
            "paid": self.paid.to_wire(),
            "owed": self.owed.to_wire(),
            "net": self.net.to_wire(),
            "settled_amount": self.settled_amount.to_wire(),
            "remaining": self.remaining.to_wire(),
            "state": self.state.value,
            "version": self.version,
        }


@dataclass(frozen=True)
class BalanceSheetView:
    """Recomputed balances of an expense joined with its settlement records."""

    expense_id: str
    total: Money
    participants: dict[str, ParticipantBalanceView]
    unallocated: Money
    warnings: tuple[SplitWarning, ...] = ()

    def __getitem__(self, participant_id: str) -> ParticipantBalanceView:
        return self.participants[participant_id]

    def __iter__(self) -> Iterator[ParticipantBalanceView]:
        return iter(self.participants.values())

    @property
    def is_settled(self) -> bool:
        """An expense is settled once every participant is fully settled."""
        return all(v.state is SettlementState.FULLY_SETTLED for v in self)

    def to_wire(self) -> dict[str, Any]:
        return {
            "expense_id": self.expense_id,
            "total": self.total.to_wire(),
            "unallocated": self.unallocated.to_wire(),
            "is_settled": self.is_settled,
            "participants": {pid: v.to_wire() for pid, v in self.participants.items()},
            "warnings": [w.code for w in self.warnings],
        }


class SettlementLedger:
    """
    Settlement records of one expense and the operations that move them.

    Contract:
        - Operations stage every change and commit only after the whole
          call validated; an exception leaves the ledger unchanged.
        - Each committed record's version is its loaded version + 1.
        - ``changed_records()`` lists what a persistence adapter must
          write; ``new_keys`` lists idempotency keys applied since load.

    Preconditions:
        The caller holds the records exclusively for the duration of the
        call (per-record locking or SELECT ... FOR UPDATE).
    """

    def __init__(
        self,
        expense: ExpenseAggregate,
        records: Iterable[SettlementRecord],
        applied_keys: Iterable[str] = (),
        policy: ValidationPolicy | None = None,
    ):
        self._expense = expense
        self._policy = policy or expense.policy
        self._records: dict[str, SettlementRecord] = {r.participant_id: r for r in records}
        self._loaded_versions = {pid: r.version for pid, r in self._records.items()}
        self._changed: set[str] = set()
        self._applied_keys: set[str] = set(applied_keys)
        self._new_keys: list[str] = []

    @classmethod
    def open(cls, expense: ExpenseAggregate, policy: ValidationPolicy | None = None) -> SettlementLedger:
        """Fresh ledger with zero-state records for every participant."""
        policy = policy or expense.policy
        records = [
            SettlementRecord.opening(
                expense.id,
                balance.participant_id,
                balance.net,
                policy.settlement_epsilon_minor_units,
            )
            for balance in expense.balances
        ]
        return cls(expense, records, policy=policy)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def expense(self) -> ExpenseAggregate:
        return self._expense

    def record(self, participant_id: str) -> SettlementRecord:
        try:
            return self._records[participant_id]
        except KeyError:
            raise ParticipantNotFoundError(self._expense.id, participant_id) from None

    def records(self) -> list[SettlementRecord]:
        """Records in roster order."""
        return [self._records[pid] for pid in self._expense.participants.ids if pid in self._records]

    def changed_records(self) -> list[SettlementRecord]:
        return [r for r in self.records() if r.participant_id in self._changed]

    def loaded_version(self, participant_id: str) -> int:
        return self._loaded_versions[participant_id]

    @property
    def applied_keys(self) -> frozenset[str]:
        return frozenset(self._applied_keys)

    @property
    def new_keys(self) -> tuple[str, ...]:
        return tuple(self._new_keys)

    @property
    def is_settled(self) -> bool:
        return all(r.fully_settled for r in self._records.values())

    def view(self) -> BalanceSheetView:
        sheet = self._expense.balances
        participants: dict[str, ParticipantBalanceView] = {}
        for participant in self._expense.participants:
            balance = sheet[participant.id]
            record = self._records[participant.id]
            participants[participant.id] = ParticipantBalanceView(
                participant_id=participant.id,
                display_name=participant.display_name,
                paid=balance.paid,
                owed=balance.owed,
                net=balance.net,
                settled_amount=record.settled_amount,
                remaining=record.remaining,
                state=record.state,
                version=record.version,
            )
        return BalanceSheetView(
            expense_id=self._expense.id,
            total=self._expense.total,
            participants=participants,
            unallocated=sheet.unallocated,
            warnings=sheet.warnings,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def settle_own_debt(
        self,
        participant_id: str,
        amount: SettlementAmount,
        idempotency_key: str | None = None,
    ) -> SettlementOutcome:
        """
        Record a payment by a debtor toward their own debt.

        Contract:
            ``FULL`` settles everything that remains; on a record that is
            already fully settled it is a no-op. A partial amount must lie
            in ``[0, remaining]``. The amount is credited to the creditors
            in proportion to what each is still owed.

        Raises:
            ParticipantNotFoundError: participant_id is not on the expense.
            NotEligibleError: The participant's net is not negative.
            SettlementRangeError: amount < 0 or amount > remaining.
        """
        debtor = self.record(participant_id)
        zero = Money.zero(debtor.net.currency)
        if self._is_replay(idempotency_key):
            return SettlementOutcome(applied=zero, replayed=True)
        if not debtor.is_debtor:
            raise NotEligibleError(
                self._expense.id, participant_id, "participant does not owe on this expense"
            )

        if amount is FULL:
            amount = debtor.remaining
        elif not isinstance(amount, Money):
            raise TypeError(f"amount must be Money or FULL, got {type(amount).__name__}")
        elif amount.is_negative or amount > debtor.remaining:
            raise SettlementRangeError(self._expense.id, participant_id, amount, debtor.remaining)

        staged: dict[str, SettlementRecord] = {}
        per_creditor: dict[str, Money] = {}
        if amount.is_positive:
            staged[participant_id] = self._with_settled(debtor, debtor.settled_amount + amount)

            creditors = [
                self._records[pid]
                for pid in self._expense.balances.creditor_ids
                if self._records[pid].remaining.is_positive
            ]
            if creditors:
                capacity = sum_money((c.remaining for c in creditors), zero.currency)
                spread = min(amount, capacity)
                parts = spread.allocate([c.remaining.minor_units for c in creditors])
                for creditor, part in zip(creditors, parts, strict=True):
                    if part.is_zero:
                        continue
                    per_creditor[creditor.participant_id] = part
                    staged[creditor.participant_id] = self._with_allocation(
                        self._with_settled(creditor, creditor.settled_amount + part),
                        participant_id,
                        part,
                    )
                    staged[participant_id] = self._with_allocation(
                        staged[participant_id], creditor.participant_id, part
                    )

        self._commit(staged, idempotency_key)
        return SettlementOutcome(
            applied=amount,
            changed_participant_ids=tuple(staged),
            per_counterparty=per_creditor,
        )

    def record_payments_received(
        self,
        recipient_id: str,
        settlements: Mapping[str, Money],
        idempotency_key: str | None = None,
    ) -> SettlementOutcome:
        """
        Record payments a creditor received from debtors, as one atomic batch.

        Contract:
            For each debtor, the credited amount is
            ``amount x recipient_paid / total_paid`` (rounded half-up),
            clamped to what the debtor still owes this recipient:
            ``min(debtor remaining, round(|net_debtor| x share) - credited)``.
            The recipient's record grows by the applied total, clamped to
            its own remaining. If any debtor entry is invalid, no record
            is mutated.

        Raises:
            ParticipantNotFoundError: recipient or a debtor is not on the expense.
            NotEligibleError: recipient net is not positive, or a debtor's
                net is not negative.
            SettlementRangeError: a per-debtor amount is negative.
        """
        recipient = self.record(recipient_id)
        zero = Money.zero(recipient.net.currency)
        if self._is_replay(idempotency_key):
            return SettlementOutcome(applied=zero, replayed=True)
        if not recipient.is_creditor:
            raise NotEligibleError(
                self._expense.id, recipient_id, "participant is not owed money on this expense"
            )

        sheet = self._expense.balances
        recipient_paid = sheet[recipient_id].paid.minor_units
        total_paid = sum(b.paid.minor_units for b in sheet)

        staged: dict[str, SettlementRecord] = {}
        per_debtor: dict[str, Money] = {}
        recipient_left = recipient.remaining
        applied_total = zero

        for debtor_id, amount in settlements.items():
            debtor = self.record(debtor_id)
            if debtor_id == recipient_id or not debtor.is_debtor:
                raise NotEligibleError(
                    self._expense.id, debtor_id, "participant does not owe on this expense"
                )
            if not isinstance(amount, Money):
                raise TypeError(f"amount must be Money, got {type(amount).__name__}")
            claim = debtor.bound.scale_by_rational(recipient_paid, total_paid)
            owed_here = min(debtor.remaining, claim - debtor.allocated_to(recipient_id))
            owed_here = max(owed_here, zero)
            if amount.is_negative:
                raise SettlementRangeError(self._expense.id, debtor_id, amount, owed_here)

            credit = amount.scale_by_rational(recipient_paid, total_paid)
            applied = min(credit, owed_here, recipient_left)
            per_debtor[debtor_id] = applied
            if applied.is_zero:
                continue

            staged[debtor_id] = self._with_allocation(
                self._with_settled(debtor, debtor.settled_amount + applied),
                recipient_id,
                applied,
            )
            recipient_left = recipient_left - applied
            applied_total = applied_total + applied

        if applied_total.is_positive:
            updated = self._with_settled(recipient, recipient.settled_amount + applied_total)
            for debtor_id, applied in per_debtor.items():
                if applied.is_positive:
                    updated = self._with_allocation(updated, debtor_id, applied)
            staged[recipient_id] = updated

        self._commit(staged, idempotency_key)
        return SettlementOutcome(
            applied=applied_total,
            changed_participant_ids=tuple(staged),
            per_counterparty=per_debtor,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_replay(self, idempotency_key: str | None) -> bool:
        return idempotency_key is not None and idempotency_key in self._applied_keys

    def _with_settled(self, record: SettlementRecord, settled: Money) -> SettlementRecord:
        fully = settled.compare_with_epsilon(
            record.bound, self._policy.settlement_epsilon_minor_units
        )
        return replace(
            record,
            settled_amount=settled,
            fully_settled=record.fully_settled or fully,
            version=self._loaded_versions[record.participant_id] + 1,
        )

    @staticmethod
    def _with_allocation(
        record: SettlementRecord, counterparty_id: str, amount: Money,
    ) -> SettlementRecord:
        allocations = dict(record.allocations)
        allocations[counterparty_id] = record.allocated_to(counterparty_id) + amount
        return replace(record, allocations=allocations)

    def _commit(self, staged: Mapping[str, SettlementRecord], idempotency_key: str | None) -> None:
        self._records.update(staged)
        self._changed.update(staged)
        if idempotency_key is not None:
            self._applied_keys.add(idempotency_key)
            self._new_keys.append(idempotency_key)
