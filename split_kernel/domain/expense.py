"""
ExpenseAggregate -- the unit of consistency for one shared cost.

Responsibility:
    Owns one Money total, one split method, one payer spec, the
    participant roster, the itemized lines and the descriptive details of
    an expense. Created atomically from validated input through
    ``ExpenseAggregate.create``; immutable afterwards. Settlement state
    lives in SettlementLedger, never on the aggregate.

Architecture position:
    Kernel > Domain -- pure, zero I/O. Persistence adapters store the
    aggregate through ``to_document`` / ``from_document``; loading always
    recomputes the balance sheet from the stored inputs.

Invariants enforced:
    - Every split invariant and payer check passes before an aggregate
      exists (BalanceCalculator).
    - Personal expenses have one participant, method EQUALLY and that
      participant as the single payer.
    - ITEMIZED totals equal subtotal + tax + tip.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from split_kernel.domain.balances import BalanceCalculator, BalanceSheet
from split_kernel.domain.participants import (
    ExactInput,
    NoInput,
    Participant,
    ParticipantRoster,
    PercentInput,
    ShareInput,
    SplitInput,
)
from split_kernel.domain.payers import MultiplePayers, PayerSpec, SinglePayer
from split_kernel.domain.policy import DEFAULT_POLICY, ValidationPolicy
from split_kernel.domain.strategies import (
    ItemizedLine,
    ItemizedSplit,
    SplitContext,
    SplitMethod,
)
from split_kernel.domain.values import Currency, Money
from split_kernel.exceptions import InvalidExpenseInputError, SplitValidationError
from split_kernel.invariants import SplitInvariant

__all__ = [
    "ExpenseAggregate",
    "ExpenseDetails",
    "ItemizedLine",
]

DOCUMENT_VERSION = 1


@dataclass(frozen=True, slots=True)
class ExpenseDetails:
    """Descriptive fields of an expense. No effect on any computation."""

    description: str = ""
    category: str = "general"
    expense_date: date | None = None
    notes: str = ""
    group_id: str | None = None
    group_name: str | None = None
    creator_id: str | None = None
    created_at: datetime | None = None

    def to_document(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "category": self.category,
            "expense_date": self.expense_date.isoformat() if self.expense_date else None,
            "notes": self.notes,
            "group_id": self.group_id,
            "group_name": self.group_name,
            "creator_id": self.creator_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> ExpenseDetails:
        expense_date = data.get("expense_date")
        created_at = data.get("created_at")
        return cls(
            description=data.get("description", ""),
            category=data.get("category", "general"),
            expense_date=date.fromisoformat(expense_date) if expense_date else None,
            notes=data.get("notes", ""),
            group_id=data.get("group_id"),
            group_name=data.get("group_name"),
            creator_id=data.get("creator_id"),
            created_at=datetime.fromisoformat(created_at) if created_at else None,
        )


@dataclass(frozen=True)
class ExpenseAggregate:
    """
    One validated expense.

    Guarantees:
        - ``balances`` was computed from, and agrees with, the other fields
        - Immutable once created

    Non-goals:
        - Does NOT hold settlement state (see SettlementLedger)
    """

    id: str
    total: Money
    method: SplitMethod
    payer_spec: PayerSpec
    participants: ParticipantRoster
    balances: BalanceSheet = field(compare=False, repr=False)
    items: tuple[ItemizedLine, ...] = ()
    tax_rate_percent: Decimal = Decimal(0)
    tip_rate_percent: Decimal = Decimal(0)
    full_ower_id: str | None = None
    is_personal: bool = False
    details: ExpenseDetails = ExpenseDetails()
    policy: ValidationPolicy = field(default=DEFAULT_POLICY, compare=False, repr=False)

    @classmethod
    def create(
        cls,
        *,
        expense_id: str,
        currency: Currency | str,
        method: SplitMethod | str,
        payer_spec: PayerSpec,
        participants: Iterable[Participant] | ParticipantRoster,
        total: Money | None = None,
        items: Iterable[ItemizedLine] = (),
        tax_rate_percent: Decimal | int | str = 0,
        tip_rate_percent: Decimal | int | str = 0,
        full_ower_id: str | None = None,
        is_personal: bool = False,
        details: ExpenseDetails | None = None,
        policy: ValidationPolicy = DEFAULT_POLICY,
    ) -> ExpenseAggregate:
        """
        Validate input and build the aggregate, or raise.

        Preconditions:
            ``total`` may be omitted only for ITEMIZED expenses, where it
            is derived as subtotal + tax + tip.

        Raises:
            SplitValidationError: A split invariant is violated.
            PayerValidationError: The payer spec does not cover the total.
        """
        currency = currency if isinstance(currency, Currency) else Currency(currency)
        method = SplitMethod(method)
        roster = (
            participants
            if isinstance(participants, ParticipantRoster)
            else ParticipantRoster(participants)
        )
        context = SplitContext(
            currency=currency,
            items=tuple(items),
            tax_rate_percent=_to_decimal(tax_rate_percent),
            tip_rate_percent=_to_decimal(tip_rate_percent),
            full_ower_id=full_ower_id,
            policy=policy,
        )

        if method is SplitMethod.ITEMIZED:
            computed_total = ItemizedSplit.compute_totals(context).total
            if total is None:
                total = computed_total
            elif not total.compare_with_epsilon(computed_total, policy.amount_tolerance_minor_units):
                raise SplitValidationError(
                    SplitInvariant.ITEMIZED_TOTAL,
                    f"Total {total} does not match subtotal + tax + tip = {computed_total}",
                    {"total": total, "computed_total": computed_total},
                )
            else:
                total = computed_total
        elif total is None:
            raise InvalidExpenseInputError("total", f"{method.value} expenses need a total")

        if total.is_negative:
            raise SplitValidationError(
                SplitInvariant.NON_NEGATIVE_INPUT,
                f"Expense total is negative: {total}",
                {"total": total},
            )

        if is_personal:
            _check_personal(roster, method, payer_spec)

        sheet = BalanceCalculator.compute_for(
            participants=roster,
            total=total,
            method=method,
            payer_spec=payer_spec,
            context=context,
        )
        return cls(
            id=expense_id,
            total=total,
            method=method,
            payer_spec=payer_spec,
            participants=roster,
            balances=sheet,
            items=context.items,
            tax_rate_percent=context.tax_rate_percent,
            tip_rate_percent=context.tip_rate_percent,
            full_ower_id=full_ower_id,
            is_personal=is_personal,
            details=details or ExpenseDetails(),
            policy=policy,
        )

    @property
    def currency(self) -> Currency:
        return self.total.currency

    @property
    def split_context(self) -> SplitContext:
        return SplitContext(
            currency=self.currency,
            items=self.items,
            tax_rate_percent=self.tax_rate_percent,
            tip_rate_percent=self.tip_rate_percent,
            full_ower_id=self.full_ower_id,
            policy=self.policy,
        )

    @property
    def payer_ids(self) -> tuple[str, ...]:
        return self.payer_spec.payer_ids

    def paid_by(self, participant_id: str) -> Money:
        return self.balances[participant_id].paid

    def involves(self, user_id: str) -> bool:
        return user_id in self.participants or user_id == self.details.creator_id

    # ------------------------------------------------------------------
    # Document codec
    # ------------------------------------------------------------------

    def to_document(self) -> dict[str, Any]:
        """JSON-safe representation of the creation inputs."""
        if isinstance(self.payer_spec, SinglePayer):
            payer: dict[str, Any] = {
                "type": "single",
                "participant_id": self.payer_spec.participant_id,
            }
        else:
            payer = {
                "type": "multiple",
                "payments": [
                    {"participant_id": pid, "paid": amount.to_wire()}
                    for pid, amount in self.payer_spec.payments
                ],
            }
        return {
            "document_version": DOCUMENT_VERSION,
            "id": self.id,
            "currency": self.currency.code,
            "total": self.total.to_wire(),
            "method": self.method.value,
            "payer": payer,
            "participants": [
                {
                    "id": p.id,
                    "display_name": p.display_name,
                    "input": _input_to_document(p.split_input),
                }
                for p in self.participants
            ],
            "items": [
                {
                    "name": line.name,
                    "amount": line.amount.to_wire(),
                    "share_weights": {pid: str(w) for pid, w in line.share_weights.items()},
                }
                for line in self.items
            ],
            "tax_rate_percent": str(self.tax_rate_percent),
            "tip_rate_percent": str(self.tip_rate_percent),
            "full_ower_id": self.full_ower_id,
            "is_personal": self.is_personal,
            "details": self.details.to_document(),
        }

    @classmethod
    def from_document(
        cls,
        document: Mapping[str, Any],
        policy: ValidationPolicy = DEFAULT_POLICY,
    ) -> ExpenseAggregate:
        """Rebuild an aggregate, re-running every validation."""
        currency = Currency(document["currency"])
        payer_doc = document["payer"]
        if payer_doc["type"] == "single":
            payer_spec: PayerSpec = SinglePayer(payer_doc["participant_id"])
        else:
            payer_spec = MultiplePayers.of(
                (p["participant_id"], Money.from_wire(p["paid"]))
                for p in payer_doc["payments"]
            )
        participants = [
            Participant(
                id=p["id"],
                display_name=p["display_name"],
                split_input=_input_from_document(p["input"], currency),
            )
            for p in document["participants"]
        ]
        items = [
            ItemizedLine(
                name=line["name"],
                amount=Money.from_wire(line["amount"]),
                share_weights={pid: Decimal(w) for pid, w in line["share_weights"].items()},
            )
            for line in document.get("items", [])
        ]
        return cls.create(
            expense_id=document["id"],
            currency=currency,
            method=document["method"],
            payer_spec=payer_spec,
            participants=participants,
            total=Money.from_wire(document["total"]),
            items=items,
            tax_rate_percent=document.get("tax_rate_percent", "0"),
            tip_rate_percent=document.get("tip_rate_percent", "0"),
            full_ower_id=document.get("full_ower_id"),
            is_personal=document.get("is_personal", False),
            details=ExpenseDetails.from_document(document.get("details", {})),
            policy=policy,
        )


def _to_decimal(value: Decimal | int | str) -> Decimal:
    if isinstance(value, float):
        raise TypeError("rates must be Decimal, int or str, not float")
    return Decimal(str(value))


def _check_personal(
    roster: ParticipantRoster,
    method: SplitMethod,
    payer_spec: PayerSpec,
) -> None:
    if len(roster) != 1:
        raise SplitValidationError(
            SplitInvariant.PERSONAL_EXPENSE,
            f"Personal expenses have exactly one participant, got {len(roster)}",
            {"participant_count": len(roster)},
        )
    if method is not SplitMethod.EQUALLY:
        raise SplitValidationError(
            SplitInvariant.PERSONAL_EXPENSE,
            f"Personal expenses are split EQUALLY, got {method.value}",
            {"method": method.value},
        )
    (owner,) = roster.ids
    if payer_spec.payer_ids != (owner,):
        raise SplitValidationError(
            SplitInvariant.PERSONAL_EXPENSE,
            f"Personal expense must be paid by its participant {owner}",
            {"payer_ids": list(payer_spec.payer_ids)},
        )


def _input_to_document(split_input: SplitInput) -> dict[str, Any]:
    if isinstance(split_input, PercentInput):
        return {"type": "percent", "percent": str(split_input.percent)}
    if isinstance(split_input, ExactInput):
        return {"type": "exact", "amount": split_input.amount.to_wire()}
    if isinstance(split_input, ShareInput):
        return {"type": "shares", "count": split_input.count}
    return {"type": "none"}


def _input_from_document(data: Mapping[str, Any], currency: Currency) -> SplitInput:
    kind = data.get("type", "none")
    if kind == "percent":
        return PercentInput(Decimal(data["percent"]))
    if kind == "exact":
        amount = Money.from_wire(data["amount"])
        if amount.currency != currency:
            raise ValueError(f"Exact amount in {amount.currency}, expense in {currency}")
        return ExactInput(amount)
    if kind == "shares":
        return ShareInput(int(data["count"]))
    return NoInput()
