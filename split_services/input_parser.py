"""
Raw expense input -> kernel arguments.

Responsibility:
    Turns the plain mapping a client sends (JSON-shaped, snake_case) into
    the arguments of ``ExpenseAggregate.create``.  Amounts arrive as
    ``{"minor_units": int, "scale": int}`` and must carry the expense
    currency's scale.  Each participant gets only the split input its
    method reads; fields for other methods are ignored.

    Also compares client-computed owed / net amounts with the recomputed
    balance sheet (``find_breakdown_mismatches``).

Failure modes:
    - InvalidExpenseInputError for missing keys, wrong types, wrong scale.
    - UnknownParticipantError (raised by the resolver) for unknown ids.

Raw shape::

    {
      "expense_id": "optional",
      "description": "Dinner", "category": "food", "date": "2024-03-01",
      "notes": "", "group_id": null, "group_name": null, "creator_id": "alice",
      "currency": "USD",
      "total_amount": {"minor_units": 3000, "scale": 2},
      "split_method": "EQUALLY",
      "participants": [
        {"user_id": "alice", "name": "Alice", "percent": "50",
         "exact": {"minor_units": 1500, "scale": 2}, "shares": 1,
         "owes": {...}, "net": {...}}
      ],
      "payer_id": "alice",
      "payers": [{"user_id": "alice", "paid_amount": {...}}],
      "items": [{"name": "Pizza", "amount": {...}, "user_shares": {"alice": 1}}],
      "tax_rate": "8", "tip_rate": "15",
      "full_ower_id": "bob", "is_personal": false
    }
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from split_kernel.domain.balances import BalanceSheet
from split_kernel.domain.expense import ExpenseDetails
from split_kernel.domain.participants import (
    ExactInput,
    NoInput,
    Participant,
    PercentInput,
    ShareInput,
    SplitInput,
)
from split_kernel.domain.payers import MultiplePayers, PayerSpec, SinglePayer
from split_kernel.domain.strategies import ItemizedLine, SplitMethod
from split_kernel.domain.values import Currency, Money
from split_kernel.exceptions import InvalidExpenseInputError

# (participant_id, display name from input or None) -> display name
NameResolver = Callable[[str, "str | None"], str]


@dataclass(frozen=True)
class ClientClaim:
    """Owed / net amounts a client computed for one participant."""

    owed: Money | None = None
    net: Money | None = None


@dataclass(frozen=True)
class BreakdownMismatch:
    """A client-computed amount that differs from the recomputed one."""

    participant_id: str
    field: str
    client_value: Money
    computed_value: Money


@dataclass(frozen=True)
class ParsedExpense:
    """Everything ``ExpenseAggregate.create`` needs, plus client claims."""

    expense_id: str | None
    currency: Currency
    method: SplitMethod
    participants: list[Participant]
    payer_spec: PayerSpec
    total: Money | None
    items: list[ItemizedLine] = field(default_factory=list)
    tax_rate_percent: Decimal = Decimal(0)
    tip_rate_percent: Decimal = Decimal(0)
    full_ower_id: str | None = None
    is_personal: bool = False
    details: ExpenseDetails = ExpenseDetails()
    client_claims: dict[str, ClientClaim] = field(default_factory=dict)

    def create_kwargs(self) -> dict[str, Any]:
        return {
            "currency": self.currency,
            "method": self.method,
            "payer_spec": self.payer_spec,
            "participants": self.participants,
            "total": self.total,
            "items": self.items,
            "tax_rate_percent": self.tax_rate_percent,
            "tip_rate_percent": self.tip_rate_percent,
            "full_ower_id": self.full_ower_id,
            "is_personal": self.is_personal,
            "details": self.details,
        }


def parse_amount(value: Any, currency: Currency, field_name: str) -> Money:
    """
    Parse a boundary amount ``{"minor_units": int, "scale": int}``.

    Raises:
        InvalidExpenseInputError: Not a mapping, non-integer minor units,
            or a scale / currency that differs from the expense's.
    """
    if isinstance(value, Money):
        if value.currency != currency:
            raise InvalidExpenseInputError(field_name, f"currency {value.currency} is not {currency}")
        return value
    if not isinstance(value, Mapping):
        raise InvalidExpenseInputError(
            field_name, "amounts must be {'minor_units': int, 'scale': int}"
        )
    minor_units = value.get("minor_units")
    if isinstance(minor_units, bool) or not isinstance(minor_units, int):
        raise InvalidExpenseInputError(field_name, f"minor_units must be an integer, got {minor_units!r}")
    scale = value.get("scale")
    if scale != currency.decimal_places:
        raise InvalidExpenseInputError(
            field_name,
            f"scale {scale!r} does not match {currency.code} ({currency.decimal_places})",
        )
    code = value.get("currency", currency.code)
    if str(code).upper() != currency.code:
        raise InvalidExpenseInputError(field_name, f"currency {code} is not {currency.code}")
    return Money.from_minor(minor_units, currency)


def parse_decimal(value: Any, field_name: str) -> Decimal:
    """Parse a rate, percent or weight.  JSON floats go through their shortest repr."""
    if isinstance(value, bool) or value is None:
        raise InvalidExpenseInputError(field_name, f"expected a number, got {value!r}")
    if isinstance(value, float):
        value = repr(value)
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise InvalidExpenseInputError(field_name, f"expected a number, got {value!r}") from None
    if not result.is_finite():
        raise InvalidExpenseInputError(field_name, f"expected a finite number, got {value!r}")
    return result


def parse_expense_input(
    raw: Mapping[str, Any],
    *,
    default_currency: str = "USD",
    default_tax_rate_percent: Decimal = Decimal(0),
    default_tip_rate_percent: Decimal = Decimal(0),
    resolve_name: NameResolver | None = None,
    created_at: datetime | None = None,
) -> ParsedExpense:
    """
    Parse a raw expense mapping.

    Raises:
        InvalidExpenseInputError: On malformed input.
    """
    if not isinstance(raw, Mapping):
        raise InvalidExpenseInputError("<root>", "expense input must be a mapping")

    try:
        currency = Currency(raw.get("currency") or default_currency)
    except ValueError as exc:
        raise InvalidExpenseInputError("currency", str(exc)) from None

    method_value = raw.get("split_method", SplitMethod.EQUALLY.value)
    try:
        method = SplitMethod(str(method_value).upper())
    except ValueError:
        raise InvalidExpenseInputError("split_method", f"unknown split method {method_value!r}") from None

    raw_participants = raw.get("participants")
    if not isinstance(raw_participants, list):
        raise InvalidExpenseInputError("participants", "must be a list")

    participants: list[Participant] = []
    claims: dict[str, ClientClaim] = {}
    for index, entry in enumerate(raw_participants):
        where = f"participants[{index}]"
        if not isinstance(entry, Mapping):
            raise InvalidExpenseInputError(where, "must be a mapping")
        pid = entry.get("user_id")
        if not isinstance(pid, str) or not pid:
            raise InvalidExpenseInputError(f"{where}.user_id", "must be a non-empty string")
        name = entry.get("name")
        display_name = resolve_name(pid, name) if resolve_name else (name or pid)
        participants.append(
            Participant(
                id=pid,
                display_name=display_name,
                split_input=_split_input(entry, method, currency, where),
            )
        )
        owed = entry.get("owes")
        net = entry.get("net")
        if owed is not None or net is not None:
            claims[pid] = ClientClaim(
                owed=parse_amount(owed, currency, f"{where}.owes") if owed is not None else None,
                net=parse_amount(net, currency, f"{where}.net") if net is not None else None,
            )

    total_raw = raw.get("total_amount")
    total = parse_amount(total_raw, currency, "total_amount") if total_raw is not None else None

    items: list[ItemizedLine] = []
    if method is SplitMethod.ITEMIZED:
        for index, item in enumerate(raw.get("items") or []):
            where = f"items[{index}]"
            if not isinstance(item, Mapping):
                raise InvalidExpenseInputError(where, "must be a mapping")
            weights = item.get("user_shares") or {}
            if not isinstance(weights, Mapping):
                raise InvalidExpenseInputError(f"{where}.user_shares", "must be a mapping")
            items.append(
                ItemizedLine(
                    name=str(item.get("name", f"item {index + 1}")),
                    amount=parse_amount(item.get("amount"), currency, f"{where}.amount"),
                    share_weights={
                        str(uid): parse_decimal(w, f"{where}.user_shares.{uid}")
                        for uid, w in weights.items()
                    },
                )
            )

    tax_rate = raw.get("tax_rate")
    tip_rate = raw.get("tip_rate")

    return ParsedExpense(
        expense_id=raw.get("expense_id"),
        currency=currency,
        method=method,
        participants=participants,
        payer_spec=_payer_spec(raw, currency),
        total=total,
        items=items,
        tax_rate_percent=parse_decimal(tax_rate, "tax_rate") if tax_rate is not None else default_tax_rate_percent,
        tip_rate_percent=parse_decimal(tip_rate, "tip_rate") if tip_rate is not None else default_tip_rate_percent,
        full_ower_id=raw.get("full_ower_id"),
        is_personal=bool(raw.get("is_personal", False)),
        details=ExpenseDetails(
            description=str(raw.get("description") or ""),
            category=str(raw.get("category") or "general"),
            expense_date=_parse_date(raw.get("date")),
            notes=str(raw.get("notes") or ""),
            group_id=raw.get("group_id"),
            group_name=raw.get("group_name"),
            creator_id=raw.get("creator_id"),
            created_at=created_at,
        ),
        client_claims=claims,
    )


def find_breakdown_mismatches(
    sheet: BalanceSheet,
    claims: Mapping[str, ClientClaim],
    tolerance_minor_units: int,
) -> list[BreakdownMismatch]:
    """Client-computed amounts that differ from the sheet by more than the tolerance."""
    mismatches: list[BreakdownMismatch] = []
    for pid, claim in claims.items():
        if pid not in sheet:
            continue
        balance = sheet[pid]
        for field_name, client_value, computed in (
            ("owed", claim.owed, balance.owed),
            ("net", claim.net, balance.net),
        ):
            if client_value is None:
                continue
            if not client_value.compare_with_epsilon(computed, tolerance_minor_units):
                mismatches.append(
                    BreakdownMismatch(
                        participant_id=pid,
                        field=field_name,
                        client_value=client_value,
                        computed_value=computed,
                    )
                )
    return mismatches


def _split_input(
    entry: Mapping[str, Any],
    method: SplitMethod,
    currency: Currency,
    where: str,
) -> SplitInput:
    if method is SplitMethod.PERCENTAGE and entry.get("percent") is not None:
        return PercentInput(parse_decimal(entry["percent"], f"{where}.percent"))
    if method is SplitMethod.EXACT_AMOUNTS and entry.get("exact") is not None:
        return ExactInput(parse_amount(entry["exact"], currency, f"{where}.exact"))
    if method is SplitMethod.SHARES and entry.get("shares") is not None:
        shares = entry["shares"]
        if isinstance(shares, bool) or not isinstance(shares, int):
            raise InvalidExpenseInputError(f"{where}.shares", f"must be an integer, got {shares!r}")
        return ShareInput(shares)
    return NoInput()


def _payer_spec(raw: Mapping[str, Any], currency: Currency) -> PayerSpec:
    payer_id = raw.get("payer_id")
    payers = raw.get("payers")
    if payer_id is not None and payers:
        raise InvalidExpenseInputError("payers", "give either payer_id or payers, not both")
    if payer_id is not None:
        return SinglePayer(str(payer_id))
    if not isinstance(payers, list) or not payers:
        raise InvalidExpenseInputError("payers", "at least one payer is required")

    if len(payers) == 1 and isinstance(payers[0], Mapping) and payers[0].get("paid_amount") is None:
        return SinglePayer(str(payers[0].get("user_id")))

    payments: list[tuple[str, Money]] = []
    for index, entry in enumerate(payers):
        where = f"payers[{index}]"
        if not isinstance(entry, Mapping) or not entry.get("user_id"):
            raise InvalidExpenseInputError(where, "must be a mapping with a user_id")
        if entry.get("paid_amount") is None:
            raise InvalidExpenseInputError(f"{where}.paid_amount", "required with more than one payer")
        payments.append(
            (str(entry["user_id"]), parse_amount(entry["paid_amount"], currency, f"{where}.paid_amount"))
        )
    return MultiplePayers.of(payments)


def _parse_date(value: Any) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise InvalidExpenseInputError("date", f"expected YYYY-MM-DD, got {value!r}") from None
