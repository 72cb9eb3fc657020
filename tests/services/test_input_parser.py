"""
Tests for raw expense input parsing.

Verifies:
- Boundary amounts must be minor units at the currency's scale
- Only the input field of the active split method is read
- Payer forms (payer_id, single entry, several paid amounts)
- Malformed input raises InvalidExpenseInputError naming the field
- Client breakdown claims are collected and compared
"""

from datetime import date
from decimal import Decimal

import pytest

from split_kernel.domain.expense import ExpenseAggregate
from split_kernel.domain.participants import ExactInput, NoInput, PercentInput, ShareInput
from split_kernel.domain.payers import MultiplePayers, SinglePayer
from split_kernel.domain.strategies import SplitMethod
from split_kernel.domain.values import Currency, Money
from split_kernel.exceptions import InvalidExpenseInputError
from split_services.input_parser import (
    find_breakdown_mismatches,
    parse_amount,
    parse_decimal,
    parse_expense_input,
)

USD = Currency("USD")


def usd(minor_units: int) -> Money:
    return Money.from_minor(minor_units, USD)


def base_input(**overrides):
    raw = {
        "description": "Groceries",
        "total_amount": {"minor_units": 1000, "scale": 2},
        "split_method": "EQUALLY",
        "participants": [{"user_id": "a", "name": "A"}, {"user_id": "b", "name": "B"}],
        "payer_id": "a",
    }
    raw.update(overrides)
    return raw


class TestParseAmount:
    def test_minor_units(self):
        assert parse_amount({"minor_units": 1050, "scale": 2}, USD, "x") == usd(1050)

    def test_wrong_scale(self):
        with pytest.raises(InvalidExpenseInputError) as exc_info:
            parse_amount({"minor_units": 1050, "scale": 3}, USD, "total_amount")
        assert exc_info.value.field == "total_amount"

    def test_raw_decimal_rejected(self):
        with pytest.raises(InvalidExpenseInputError):
            parse_amount("10.50", USD, "x")

    def test_float_minor_units_rejected(self):
        with pytest.raises(InvalidExpenseInputError):
            parse_amount({"minor_units": 10.5, "scale": 2}, USD, "x")

    def test_other_currency_rejected(self):
        with pytest.raises(InvalidExpenseInputError):
            parse_amount({"minor_units": 100, "scale": 2, "currency": "EUR"}, USD, "x")

    def test_money_passes_through(self):
        assert parse_amount(usd(5), USD, "x") == usd(5)


class TestParseDecimal:
    def test_json_float_uses_shortest_repr(self):
        assert parse_decimal(33.33, "percent") == Decimal("33.33")

    def test_string(self):
        assert parse_decimal("8.875", "tax_rate") == Decimal("8.875")

    @pytest.mark.parametrize("value", [None, True, "abc", "NaN", "Infinity"])
    def test_rejected(self, value):
        with pytest.raises(InvalidExpenseInputError):
            parse_decimal(value, "percent")


class TestParseExpenseInput:
    def test_equal_split_defaults(self):
        parsed = parse_expense_input(base_input())
        assert parsed.method is SplitMethod.EQUALLY
        assert parsed.total == usd(1000)
        assert parsed.payer_spec == SinglePayer("a")
        assert [p.split_input for p in parsed.participants] == [NoInput(), NoInput()]
        assert parsed.details.category == "general"

    def test_method_case_insensitive(self):
        assert parse_expense_input(base_input(split_method="shares")).method is SplitMethod.SHARES

    def test_unknown_method(self):
        with pytest.raises(InvalidExpenseInputError) as exc_info:
            parse_expense_input(base_input(split_method="RANDOM"))
        assert exc_info.value.field == "split_method"

    def test_only_active_method_field_read(self):
        raw = base_input(
            split_method="PERCENTAGE",
            participants=[
                {"user_id": "a", "percent": "60", "shares": 3, "exact": {"minor_units": 1, "scale": 2}},
                {"user_id": "b", "percent": "40"},
            ],
        )
        parsed = parse_expense_input(raw)
        assert [p.split_input for p in parsed.participants] == [
            PercentInput(Decimal(60)),
            PercentInput(Decimal(40)),
        ]

    def test_exact_and_shares_inputs(self):
        exact = parse_expense_input(
            base_input(
                split_method="EXACT_AMOUNTS",
                participants=[{"user_id": "a", "exact": {"minor_units": 1000, "scale": 2}}],
            )
        )
        assert exact.participants[0].split_input == ExactInput(usd(1000))

        shares = parse_expense_input(
            base_input(split_method="SHARES", participants=[{"user_id": "a", "shares": 2}])
        )
        assert shares.participants[0].split_input == ShareInput(2)

    def test_non_integer_shares(self):
        with pytest.raises(InvalidExpenseInputError):
            parse_expense_input(
                base_input(split_method="SHARES", participants=[{"user_id": "a", "shares": 1.5}])
            )

    def test_missing_participants(self):
        raw = base_input()
        del raw["participants"]
        with pytest.raises(InvalidExpenseInputError):
            parse_expense_input(raw)

    def test_participant_without_id(self):
        with pytest.raises(InvalidExpenseInputError) as exc_info:
            parse_expense_input(base_input(participants=[{"name": "Anon"}]))
        assert exc_info.value.field == "participants[0].user_id"

    def test_multiple_payers(self):
        raw = base_input(
            payer_id=None,
            payers=[
                {"user_id": "a", "paid_amount": {"minor_units": 600, "scale": 2}},
                {"user_id": "b", "paid_amount": {"minor_units": 400, "scale": 2}},
            ],
        )
        parsed = parse_expense_input(raw)
        assert parsed.payer_spec == MultiplePayers.of([("a", usd(600)), ("b", usd(400))])

    def test_single_payer_entry_without_amount(self):
        parsed = parse_expense_input(base_input(payer_id=None, payers=[{"user_id": "b"}]))
        assert parsed.payer_spec == SinglePayer("b")

    def test_missing_paid_amount_with_several_payers(self):
        raw = base_input(payer_id=None, payers=[{"user_id": "a"}, {"user_id": "b"}])
        with pytest.raises(InvalidExpenseInputError):
            parse_expense_input(raw)

    def test_no_payer(self):
        with pytest.raises(InvalidExpenseInputError):
            parse_expense_input(base_input(payer_id=None))

    def test_itemized(self):
        raw = base_input(
            split_method="ITEMIZED",
            total_amount=None,
            items=[
                {
                    "name": "Pizza",
                    "amount": {"minor_units": 5000, "scale": 2},
                    "user_shares": {"a": 1, "b": "1"},
                }
            ],
            tax_rate="8",
            tip_rate=15,
        )
        parsed = parse_expense_input(raw)
        assert parsed.total is None
        assert parsed.items[0].share_weights == {"a": Decimal(1), "b": Decimal(1)}
        assert parsed.tax_rate_percent == Decimal(8)
        assert parsed.tip_rate_percent == Decimal(15)

        expense = ExpenseAggregate.create(expense_id="x", **parsed.create_kwargs())
        assert expense.total == usd(6210)

    def test_default_rates_apply(self):
        parsed = parse_expense_input(
            base_input(), default_tax_rate_percent=Decimal(5), default_tip_rate_percent=Decimal(10)
        )
        assert parsed.tax_rate_percent == Decimal(5)
        assert parsed.tip_rate_percent == Decimal(10)

    def test_details(self):
        parsed = parse_expense_input(
            base_input(date="2024-03-01", notes="weekly", group_id="g", group_name="Flat", creator_id="a")
        )
        assert parsed.details.expense_date == date(2024, 3, 1)
        assert parsed.details.group_name == "Flat"
        assert parsed.details.creator_id == "a"

    def test_bad_date(self):
        with pytest.raises(InvalidExpenseInputError) as exc_info:
            parse_expense_input(base_input(date="01/03/2024"))
        assert exc_info.value.field == "date"

    def test_resolver_supplies_names(self):
        parsed = parse_expense_input(
            base_input(participants=[{"user_id": "a"}]),
            resolve_name=lambda pid, name: name or f"User {pid}",
        )
        assert parsed.participants[0].display_name == "User a"

    def test_zero_decimal_currency(self):
        parsed = parse_expense_input(base_input(currency="JPY", total_amount={"minor_units": 1500, "scale": 0}))
        assert parsed.total == Money.from_minor(1500, "JPY")


class TestBreakdownMismatches:
    def test_reports_only_differences_beyond_tolerance(self):
        raw = base_input(
            participants=[
                {"user_id": "a", "owes": {"minor_units": 500, "scale": 2}, "net": {"minor_units": 501, "scale": 2}},
                {"user_id": "b", "owes": {"minor_units": 700, "scale": 2}},
            ]
        )
        parsed = parse_expense_input(raw)
        expense = ExpenseAggregate.create(expense_id="x", **parsed.create_kwargs())

        mismatches = find_breakdown_mismatches(expense.balances, parsed.client_claims, 1)
        assert [(m.participant_id, m.field) for m in mismatches] == [("b", "owed")]
        assert mismatches[0].computed_value == usd(500)
        assert mismatches[0].client_value == usd(700)
