"""
Tests for ExpenseService over the in-memory repository.

Verifies:
- create_expense validates, stores, logs and publishes EXPENSE_CREATED
- Validation failures store nothing and are logged with their invariant
- Directory resolution of participant ids
- get_balances / settlement entry points return the updated view
- Idempotency keys, given or derived from a request id, make replays no-ops
- handle_event reloads by id and ignores payload content
- Listings by involvement and the per-user outstanding summary
"""

from datetime import UTC, datetime

import pytest

from split_config.schema import SplitSettings
from split_kernel.domain.settlement import FULL, SettlementState
from split_kernel.domain.values import Money
from split_kernel.exceptions import (
    ExpenseNotFoundError,
    InvalidExpenseInputError,
    NotEligibleError,
    ParticipantNotFoundError,
    PayerValidationError,
    SettlementRangeError,
    SplitValidationError,
    UnknownParticipantError,
)
from split_kernel.invariants import SplitInvariant
from split_kernel.utils.idempotency import generate_settlement_key
from split_services.expense_service import BalanceDirection, ExpenseService
from split_services.memory_repository import InMemoryExpenseRepository
from split_services.ports import ExpenseEvent, ExpenseEventType, Involvement


def usd(minor_units: int) -> Money:
    return Money.from_minor(minor_units, "USD")


class TestCreateExpense:
    def test_creates_and_stores(self, service, dinner_input, memory_repository):
        expense = service.create_expense(dinner_input, actor_id="alice")

        assert expense.id == "exp-1"
        assert memory_repository.get("exp-1") == expense
        assert expense.participants.get("bob").display_name == "Bob"
        assert expense.details.creator_id == "alice"
        assert expense.details.created_at == datetime(2024, 3, 1, 12, 0, tzinfo=UTC)

    def test_publishes_created_event(self, service, dinner_input, event_bus):
        expense = service.create_expense(dinner_input, actor_id="alice")
        assert [(e.event_type, e.expense_id) for e in event_bus.events] == [
            (ExpenseEventType.EXPENSE_CREATED, expense.id)
        ]

    def test_logs_creation(self, service, dinner_input, captured_logs):
        service.create_expense(dinner_input, actor_id="alice")
        created = [r for r in captured_logs() if r["message"] == "expense_created"]
        assert len(created) == 1
        assert created[0]["expense_id"] == "exp-1"
        assert created[0]["actor_id"] == "alice"
        assert created[0]["total"] == {"minor_units": 3000, "scale": 2, "currency": "USD"}

    def test_explicit_expense_id(self, service, dinner_input):
        assert service.create_expense({**dinner_input, "expense_id": "mine"}).id == "mine"

    def test_validation_failure_stores_nothing(self, service, dinner_input, memory_repository, captured_logs, event_bus):
        raw = {
            **dinner_input,
            "split_method": "PERCENTAGE",
            "participants": [
                {"user_id": "alice", "percent": "50"},
                {"user_id": "bob", "percent": "40"},
            ],
        }
        with pytest.raises(SplitValidationError) as exc_info:
            service.create_expense(raw)
        assert exc_info.value.invariant is SplitInvariant.PERCENT_SUM

        assert memory_repository.list_for_user("alice") == []
        assert event_bus.events == []
        failures = [r for r in captured_logs() if r["message"] == "split_validation_failed"]
        assert failures[0]["invariant"] == SplitInvariant.PERCENT_SUM.value

    def test_payer_sum_mismatch(self, service, dinner_input, amount):
        raw = {
            **dinner_input,
            "payer_id": None,
            "payers": [
                {"user_id": "alice", "paid_amount": amount(1000)},
                {"user_id": "bob", "paid_amount": amount(1000)},
            ],
        }
        with pytest.raises(PayerValidationError):
            service.create_expense(raw)

    def test_unknown_participant_rejected(self, service, dinner_input):
        raw = {**dinner_input, "participants": [*dinner_input["participants"], {"user_id": "mallory"}]}
        with pytest.raises(UnknownParticipantError) as exc_info:
            service.create_expense(raw)
        assert exc_info.value.participant_id == "mallory"

    def test_no_directory_uses_given_names(self, memory_repository, dinner_input):
        service = ExpenseService(memory_repository)
        raw = {**dinner_input, "participants": [{"user_id": "x", "name": "Xavier"}, {"user_id": "alice"}]}
        expense = service.create_expense(raw)
        assert expense.participants.get("x").display_name == "Xavier"
        assert expense.participants.get("alice").display_name == "alice"

    def test_malformed_input(self, service, dinner_input):
        with pytest.raises(InvalidExpenseInputError):
            service.create_expense({**dinner_input, "total_amount": "30.00"})

    def test_client_breakdown_mismatch_logged_and_recomputed(self, service, dinner_input, amount, captured_logs):
        raw = {
            **dinner_input,
            "participants": [
                {"user_id": "alice", "owes": amount(1000)},
                {"user_id": "bob", "owes": amount(1200)},
                {"user_id": "carol", "owes": amount(800)},
            ],
        }
        expense = service.create_expense(raw)
        assert expense.balances["bob"].owed == usd(1000)

        mismatches = [r for r in captured_logs() if r["message"] == "client_breakdown_mismatch"]
        assert {r["mismatch_participant"] for r in mismatches} == {"bob", "carol"}

    def test_check_client_breakdown_stores_nothing(self, service, dinner_input, amount, memory_repository):
        raw = {**dinner_input, "participants": [{"user_id": "alice", "net": amount(0)}, {"user_id": "bob"}]}
        mismatches = service.check_client_breakdown(raw)
        assert [(m.participant_id, m.field) for m in mismatches] == [("alice", "net")]
        assert memory_repository.list_for_user("alice") == []

    def test_settings_default_tax_and_tip(self, memory_repository, directory, amount):
        service = ExpenseService(
            memory_repository,
            settings=SplitSettings(default_tax_rate_percent="10", default_tip_rate_percent="0"),
            directory=directory,
        )
        expense = service.create_expense(
            {
                "split_method": "ITEMIZED",
                "participants": [{"user_id": "alice"}, {"user_id": "bob"}],
                "payer_id": "alice",
                "items": [{"name": "Tea", "amount": amount(1000), "user_shares": {"alice": 1, "bob": 1}}],
            }
        )
        assert expense.total == usd(1100)


class TestSettlement:
    def test_get_balances(self, service, dinner_input):
        expense = service.create_expense(dinner_input)
        view = service.get_balances(expense.id)
        assert view["alice"].net == usd(2000)
        assert view["bob"].state is SettlementState.UNSETTLED

    def test_settle_own_debt_full(self, service, dinner_input, event_bus, captured_logs):
        expense = service.create_expense(dinner_input)
        view = service.settle_own_debt(expense.id, "bob", FULL, actor_id="bob")

        assert view["bob"].state is SettlementState.FULLY_SETTLED
        assert view["alice"].settled_amount == usd(1000)
        assert event_bus.events[-1].event_type is ExpenseEventType.EXPENSE_SETTLED

        applied = [r for r in captured_logs() if r["message"] == "settlement_applied"]
        assert applied[0]["participant_id"] == "bob"
        assert applied[0]["expense_id"] == expense.id

    def test_settle_with_wire_amount(self, service, dinner_input, amount):
        expense = service.create_expense(dinner_input)
        view = service.settle_own_debt(expense.id, "carol", amount(250))
        assert view["carol"].remaining == usd(750)

    def test_settle_out_of_range(self, service, dinner_input, captured_logs):
        expense = service.create_expense(dinner_input)
        with pytest.raises(SettlementRangeError):
            service.settle_own_debt(expense.id, "bob", usd(5000))
        assert service.get_balances(expense.id)["bob"].settled_amount == usd(0)
        assert any(r["message"] == "settlement_rejected" for r in captured_logs())

    def test_settle_not_eligible(self, service, dinner_input):
        expense = service.create_expense(dinner_input)
        with pytest.raises(NotEligibleError):
            service.settle_own_debt(expense.id, "alice", FULL)

    def test_settle_unknown_ids(self, service, dinner_input):
        expense = service.create_expense(dinner_input)
        with pytest.raises(ExpenseNotFoundError):
            service.settle_own_debt("nope", "bob", FULL)
        with pytest.raises(ParticipantNotFoundError):
            service.settle_own_debt(expense.id, "mallory", FULL)

    def test_idempotency_key_replay(self, service, dinner_input, event_bus, captured_logs):
        expense = service.create_expense(dinner_input)
        key = generate_settlement_key("settle", expense.id, "bob", "req-1")

        service.settle_own_debt(expense.id, "bob", usd(400), idempotency_key=key)
        published = len(event_bus.events)
        view = service.settle_own_debt(expense.id, "bob", usd(400), idempotency_key=key)

        assert view["bob"].settled_amount == usd(400)
        assert len(event_bus.events) == published
        assert any(r["message"] == "settlement_replayed" for r in captured_logs())

    def test_request_id_derives_key(self, service, memory_repository, dinner_input):
        expense = service.create_expense(dinner_input)

        service.settle_own_debt(expense.id, "bob", usd(400), request_id="msg-7")
        view = service.settle_own_debt(expense.id, "bob", usd(400), request_id="msg-7")

        assert view["bob"].settled_amount == usd(400)
        assert memory_repository.load_ledger(expense.id).applied_keys == {
            generate_settlement_key("settle_own_debt", expense.id, "bob", "msg-7")
        }

    def test_request_id_scoped_per_operation(self, service, memory_repository, dinner_input, amount):
        expense = service.create_expense(dinner_input)
        service.settle_own_debt(expense.id, "bob", usd(300), request_id="msg-1")
        view = service.record_payments_received(
            expense.id, "alice", {"carol": amount(500)}, request_id="msg-1"
        )

        assert view["bob"].settled_amount == usd(300)
        assert view["carol"].settled_amount == usd(500)
        assert len(memory_repository.load_ledger(expense.id).applied_keys) == 2

    def test_explicit_key_wins_over_request_id(self, service, dinner_input):
        expense = service.create_expense(dinner_input)
        service.settle_own_debt(expense.id, "bob", usd(200), idempotency_key="k", request_id="a")
        view = service.settle_own_debt(expense.id, "bob", usd(200), idempotency_key="k", request_id="b")
        assert view["bob"].settled_amount == usd(200)

    def test_full_on_settled_record_is_noop(self, service, dinner_input, event_bus):
        expense = service.create_expense(dinner_input)
        service.settle_own_debt(expense.id, "bob", FULL)
        published = len(event_bus.events)
        view = service.settle_own_debt(expense.id, "bob", FULL)
        assert view["bob"].settled_amount == usd(1000)
        assert len(event_bus.events) == published

    def test_record_payments_received(self, service, amount):
        expense = service.create_expense(
            {
                "total_amount": amount(10000),
                "split_method": "EXACT_AMOUNTS",
                "participants": [
                    {"user_id": "alice", "exact": amount(0)},
                    {"user_id": "bob", "exact": amount(0)},
                    {"user_id": "carol", "exact": amount(10000)},
                ],
                "payers": [
                    {"user_id": "alice", "paid_amount": amount(8000)},
                    {"user_id": "bob", "paid_amount": amount(2000)},
                ],
            }
        )
        view = service.record_payments_received(expense.id, "alice", {"carol": amount(5000)})
        assert view["carol"].settled_amount == usd(4000)
        assert view["alice"].settled_amount == usd(4000)
        assert view["bob"].settled_amount == usd(0)

    def test_record_payments_batch_atomic(self, service, dinner_input):
        expense = service.create_expense(dinner_input)
        with pytest.raises(SettlementRangeError):
            service.record_payments_received(expense.id, "alice", {"bob": usd(500), "carol": usd(-100)})
        view = service.get_balances(expense.id)
        assert view["bob"].settled_amount == usd(0)
        assert view["alice"].settled_amount == usd(0)

    def test_expense_settled_once_everyone_paid(self, service, dinner_input):
        expense = service.create_expense(dinner_input)
        service.settle_own_debt(expense.id, "bob", FULL)
        view = service.settle_own_debt(expense.id, "carol", FULL)
        assert view.is_settled


class TestEvents:
    def test_handle_event_reloads_current_state(self, service, dinner_input):
        expense = service.create_expense(dinner_input)
        stale = ExpenseEvent(ExpenseEventType.EXPENSE_CREATED, expense.id)
        service.settle_own_debt(expense.id, "bob", FULL)

        view = service.handle_event(stale)
        assert view["bob"].state is SettlementState.FULLY_SETTLED

    def test_duplicate_delivery_is_harmless(self, service, dinner_input):
        expense = service.create_expense(dinner_input)
        event = ExpenseEvent(ExpenseEventType.EXPENSE_SETTLED, expense.id)
        first = service.handle_event(event)
        second = service.handle_event(event)
        assert first == second

    def test_unknown_expense_returns_none(self, service, captured_logs):
        assert service.handle_event(ExpenseEvent(ExpenseEventType.EXPENSE_CREATED, "ghost")) is None
        assert any(r["message"] == "event_expense_missing" for r in captured_logs())

    def test_subscriber_chain(self, service, dinner_input, event_bus):
        seen = []
        event_bus.subscribe(lambda event: seen.append(service.handle_event(event)))
        expense = service.create_expense(dinner_input)
        assert seen[0].expense_id == expense.id


class TestListingsAndSummary:
    def test_list_by_involvement(self, service, dinner_input, deterministic_clock):
        first = service.create_expense(dinner_input, actor_id="alice")
        deterministic_clock.advance(60)
        second = service.create_expense({**dinner_input, "payer_id": "bob"}, actor_id="carol")

        assert [e.id for e in service.list_expenses_for_user("bob")] == [second.id, first.id]
        assert [e.id for e in service.list_expenses_for_user("bob", Involvement.PAYER)] == [second.id]
        assert [e.id for e in service.list_expenses_for_user("carol", "CREATOR")] == [second.id]
        assert service.list_expenses_for_user("dave") == []

    def test_user_summary(self, service, dinner_input, deterministic_clock):
        first = service.create_expense(dinner_input)
        deterministic_clock.advance(60)
        service.create_expense({**dinner_input, "payer_id": "bob"})

        alice = service.summarize_user_balance("alice")
        assert alice.owed_to_you == usd(2000)
        assert alice.you_owe == usd(1000)
        assert alice.net == usd(1000)
        assert alice.direction is BalanceDirection.OWED_TO_YOU

        service.settle_own_debt(first.id, "carol", FULL)
        carol = service.summarize_user_balance("carol")
        assert carol.you_owe == usd(1000)
        assert carol.direction is BalanceDirection.YOU_OWE
        assert len(carol.unsettled_expense_ids) == 1

    def test_summary_for_stranger_is_settled(self, service):
        summary = service.summarize_user_balance("nobody")
        assert summary.direction is BalanceDirection.SETTLED
        assert summary.unsettled_expense_ids == ()

    def test_unknown_expense(self, service):
        with pytest.raises(ExpenseNotFoundError):
            service.get_balances("ghost")


class TestRepositoryContract:
    def test_duplicate_add_rejected(self, service, dinner_input):
        service.create_expense({**dinner_input, "expense_id": "dup"})
        with pytest.raises(ValueError):
            service.create_expense({**dinner_input, "expense_id": "dup"})

    def test_memory_repository_satisfies_port(self):
        from split_services.ports import ExpenseRepository

        assert isinstance(InMemoryExpenseRepository(), ExpenseRepository)
