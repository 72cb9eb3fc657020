"""
split_services.expense_service -- The operations exposed to collaborators.

Responsibility:
    Creates expenses from raw input, reports balances, and applies the two
    settlement entry points against the repository's exclusive settlement
    update.  Publishes "expense created" / "expense settled" events and
    answers incoming events by reloading the expense by id.

Architecture position:
    Services -- imperative shell over the pure kernel.  Owns no state of
    its own; every call reloads from the repository.

Invariants enforced:
    - Creation is all-or-nothing: nothing is stored unless the aggregate
      validated.
    - Settlement runs inside ``retry_on_conflict``: a lost race is retried
      against fresh state, never surfaced on first occurrence.
    - Events carry only an expense id; receivers reload.

Failure modes:
    - ExpenseValidationError subclasses from creation (logged, re-raised).
    - SettlementRangeError / NotEligibleError from settlement.
    - SettlementStateConflict once retries are exhausted.
    - ExpenseNotFoundError / ParticipantNotFoundError for unknown ids.

Usage:
    service = ExpenseService(InMemoryExpenseRepository())
    expense = service.create_expense({
        "description": "Dinner",
        "total_amount": {"minor_units": 3000, "scale": 2},
        "split_method": "EQUALLY",
        "participants": [{"user_id": "a"}, {"user_id": "b"}, {"user_id": "c"}],
        "payer_id": "a",
    })
    view = service.settle_own_debt(expense.id, "b", FULL)
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from split_config.schema import SplitSettings
from split_kernel.domain.clock import Clock, SystemClock
from split_kernel.domain.expense import ExpenseAggregate
from split_kernel.domain.settlement import (
    FULL,
    BalanceSheetView,
    SettlementLedger,
    SettlementOutcome,
)
from split_kernel.domain.values import Currency, Money
from split_kernel.exceptions import (
    ExpenseNotFoundError,
    ExpenseValidationError,
    SettlementError,
    SplitValidationError,
    UnknownParticipantError,
)
from split_kernel.logging_config import LogContext, get_logger
from split_kernel.utils.idempotency import generate_settlement_key
from split_services.input_parser import (
    BreakdownMismatch,
    find_breakdown_mismatches,
    parse_amount,
    parse_expense_input,
)
from split_services.ports import (
    DirectoryService,
    EventPublisher,
    ExpenseEvent,
    ExpenseEventType,
    ExpenseRepository,
    Involvement,
)
from split_services.retry import retry_on_conflict

logger = get_logger("services.expense")


def _settlement_key(
    idempotency_key: str | None,
    operation: str,
    expense_id: str,
    participant_id: str,
    request_id: UUID | str | None,
) -> str | None:
    """An explicit key wins; otherwise derive one from the request id, if any."""
    if idempotency_key is not None or request_id is None:
        return idempotency_key
    return generate_settlement_key(operation, expense_id, participant_id, request_id)


class BalanceDirection(str, Enum):
    OWED_TO_YOU = "OWED_TO_YOU"
    YOU_OWE = "YOU_OWE"
    SETTLED = "SETTLED"


@dataclass(frozen=True)
class UserBalanceSummary:
    """Outstanding amounts of one user across every expense they are in."""

    user_id: str
    currency: Currency
    owed_to_you: Money
    you_owe: Money
    unsettled_expense_ids: tuple[str, ...] = ()

    @property
    def net(self) -> Money:
        return self.owed_to_you - self.you_owe

    @property
    def direction(self) -> BalanceDirection:
        net = self.net
        if net.is_positive:
            return BalanceDirection.OWED_TO_YOU
        if net.is_negative:
            return BalanceDirection.YOU_OWE
        return BalanceDirection.SETTLED


class ExpenseService:
    """
    Expense creation, balance reporting and settlement.

    Contract:
        Every public method is safe to call concurrently from several
        threads against one repository.  Settlement methods return the
        updated balance view of the whole expense.

    Non-goals:
        - Does NOT cache aggregates; the repository is the source of truth.
        - Does NOT convert between currencies.
    """

    def __init__(
        self,
        repository: ExpenseRepository,
        settings: SplitSettings | None = None,
        directory: DirectoryService | None = None,
        events: EventPublisher | None = None,
        clock: Clock | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        self._repository = repository
        self._settings = settings or SplitSettings()
        self._policy = self._settings.to_policy()
        self._directory = directory
        self._events = events
        self._clock = clock or SystemClock()
        self._id_factory = id_factory or (lambda: uuid4().hex)

    @property
    def settings(self) -> SplitSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_expense(
        self,
        raw: Mapping[str, Any],
        actor_id: str | None = None,
    ) -> ExpenseAggregate:
        """
        Validate raw input, store the expense and its opening ledger.

        Client-computed ``owes`` / ``net`` values in the input are checked
        against the recomputed balances; differences are logged as
        ``client_breakdown_mismatch`` and the recomputed values are kept.

        Raises:
            InvalidExpenseInputError: Malformed input.
            UnknownParticipantError: A participant id the directory does not know.
            SplitValidationError: A split invariant is violated.
            PayerValidationError: Payments do not cover the total.
        """
        if actor_id is not None and not raw.get("creator_id"):
            raw = {**raw, "creator_id": actor_id}

        with LogContext.bind(actor_id=actor_id):
            try:
                parsed = parse_expense_input(
                    raw,
                    default_currency=self._settings.currency,
                    default_tax_rate_percent=self._settings.default_tax_rate_percent,
                    default_tip_rate_percent=self._settings.default_tip_rate_percent,
                    resolve_name=self._resolve_name,
                    created_at=self._clock.now(),
                )
                expense_id = parsed.expense_id or self._id_factory()
                with LogContext.bind(expense_id=expense_id):
                    expense = ExpenseAggregate.create(
                        expense_id=expense_id,
                        policy=self._policy,
                        **parsed.create_kwargs(),
                    )
            except SplitValidationError as exc:
                logger.warning(
                    "split_validation_failed",
                    extra={"invariant": exc.invariant.value, "error_code": exc.code, "detail": str(exc)},
                )
                raise
            except ExpenseValidationError as exc:
                logger.warning(
                    "expense_input_rejected",
                    extra={"error_code": exc.code, "detail": str(exc)},
                )
                raise

            with LogContext.bind(expense_id=expense.id):
                self._log_mismatches(
                    find_breakdown_mismatches(
                        expense.balances,
                        parsed.client_claims,
                        self._policy.amount_tolerance_minor_units,
                    )
                )
                self._repository.add(expense, SettlementLedger.open(expense, self._policy))
                logger.info(
                    "expense_created",
                    extra={
                        "split_method": expense.method.value,
                        "total": expense.total,
                        "participant_count": len(expense.participants),
                        "warnings": [w.code for w in expense.balances.warnings],
                    },
                )

        self._publish(ExpenseEventType.EXPENSE_CREATED, expense.id, actor_id)
        return expense

    def check_client_breakdown(self, raw: Mapping[str, Any]) -> list[BreakdownMismatch]:
        """
        Recompute a raw expense and list client values that disagree.

        Nothing is stored.  Raises the same validation errors as
        ``create_expense``.
        """
        parsed = parse_expense_input(
            raw,
            default_currency=self._settings.currency,
            default_tax_rate_percent=self._settings.default_tax_rate_percent,
            default_tip_rate_percent=self._settings.default_tip_rate_percent,
            resolve_name=self._resolve_name,
        )
        expense = ExpenseAggregate.create(
            expense_id=parsed.expense_id or "breakdown-check",
            policy=self._policy,
            **parsed.create_kwargs(),
        )
        return find_breakdown_mismatches(
            expense.balances,
            parsed.client_claims,
            self._policy.amount_tolerance_minor_units,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_expense(self, expense_id: str) -> ExpenseAggregate:
        return self._repository.get(expense_id)

    def get_balances(self, expense_id: str) -> BalanceSheetView:
        """Paid, owed, net, settled amount and state per participant."""
        return self._repository.load_ledger(expense_id).view()

    def list_expenses_for_user(
        self,
        user_id: str,
        involvement: Involvement | str = Involvement.ALL,
    ) -> list[ExpenseAggregate]:
        return self._repository.list_for_user(user_id, Involvement(involvement))

    def summarize_user_balance(
        self,
        user_id: str,
        currency: Currency | str | None = None,
    ) -> UserBalanceSummary:
        """
        Sum what is still owed to and by ``user_id``.

        Only expenses in ``currency`` (default: the configured currency)
        are counted.
        """
        if currency is None:
            currency = self._settings.currency
        if not isinstance(currency, Currency):
            currency = Currency(currency)
        owed_to_you = Money.zero(currency)
        you_owe = Money.zero(currency)
        unsettled: list[str] = []
        for expense in self._repository.list_for_user(user_id, Involvement.PARTICIPANT):
            if expense.currency != currency:
                continue
            record = self._repository.load_ledger(expense.id).record(user_id)
            if not record.remaining.is_positive:
                continue
            unsettled.append(expense.id)
            if record.is_creditor:
                owed_to_you = owed_to_you + record.remaining
            else:
                you_owe = you_owe + record.remaining
        return UserBalanceSummary(
            user_id=user_id,
            currency=currency,
            owed_to_you=owed_to_you,
            you_owe=you_owe,
            unsettled_expense_ids=tuple(unsettled),
        )

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def settle_own_debt(
        self,
        expense_id: str,
        participant_id: str,
        amount: Money | Mapping[str, Any] | object = FULL,
        idempotency_key: str | None = None,
        actor_id: str | None = None,
        request_id: UUID | str | None = None,
    ) -> BalanceSheetView:
        """
        A debtor pays part (``Money`` or wire amount) or all (``FULL``) of their debt.

        A caller without its own idempotency key may pass ``request_id``;
        the key is then derived from the operation, expense, participant
        and request id, so redelivery of the same request applies once.

        Raises:
            NotEligibleError: The participant does not owe on this expense.
            SettlementRangeError: amount < 0 or amount > remaining.
            SettlementStateConflict: Retries exhausted.
        """
        idempotency_key = _settlement_key(
            idempotency_key, "settle_own_debt", expense_id, participant_id, request_id
        )
        expense = self._repository.get(expense_id)
        if amount is not FULL:
            amount = parse_amount(amount, expense.currency, "amount")
        # The debtor plus every creditor the payment can be spread over.
        lock_ids = {participant_id, *expense.balances.creditor_ids}

        with LogContext.bind(
            expense_id=expense_id,
            participant_id=participant_id,
            actor_id=actor_id,
            idempotency_key=idempotency_key,
        ):
            outcome, view = self._settle(
                expense_id,
                lock_ids,
                lambda ledger: ledger.settle_own_debt(participant_id, amount, idempotency_key),
                operation="settle_own_debt",
            )
        self._after_settlement(expense_id, outcome, actor_id)
        return view

    def record_payments_received(
        self,
        expense_id: str,
        recipient_id: str,
        settlements: Mapping[str, Money | Mapping[str, Any]],
        idempotency_key: str | None = None,
        actor_id: str | None = None,
        request_id: UUID | str | None = None,
    ) -> BalanceSheetView:
        """
        A creditor records payments from debtors, applied as one atomic batch.

        Raises:
            NotEligibleError: The recipient is not owed money, or a listed
                participant does not owe.
            SettlementRangeError: A per-debtor amount is negative.
            SettlementStateConflict: Retries exhausted.
        """
        idempotency_key = _settlement_key(
            idempotency_key, "record_payments_received", expense_id, recipient_id, request_id
        )
        expense = self._repository.get(expense_id)
        amounts = {
            debtor_id: parse_amount(value, expense.currency, f"settlements.{debtor_id}")
            for debtor_id, value in settlements.items()
        }
        lock_ids = {recipient_id, *amounts}

        with LogContext.bind(
            expense_id=expense_id,
            participant_id=recipient_id,
            actor_id=actor_id,
            idempotency_key=idempotency_key,
        ):
            outcome, view = self._settle(
                expense_id,
                lock_ids,
                lambda ledger: ledger.record_payments_received(recipient_id, amounts, idempotency_key),
                operation="record_payments_received",
            )
        self._after_settlement(expense_id, outcome, actor_id)
        return view

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def handle_event(self, event: ExpenseEvent) -> BalanceSheetView | None:
        """
        Re-derive the balance view of the expense an event names.

        The event payload is never trusted; duplicate and out-of-order
        deliveries therefore all yield the current state.  Returns None for
        an expense this repository does not hold.
        """
        try:
            view = self.get_balances(event.expense_id)
        except ExpenseNotFoundError:
            logger.warning(
                "event_expense_missing",
                extra={"event_type": event.event_type.value, "event_expense_id": event.expense_id},
            )
            return None
        logger.debug(
            "event_handled",
            extra={"event_type": event.event_type.value, "event_expense_id": event.expense_id},
        )
        return view

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _settle(
        self,
        expense_id: str,
        lock_ids: Iterable[str],
        apply: Callable[[SettlementLedger], SettlementOutcome],
        operation: str,
    ) -> tuple[SettlementOutcome, BalanceSheetView]:
        lock_ids = set(lock_ids)

        def attempt() -> tuple[SettlementOutcome, BalanceSheetView]:
            with self._repository.settlement_update(expense_id, lock_ids) as ledger:
                outcome = apply(ledger)
                view = ledger.view()
            return outcome, view

        try:
            outcome, view = retry_on_conflict(
                attempt,
                max_retries=self._settings.max_conflict_retries,
                backoff_seconds=self._settings.retry_backoff_seconds,
            )
        except SettlementError as exc:
            logger.warning(
                "settlement_rejected",
                extra={"operation": operation, "error_code": exc.code, "detail": str(exc)},
            )
            raise

        if outcome.replayed:
            logger.info("settlement_replayed", extra={"operation": operation})
        else:
            logger.info(
                "settlement_applied",
                extra={
                    "operation": operation,
                    "applied": outcome.applied,
                    "changed_participants": list(outcome.changed_participant_ids),
                    "expense_settled": view.is_settled,
                },
            )
        return outcome, view

    def _after_settlement(
        self,
        expense_id: str,
        outcome: SettlementOutcome,
        actor_id: str | None,
    ) -> None:
        if outcome.changed_participant_ids:
            self._publish(ExpenseEventType.EXPENSE_SETTLED, expense_id, actor_id)

    def _publish(self, event_type: ExpenseEventType, expense_id: str, actor_id: str | None) -> None:
        if self._events is None:
            return
        self._events.publish(
            ExpenseEvent(
                event_type=event_type,
                expense_id=expense_id,
                actor_id=actor_id,
                occurred_at=self._clock.now(),
            )
        )

    def _resolve_name(self, participant_id: str, display_name: str | None) -> str:
        if self._directory is None:
            return display_name or participant_id
        entry = self._directory.get(participant_id)
        if entry is None:
            raise UnknownParticipantError(participant_id)
        return display_name or entry.display_name

    def _log_mismatches(self, mismatches: list[BreakdownMismatch]) -> None:
        for mismatch in mismatches:
            logger.warning(
                "client_breakdown_mismatch",
                extra={
                    "mismatch_participant": mismatch.participant_id,
                    "field": mismatch.field,
                    "client_value": mismatch.client_value,
                    "computed_value": mismatch.computed_value,
                },
            )
