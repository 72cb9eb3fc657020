"""
SqlExpenseRepository -- ExpenseRepository on SQLAlchemy.

Responsibility:
    Persists expenses as a creation-input document plus one row per
    settlement record.  Settlement updates lock the touched records with
    ``SELECT ... FOR UPDATE`` (PostgreSQL) and rely on the records'
    ``version_id_col`` for optimistic detection of concurrent writers
    everywhere (SQLite ignores FOR UPDATE).

Architecture position:
    Services -- imperative shell.  Owns its sessions: every public method
    runs in its own ``session_scope``.

Failure modes:
    - ExpenseNotFoundError for unknown expense ids.
    - SettlementStateConflict when a record changed since it was loaded
      (StaleDataError) or an idempotency key was inserted concurrently
      (IntegrityError on the key row).
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from split_kernel.db.engine import get_session_factory, session_scope
from split_kernel.domain.clock import Clock, SystemClock
from split_kernel.domain.expense import ExpenseAggregate
from split_kernel.domain.policy import DEFAULT_POLICY, ValidationPolicy
from split_kernel.domain.settlement import SettlementLedger, SettlementRecord
from split_kernel.domain.values import Currency, Money
from split_kernel.exceptions import (
    ExpenseNotFoundError,
    ParticipantNotFoundError,
    SettlementStateConflict,
)
from split_kernel.logging_config import get_logger
from split_kernel.models.expense import ExpenseRow, SettlementKeyRow, SettlementRecordRow
from split_kernel.selectors.expense_selector import ExpenseSelector
from split_services.ports import Involvement

logger = get_logger("services.sql_repository")


class SqlExpenseRepository:
    """SQLAlchemy-backed ExpenseRepository."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        policy: ValidationPolicy = DEFAULT_POLICY,
        clock: Clock | None = None,
    ):
        self._factory = session_factory or get_session_factory()
        self._policy = policy
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Creation and reads
    # ------------------------------------------------------------------

    def add(self, expense: ExpenseAggregate, ledger: SettlementLedger) -> None:
        with session_scope(self._factory) as session:
            if session.get(ExpenseRow, expense.id) is not None:
                raise ValueError(f"Expense {expense.id} already exists")
            payer_ids = set(expense.payer_ids)
            row = ExpenseRow(
                id=expense.id,
                currency=expense.currency.code,
                total_minor_units=expense.total.minor_units,
                method=expense.method.value,
                description=expense.details.description,
                category=expense.details.category,
                creator_id=expense.details.creator_id,
                group_id=expense.details.group_id,
                is_personal=expense.is_personal,
                occurred_at=expense.details.created_at,
                document=expense.to_document(),
            )
            if expense.details.created_at is not None:
                row.created_at = expense.details.created_at
            session.add(row)
            session.flush()
            for position, record in enumerate(ledger.records()):
                participant = expense.participants.get(record.participant_id)
                session.add(
                    SettlementRecordRow(
                        expense_id=expense.id,
                        participant_id=record.participant_id,
                        position=position,
                        display_name=participant.display_name if participant else "",
                        is_payer=record.participant_id in payer_ids,
                        net_minor_units=record.net.minor_units,
                        settled_minor_units=record.settled_amount.minor_units,
                        fully_settled=record.fully_settled,
                        allocations=_allocations_to_row(record),
                    )
                )
            for key in ledger.applied_keys:
                session.add(SettlementKeyRow(expense_id=expense.id, idempotency_key=key))

    def get(self, expense_id: str) -> ExpenseAggregate:
        with session_scope(self._factory) as session:
            return self._load_expense(session, expense_id)

    def load_ledger(self, expense_id: str) -> SettlementLedger:
        with session_scope(self._factory) as session:
            expense = self._load_expense(session, expense_id)
            selector = ExpenseSelector(session)
            rows = selector.settlement_rows(expense_id)
            return SettlementLedger(
                expense,
                [_record_from_row(row, expense.currency) for row in rows],
                applied_keys=selector.applied_keys(expense_id),
                policy=self._policy,
            )

    def list_for_user(
        self,
        user_id: str,
        involvement: Involvement = Involvement.ALL,
    ) -> list[ExpenseAggregate]:
        involvement = Involvement(involvement)
        with session_scope(self._factory) as session:
            listings = ExpenseSelector(session).list_for_user(
                user_id,
                as_creator=involvement in (Involvement.CREATOR, Involvement.ALL),
                as_payer=involvement in (Involvement.PAYER, Involvement.ALL),
                as_participant=involvement in (Involvement.PARTICIPANT, Involvement.ALL),
            )
            return [self._load_expense(session, listing.expense_id) for listing in listings]

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    @contextmanager
    def settlement_update(
        self,
        expense_id: str,
        participant_ids: Iterable[str],
    ) -> Iterator[SettlementLedger]:
        ordered = sorted(set(participant_ids))
        session = self._factory()
        try:
            expense = self._load_expense(session, expense_id)
            for pid in ordered:
                if pid not in expense.participants:
                    raise ParticipantNotFoundError(expense_id, pid)

            # Lock the touched records in id order, then read the rest.
            session.execute(
                select(SettlementRecordRow)
                .where(
                    SettlementRecordRow.expense_id == expense_id,
                    SettlementRecordRow.participant_id.in_(ordered),
                )
                .order_by(SettlementRecordRow.participant_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars().all()
            selector = ExpenseSelector(session)
            rows = {row.participant_id: row for row in selector.settlement_rows(expense_id)}
            ledger = SettlementLedger(
                expense,
                [_record_from_row(row, expense.currency) for row in rows.values()],
                applied_keys=selector.applied_keys(expense_id),
                policy=self._policy,
            )

            yield ledger

            now = self._clock.now()
            for record in ledger.changed_records():
                row = rows[record.participant_id]
                row.settled_minor_units = record.settled_amount.minor_units
                row.fully_settled = record.fully_settled
                row.allocations = _allocations_to_row(record)
                row.updated_at = now
            for key in ledger.new_keys:
                session.add(
                    SettlementKeyRow(expense_id=expense_id, idempotency_key=key, applied_at=now)
                )
            session.commit()
        except (StaleDataError, IntegrityError) as exc:
            session.rollback()
            logger.warning(
                "settlement_write_conflict",
                extra={"conflict_type": type(exc).__name__},
            )
            raise SettlementStateConflict(expense_id) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_expense(self, session: Session, expense_id: str) -> ExpenseAggregate:
        document = ExpenseSelector(session).get_document(expense_id)
        if document is None:
            raise ExpenseNotFoundError(expense_id)
        return ExpenseAggregate.from_document(document, policy=self._policy)


def _allocations_to_row(record: SettlementRecord) -> dict[str, int]:
    return {pid: amount.minor_units for pid, amount in record.allocations.items()}


def _record_from_row(row: SettlementRecordRow, currency: Currency) -> SettlementRecord:
    return SettlementRecord(
        expense_id=row.expense_id,
        participant_id=row.participant_id,
        net=Money.from_minor(row.net_minor_units, currency),
        settled_amount=Money.from_minor(row.settled_minor_units, currency),
        fully_settled=row.fully_settled,
        version=row.version,
        allocations={
            pid: Money.from_minor(units, currency) for pid, units in (row.allocations or {}).items()
        },
    )
