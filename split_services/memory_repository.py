"""
InMemoryExpenseRepository -- process-local expense store with per-record locks.

Responsibility:
    Implements the ExpenseRepository port in memory.  Settlement updates
    take one ``threading.Lock`` per (expense, participant) record, acquired
    in sorted id order with a timeout, so concurrent settlements against
    the same participant serialize while different participants proceed
    in parallel.

Invariants enforced:
    - Sorted acquisition order: two updates that share records can never
      deadlock; a wait longer than ``lock_timeout_seconds`` raises
      SettlementStateConflict and the caller retries.
    - Versions are checked on write: a changed record whose stored version
      moved since load raises SettlementStateConflict and nothing is written.
    - Writes of one update are applied under a single store lock, so readers
      never observe half of a batch.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from split_kernel.domain.expense import ExpenseAggregate
from split_kernel.domain.settlement import SettlementLedger, SettlementRecord
from split_kernel.exceptions import (
    ExpenseNotFoundError,
    ParticipantNotFoundError,
    SettlementStateConflict,
)
from split_kernel.logging_config import get_logger
from split_services.ports import Involvement

logger = get_logger("services.memory_repository")


class InMemoryExpenseRepository:
    """Thread-safe in-memory ExpenseRepository."""

    def __init__(self, lock_timeout_seconds: float = 5.0):
        self._lock_timeout = lock_timeout_seconds
        self._store_lock = threading.Lock()
        self._expenses: dict[str, ExpenseAggregate] = {}
        self._order: list[str] = []
        self._records: dict[tuple[str, str], SettlementRecord] = {}
        self._keys: dict[str, set[str]] = {}
        self._record_locks: dict[tuple[str, str], threading.Lock] = {}

    def add(self, expense: ExpenseAggregate, ledger: SettlementLedger) -> None:
        with self._store_lock:
            if expense.id in self._expenses:
                raise ValueError(f"Expense {expense.id} already exists")
            self._expenses[expense.id] = expense
            self._order.append(expense.id)
            self._keys[expense.id] = set(ledger.applied_keys)
            for record in ledger.records():
                key = (expense.id, record.participant_id)
                self._records[key] = record
                self._record_locks[key] = threading.Lock()

    def get(self, expense_id: str) -> ExpenseAggregate:
        with self._store_lock:
            try:
                return self._expenses[expense_id]
            except KeyError:
                raise ExpenseNotFoundError(expense_id) from None

    def load_ledger(self, expense_id: str) -> SettlementLedger:
        with self._store_lock:
            expense = self._expenses.get(expense_id)
            if expense is None:
                raise ExpenseNotFoundError(expense_id)
            records = [self._records[(expense_id, pid)] for pid in expense.participants.ids]
            keys = set(self._keys[expense_id])
        return SettlementLedger(expense, records, applied_keys=keys)

    @contextmanager
    def settlement_update(
        self,
        expense_id: str,
        participant_ids: Iterable[str],
    ) -> Iterator[SettlementLedger]:
        expense = self.get(expense_id)
        ordered = sorted(set(participant_ids))
        for pid in ordered:
            if pid not in expense.participants:
                raise ParticipantNotFoundError(expense_id, pid)

        held: list[threading.Lock] = []
        try:
            for pid in ordered:
                lock = self._record_locks[(expense_id, pid)]
                if not lock.acquire(timeout=self._lock_timeout):
                    logger.warning(
                        "settlement_lock_timeout",
                        extra={"timeout_seconds": self._lock_timeout, "locked_participant": pid},
                    )
                    raise SettlementStateConflict(expense_id, pid)
                held.append(lock)

            ledger = self.load_ledger(expense_id)
            yield ledger
            self._write(expense_id, ledger)
        finally:
            for lock in reversed(held):
                lock.release()

    def _write(self, expense_id: str, ledger: SettlementLedger) -> None:
        changed = ledger.changed_records()
        with self._store_lock:
            for record in changed:
                stored = self._records[(expense_id, record.participant_id)]
                if stored.version != ledger.loaded_version(record.participant_id):
                    raise SettlementStateConflict(expense_id, record.participant_id)
            applied = self._keys[expense_id]
            for key in ledger.new_keys:
                if key in applied:
                    raise SettlementStateConflict(expense_id)

            for record in changed:
                self._records[(expense_id, record.participant_id)] = record
            applied.update(ledger.new_keys)

    def list_for_user(
        self,
        user_id: str,
        involvement: Involvement = Involvement.ALL,
    ) -> list[ExpenseAggregate]:
        involvement = Involvement(involvement)
        with self._store_lock:
            expenses = [self._expenses[eid] for eid in reversed(self._order)]
        matches = [e for e in expenses if _matches(e, user_id, involvement)]
        # Stable sort keeps insertion order (newest first) between equal timestamps.
        return sorted(
            matches,
            key=lambda e: e.details.created_at.timestamp() if e.details.created_at else 0.0,
            reverse=True,
        )


def _matches(expense: ExpenseAggregate, user_id: str, involvement: Involvement) -> bool:
    is_creator = expense.details.creator_id == user_id
    is_payer = user_id in expense.payer_ids
    is_participant = user_id in expense.participants
    if involvement is Involvement.CREATOR:
        return is_creator
    if involvement is Involvement.PAYER:
        return is_payer
    if involvement is Involvement.PARTICIPANT:
        return is_participant
    return is_creator or is_payer or is_participant
