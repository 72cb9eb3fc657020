"""
Collaborator ports -- the shapes ExpenseService consumes.

Responsibility:
    Declares, as Protocols, what the service needs from the outside world:
    a directory of participants, an event channel, and expense
    persistence with exclusive settlement updates.  Concrete adapters
    live in ``memory_repository``, ``sql_repository`` and ``collaborators``.

Architecture position:
    Services -- imperative shell.  Imports kernel domain types only.
"""

from __future__ import annotations

from collections.abc import Iterable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol, runtime_checkable

from split_kernel.domain.expense import ExpenseAggregate
from split_kernel.domain.settlement import SettlementLedger


class Involvement(str, Enum):
    """How a user relates to an expense, for listings."""

    CREATOR = "CREATOR"
    PAYER = "PAYER"
    PARTICIPANT = "PARTICIPANT"
    ALL = "ALL"


class ExpenseEventType(str, Enum):
    EXPENSE_CREATED = "EXPENSE_CREATED"
    EXPENSE_SETTLED = "EXPENSE_SETTLED"


@dataclass(frozen=True)
class ExpenseEvent:
    """
    "Something changed" signal for one expense.

    Receivers reload the expense by id; nothing else in the event is
    treated as a source of truth.
    """

    event_type: ExpenseEventType
    expense_id: str
    actor_id: str | None = None
    occurred_at: datetime | None = None


@dataclass(frozen=True)
class DirectoryEntry:
    id: str
    display_name: str


@runtime_checkable
class DirectoryService(Protocol):
    """Participant lookups by id or search term."""

    def get(self, participant_id: str) -> DirectoryEntry | None: ...

    def search(self, term: str) -> list[DirectoryEntry]: ...


@runtime_checkable
class EventPublisher(Protocol):
    """Delivers expense events to whoever listens."""

    def publish(self, event: ExpenseEvent) -> None: ...


@runtime_checkable
class ExpenseRepository(Protocol):
    """
    Persistence for expenses and their settlement records.

    Contract:
        - ``add`` stores the aggregate and the opening ledger atomically.
        - ``get`` / ``load_ledger`` raise ExpenseNotFoundError for unknown ids.
        - ``settlement_update`` yields a ledger whose records for
          ``participant_ids`` are held exclusively until the block exits.
          Changed records and new idempotency keys are persisted only on a
          clean exit; an exception persists nothing.  Losing a race raises
          SettlementStateConflict (retryable).
        - ``list_for_user`` returns expenses newest first.
    """

    def add(self, expense: ExpenseAggregate, ledger: SettlementLedger) -> None: ...

    def get(self, expense_id: str) -> ExpenseAggregate: ...

    def load_ledger(self, expense_id: str) -> SettlementLedger: ...

    def settlement_update(
        self,
        expense_id: str,
        participant_ids: Iterable[str],
    ) -> AbstractContextManager[SettlementLedger]: ...

    def list_for_user(
        self,
        user_id: str,
        involvement: Involvement = Involvement.ALL,
    ) -> list[ExpenseAggregate]: ...
