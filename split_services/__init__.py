"""
split_services -- Package init and public API.

Responsibility:
    The operations exposed to collaborators (``ExpenseService``), the
    collaborator ports they consume, and the concrete adapters: in-memory
    and SQLAlchemy repositories, an in-memory directory and event bus.

Architecture position:
    Services -- imperative shell over the pure kernel.

    Dependency direction (enforced by tests/architecture/test_kernel_boundary.py):
        split_services/ -> split_config/   (allowed)
        split_services/ -> split_kernel/   (allowed)
        split_kernel/   -> split_services/ (FORBIDDEN)
        split_kernel/   -> split_config/   (FORBIDDEN)
"""

from split_services.collaborators import InMemoryDirectory, InMemoryEventBus
from split_services.expense_service import (
    BalanceDirection,
    ExpenseService,
    UserBalanceSummary,
)
from split_services.input_parser import (
    BreakdownMismatch,
    ClientClaim,
    ParsedExpense,
    find_breakdown_mismatches,
    parse_amount,
    parse_expense_input,
)
from split_services.memory_repository import InMemoryExpenseRepository
from split_services.ports import (
    DirectoryEntry,
    DirectoryService,
    EventPublisher,
    ExpenseEvent,
    ExpenseEventType,
    ExpenseRepository,
    Involvement,
)
from split_services.retry import retry_on_conflict
from split_services.sql_repository import SqlExpenseRepository

__all__ = [
    "BalanceDirection",
    "BreakdownMismatch",
    "ClientClaim",
    "DirectoryEntry",
    "DirectoryService",
    "EventPublisher",
    "ExpenseEvent",
    "ExpenseEventType",
    "ExpenseRepository",
    "ExpenseService",
    "InMemoryDirectory",
    "InMemoryEventBus",
    "InMemoryExpenseRepository",
    "Involvement",
    "ParsedExpense",
    "SqlExpenseRepository",
    "UserBalanceSummary",
    "find_breakdown_mismatches",
    "parse_amount",
    "parse_expense_input",
    "retry_on_conflict",
]
