"""ORM models for the split kernel."""

from split_kernel.models.expense import ExpenseRow, SettlementKeyRow, SettlementRecordRow

__all__ = [
    "ExpenseRow",
    "SettlementKeyRow",
    "SettlementRecordRow",
]
