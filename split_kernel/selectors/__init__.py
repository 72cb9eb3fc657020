"""Read-only query selectors."""

from split_kernel.selectors.base import BaseSelector
from split_kernel.selectors.expense_selector import ExpenseListing, ExpenseSelector

__all__ = [
    "BaseSelector",
    "ExpenseListing",
    "ExpenseSelector",
]
