"""
Pure domain layer.

This module contains the value types, split strategies, balance
computation and settlement ledger, with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Configuration
- I/O

Everything except SettlementLedger is immutable and deterministic.
"""

from split_kernel.domain.balances import BalanceCalculator, BalanceSheet, ParticipantBalance
from split_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from split_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from split_kernel.domain.expense import ExpenseAggregate, ExpenseDetails
from split_kernel.domain.participants import (
    ExactInput,
    NoInput,
    Participant,
    ParticipantRoster,
    PercentInput,
    ShareInput,
    SplitInput,
)
from split_kernel.domain.payers import MultiplePayers, PayerSpec, SinglePayer, compute_paid
from split_kernel.domain.policy import DEFAULT_POLICY, ValidationPolicy
from split_kernel.domain.settlement import (
    FULL,
    BalanceSheetView,
    ParticipantBalanceView,
    SettlementLedger,
    SettlementOutcome,
    SettlementRecord,
    SettlementState,
)
from split_kernel.domain.strategies import (
    ItemizedLine,
    ItemizedTotals,
    SplitContext,
    SplitMethod,
    SplitResult,
    SplitStrategy,
    SplitStrategyRegistry,
    SplitWarning,
    switch_strategy,
)
from split_kernel.domain.values import Currency, Money

__all__ = [
    "BalanceCalculator",
    "BalanceSheet",
    "BalanceSheetView",
    "Clock",
    "Currency",
    "CurrencyInfo",
    "CurrencyRegistry",
    "DEFAULT_POLICY",
    "DeterministicClock",
    "ExactInput",
    "ExpenseAggregate",
    "ExpenseDetails",
    "FULL",
    "ItemizedLine",
    "ItemizedTotals",
    "Money",
    "MultiplePayers",
    "NoInput",
    "Participant",
    "ParticipantBalance",
    "ParticipantBalanceView",
    "ParticipantRoster",
    "PayerSpec",
    "PercentInput",
    "SettlementLedger",
    "SettlementOutcome",
    "SettlementRecord",
    "SettlementState",
    "ShareInput",
    "SinglePayer",
    "SplitContext",
    "SplitInput",
    "SplitMethod",
    "SplitResult",
    "SplitStrategy",
    "SplitStrategyRegistry",
    "SplitWarning",
    "SystemClock",
    "ValidationPolicy",
    "compute_paid",
    "switch_strategy",
]
