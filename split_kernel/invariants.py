"""
Split Kernel Invariants Contract.

These invariants are structural law for expense creation and settlement.
No configuration may switch them off; configuration only tunes the
tolerances some of them are checked with.

This module exists solely to declare the invariants explicitly. The
enforcement is distributed across the split strategies, payer allocation,
BalanceCalculator and SettlementLedger. ``SplitValidationError`` carries
the member that was violated so callers can branch on it without parsing
messages.
"""

from enum import Enum, unique


@unique
class SplitInvariant(str, Enum):
    """Named invariants checked while computing an expense breakdown."""

    NON_EMPTY_PARTICIPANTS = "non_empty_participants"
    """At least one participant takes part in every expense."""

    UNIQUE_PARTICIPANTS = "unique_participants"
    """A participant id appears at most once per expense."""

    PERCENT_SUM = "percent_sum"
    """PERCENTAGE inputs sum to 100 within the percent tolerance."""

    EXACT_SUM = "exact_sum"
    """EXACT_AMOUNTS inputs sum to the total within the amount tolerance."""

    POSITIVE_SHARE_TOTAL = "positive_share_total"
    """SHARES inputs sum to a strictly positive share count."""

    NON_NEGATIVE_INPUT = "non_negative_input"
    """Percents, exact amounts, share counts and item weights are never
    negative."""

    STRATEGY_INPUT_PRESENT = "strategy_input_present"
    """Every participant carries the input the active strategy reads."""

    ITEM_PARTICIPANTS = "item_participants"
    """Itemized share weights only reference participants of the expense."""

    ITEMIZED_TOTAL = "itemized_total"
    """A supplied total for an ITEMIZED expense matches subtotal + tax + tip."""

    TWO_PERSON_COUNT = "two_person_count"
    """TWO_PERSON expenses have exactly two participants and name one of
    them as the full ower."""

    PERSONAL_EXPENSE = "personal_expense"
    """Personal expenses have one participant who is also the sole payer,
    split EQUALLY."""

    CONSERVATION = "conservation"
    """Net balances sum to zero (plus any unallocated itemized amount)."""

    DISTRIBUTION_COMPLETENESS = "distribution_completeness"
    """Owed amounts plus unallocated amount equal the expense total."""


# All invariants as a frozenset for programmatic checks.
ALL_SPLIT_INVARIANTS: frozenset[SplitInvariant] = frozenset(SplitInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "split_services",
    "split_config",
)
