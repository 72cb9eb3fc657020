"""
ValidationPolicy -- tolerances the split and settlement checks run with.

The kernel does not read configuration. Callers build a ValidationPolicy
(split_config does it via ``SplitSettings.to_policy()``) and hand it in;
every component falls back to ``DEFAULT_POLICY`` when none is given.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True, slots=True)
class ValidationPolicy:
    """
    Numeric tolerances for expense validation and settlement completion.

    Guarantees:
        - Immutable
        - All tolerances are non-negative

    Attributes:
        percent_tolerance: Max deviation of the PERCENTAGE sum from 100.
        amount_tolerance_minor_units: Max deviation of EXACT_AMOUNTS sums,
            MultiplePayers sums and supplied ITEMIZED totals from the
            expense total.
        settlement_epsilon_minor_units: A record is fully settled when its
            settled amount is within this many minor units of its bound.
    """

    percent_tolerance: Decimal = Decimal("0.01")
    amount_tolerance_minor_units: int = 1
    settlement_epsilon_minor_units: int = 1

    def __post_init__(self) -> None:
        if isinstance(self.percent_tolerance, float):
            raise TypeError("percent_tolerance must be Decimal, not float")
        object.__setattr__(self, "percent_tolerance", Decimal(str(self.percent_tolerance)))
        if self.percent_tolerance < 0:
            raise ValueError(f"percent_tolerance must be >= 0, got {self.percent_tolerance}")
        if self.amount_tolerance_minor_units < 0:
            raise ValueError(
                f"amount_tolerance_minor_units must be >= 0, "
                f"got {self.amount_tolerance_minor_units}"
            )
        if self.settlement_epsilon_minor_units < 0:
            raise ValueError(
                f"settlement_epsilon_minor_units must be >= 0, "
                f"got {self.settlement_epsilon_minor_units}"
            )

    @property
    def conservation_tolerance_minor_units(self) -> int:
        # Owed and paid sums may each drift by the amount tolerance.
        return 2 * self.amount_tolerance_minor_units


DEFAULT_POLICY = ValidationPolicy()
