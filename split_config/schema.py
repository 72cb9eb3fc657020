"""
Settings schema (``split_config.schema``).

Frozen dataclass for the split settings, plus the bridge that turns them
into the kernel's ``ValidationPolicy``.  The kernel never imports this
package; the bridge runs here, on the config side.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from decimal import Decimal
from typing import Any

from split_kernel.domain.policy import ValidationPolicy
from split_kernel.domain.values import Currency


@dataclass(frozen=True)
class SplitSettings:
    """
    Runtime settings for expense creation and settlement.

    Guarantees:
        - Immutable
        - ``currency`` is a supported ISO 4217 code
        - Every numeric setting is non-negative
    """

    currency: str = "USD"
    percent_tolerance: Decimal = Decimal("0.01")
    amount_tolerance_minor_units: int = 1
    settlement_epsilon_minor_units: int = 1
    default_tax_rate_percent: Decimal = Decimal(0)
    default_tip_rate_percent: Decimal = Decimal(0)
    max_conflict_retries: int = 3
    retry_backoff_seconds: float = 0.0
    lock_timeout_seconds: float = 5.0
    profile: str = field(default="default", compare=False)
    checksum: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "currency", Currency(self.currency).code)
        for name in ("percent_tolerance", "default_tax_rate_percent", "default_tip_rate_percent"):
            object.__setattr__(self, name, Decimal(str(getattr(self, name))))
        for name in (
            "percent_tolerance",
            "amount_tolerance_minor_units",
            "settlement_epsilon_minor_units",
            "default_tax_rate_percent",
            "default_tip_rate_percent",
            "max_conflict_retries",
            "retry_backoff_seconds",
            "lock_timeout_seconds",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")

    @classmethod
    def setting_names(cls) -> frozenset[str]:
        return frozenset(f.name for f in fields(cls) if f.name not in ("profile", "checksum"))

    def to_policy(self) -> ValidationPolicy:
        """Bridge into the kernel's tolerance policy."""
        return ValidationPolicy(
            percent_tolerance=self.percent_tolerance,
            amount_tolerance_minor_units=self.amount_tolerance_minor_units,
            settlement_epsilon_minor_units=self.settlement_epsilon_minor_units,
        )

    def canonical(self) -> dict[str, Any]:
        """Settings as a plain dict, without profile and checksum."""
        data = asdict(self)
        data.pop("profile")
        data.pop("checksum")
        return data
