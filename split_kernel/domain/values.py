"""
Values -- Immutable, self-validating money value objects.

Responsibility:
    Provides the foundational value types for every split and settlement
    computation: Currency and Money. Money is an integer count of minor
    units (cents for USD) paired with its Currency; the scale of the minor
    unit comes from the currency. No computation in the kernel touches a
    binary float.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every other domain module. No outward dependencies except
    split_kernel.domain.currency (CurrencyRegistry).

Invariants enforced:
    - Amounts are integers of minor units; float input is rejected.
    - Currency codes are validated at construction time.
    - Every division goes through ``distribute_evenly`` or ``allocate``,
      whose parts always sum exactly to the original amount. The residual
      minor units go one each to the first recipients in order.
    - Decimal conversions never carry precision beyond the currency scale.

Failure modes:
    - TypeError on float amounts or non-integer minor units.
    - ValueError on invalid currency, excess precision, or arithmetic that
      mixes currencies.
    - ValueError on invalid distribution parameters (n <= 0, negative or
      all-zero weights).
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from fractions import Fraction
from typing import Any, Union

from split_kernel.domain.currency import CurrencyRegistry

Rational = Union[int, Decimal, Fraction]


def _to_fraction(value: Rational | str) -> Fraction:
    """Exact rational view of an int, Decimal, Fraction or decimal string."""
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Binary floats are not accepted for money arithmetic: {value!r}")
    if isinstance(value, str):
        try:
            value = Decimal(value)
        except InvalidOperation as e:
            raise ValueError(f"Invalid rational value: {value!r}") from e
    if isinstance(value, Decimal) and not value.is_finite():
        raise ValueError(f"Rational value must be finite: {value!r}")
    if not isinstance(value, (int, Decimal, Fraction)):
        raise TypeError(f"Unsupported rational type: {type(value).__name__}")
    return Fraction(value)


def _round_half_up(value: Fraction) -> int:
    """Round to the nearest integer, halves away from zero."""
    magnitude = abs(value)
    whole = magnitude.numerator // magnitude.denominator
    if (magnitude - whole) * 2 >= 1:
        whole += 1
    return -whole if value < 0 else whole


@dataclass(frozen=True, slots=True)
class Currency:
    """
    ISO 4217 currency code value object.

    Guarantees:
        - Immutable and hashable
        - code is always uppercase and stripped of whitespace
        - code is always supported by CurrencyRegistry
    """

    code: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "code", CurrencyRegistry.validate(self.code))

    @property
    def decimal_places(self) -> int:
        """Scale of the minor unit (2 for USD, 0 for JPY)."""
        return CurrencyRegistry.get_decimal_places(self.code)

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"Currency({self.code!r})"


@dataclass(frozen=True, slots=True)
class Money:
    """
    Fixed-precision monetary amount.

    Contract:
        Pairs an integer count of minor units with its Currency -- they are
        NEVER separated. Amounts cross the kernel boundary as
        ``{"minor_units", "scale", "currency"}`` (see ``to_wire``).

    Guarantees:
        - Immutable and hashable
        - minor_units is always an int (never float, never Decimal)
        - Arithmetic and comparison refuse to mix currencies
        - ``distribute_evenly`` and ``allocate`` return parts that sum
          exactly to the original amount

    Non-goals:
        - Does NOT perform currency conversion
    """

    minor_units: int
    currency: Currency

    def __post_init__(self) -> None:
        if isinstance(self.minor_units, bool) or not isinstance(self.minor_units, int):
            raise TypeError(
                f"minor_units must be int, got {type(self.minor_units).__name__}"
            )
        if isinstance(self.currency, str):
            object.__setattr__(self, "currency", Currency(self.currency))
        elif not isinstance(self.currency, Currency):
            raise TypeError(f"currency must be Currency or str, got {type(self.currency)}")

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str | Currency) -> Money:
        """
        Create Money from a major-unit decimal amount, e.g. ``Money.of("10.50", "USD")``.

        Raises:
            TypeError: If amount is a float.
            ValueError: If amount carries more precision than the currency scale.
        """
        if isinstance(currency, str):
            currency = Currency(currency)
        exact = _to_fraction(amount) * (10 ** currency.decimal_places)
        if exact.denominator != 1:
            raise ValueError(
                f"Amount {amount} has more precision than {currency.code} "
                f"allows ({currency.decimal_places} decimal places)"
            )
        return cls(minor_units=exact.numerator, currency=currency)

    @classmethod
    def rounded(cls, amount: Decimal | str | int, currency: str | Currency) -> Money:
        """Create Money from a decimal amount, rounding half-up to the currency scale."""
        if isinstance(currency, str):
            currency = Currency(currency)
        exact = _to_fraction(amount) * (10 ** currency.decimal_places)
        return cls(minor_units=_round_half_up(exact), currency=currency)

    @classmethod
    def from_minor(cls, minor_units: int, currency: str | Currency) -> Money:
        """Create Money from an integer count of minor units."""
        return cls(minor_units=minor_units, currency=currency)

    @classmethod
    def zero(cls, currency: str | Currency) -> Money:
        """Create a zero amount in the given currency."""
        return cls(minor_units=0, currency=currency)

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> Money:
        """
        Rebuild Money from its boundary representation.

        Raises:
            ValueError: If the scale does not match the currency scale.
        """
        currency = Currency(data["currency"])
        scale = data.get("scale", currency.decimal_places)
        if scale != currency.decimal_places:
            raise ValueError(
                f"Scale {scale} does not match {currency.code} "
                f"({currency.decimal_places} decimal places)"
            )
        return cls(minor_units=data["minor_units"], currency=currency)

    def to_wire(self) -> dict[str, Any]:
        """Boundary representation: minor units plus scale, never a raw decimal."""
        return {
            "minor_units": self.minor_units,
            "scale": self.scale,
            "currency": self.currency.code,
        }

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def scale(self) -> int:
        return self.currency.decimal_places

    @property
    def amount(self) -> Decimal:
        """Major-unit Decimal, exact at the currency scale (display only)."""
        return Decimal(self.minor_units).scaleb(-self.scale)

    @property
    def is_zero(self) -> bool:
        return self.minor_units == 0

    @property
    def is_positive(self) -> bool:
        return self.minor_units > 0

    @property
    def is_negative(self) -> bool:
        return self.minor_units < 0

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def _check_currency(self, other: Money, operation: str) -> None:
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot {operation} Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )

    def __add__(self, other: Money) -> Money:
        """Add two Money values. Must be same currency."""
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "add")
        return Money(self.minor_units + other.minor_units, self.currency)

    def __sub__(self, other: Money) -> Money:
        """Subtract two Money values. Must be same currency."""
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "subtract")
        return Money(self.minor_units - other.minor_units, self.currency)

    def __neg__(self) -> Money:
        return Money(-self.minor_units, self.currency)

    def __abs__(self) -> Money:
        return Money(abs(self.minor_units), self.currency)

    def scale_by_rational(
        self,
        numerator: Rational | str,
        denominator: Rational | str = 1,
    ) -> Money:
        """
        Multiply by ``numerator / denominator``, rounding half-up to one minor unit.

        Use this for a single derived amount (tax, tip, proportional credit).
        Never use it to compute several shares of one amount independently;
        use ``allocate`` so the shares sum to the whole.

        Raises:
            ZeroDivisionError: If denominator is zero.
        """
        factor = _to_fraction(numerator) / _to_fraction(denominator)
        return Money(_round_half_up(self.minor_units * factor), self.currency)

    def distribute_evenly(self, n: int) -> list[Money]:
        """
        Split into ``n`` parts that sum exactly to this amount.

        The remainder ``k`` (in minor units) goes one unit each to the
        first ``k`` parts.

        Raises:
            ValueError: If n < 1.
        """
        if n < 1:
            raise ValueError(f"Cannot distribute across {n} recipients")
        sign = -1 if self.minor_units < 0 else 1
        base, remainder = divmod(abs(self.minor_units), n)
        return [
            Money(sign * (base + (1 if i < remainder else 0)), self.currency)
            for i in range(n)
        ]

    def allocate(self, weights: Sequence[Rational | str]) -> list[Money]:
        """
        Split proportionally to ``weights`` with parts summing exactly to this amount.

        Every part is first floored to a whole minor unit; the residual
        units then go one each to the first recipients that have a positive
        weight. Recipients with zero weight always get zero.

        Raises:
            ValueError: If weights is empty, any weight is negative, or all
                weights are zero.
        """
        if not weights:
            raise ValueError("Cannot allocate across zero recipients")
        fractions = [_to_fraction(w) for w in weights]
        if any(f < 0 for f in fractions):
            raise ValueError(f"Allocation weights must be non-negative: {list(weights)}")
        weight_total = sum(fractions, Fraction(0))
        if weight_total == 0:
            raise ValueError("Allocation weights must not all be zero")

        sign = -1 if self.minor_units < 0 else 1
        magnitude = abs(self.minor_units)
        parts = [(magnitude * f / weight_total) for f in fractions]
        floors = [p.numerator // p.denominator for p in parts]
        residual = magnitude - sum(floors)

        for i, f in enumerate(fractions):
            if residual == 0:
                break
            if f > 0:
                floors[i] += 1
                residual -= 1

        return [Money(sign * units, self.currency) for units in floors]

    def compare_with_epsilon(self, other: Money, epsilon_minor_units: int = 0) -> bool:
        """True when the two amounts differ by at most ``epsilon_minor_units``."""
        if not isinstance(other, Money):
            raise TypeError(f"Cannot compare Money with {type(other).__name__}")
        self._check_currency(other, "compare")
        return abs(self.minor_units - other.minor_units) <= epsilon_minor_units

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.minor_units < other.minor_units

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.minor_units <= other.minor_units

    def __gt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.minor_units > other.minor_units

    def __ge__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.minor_units >= other.minor_units

    def __str__(self) -> str:
        return f"{self.amount} {self.currency.code}"

    def __repr__(self) -> str:
        return f"Money({self.amount}, {self.currency.code!r})"


def sum_money(values: Sequence[Money] | Any, currency: Currency | str) -> Money:
    """Sum an iterable of Money, starting from zero in ``currency``."""
    total = Money.zero(currency)
    for value in values:
        total = total + value
    return total
