"""Exact fixed-point token amounts.

Token quantities are held as an integer count of the asset's smallest unit
together with the number of fractional digits that unit represents. Decimal
strings are converted with integer arithmetic only, so ``"1.5"`` at 18
decimals is exactly ``1500000000000000000`` and never passes through a float.
"""

from __future__ import annotations

import re
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, StrictInt

from .errors import InvalidAmount

_AMOUNT_RE = re.compile(r"^(?P<whole>\d*)(?:\.(?P<frac>\d*))?$")


def parse_units(text: str, decimals: int) -> int:
    """Convert a decimal string into smallest units at ``decimals`` precision.

    Raises:
        InvalidAmount: If ``text`` is not a non-negative decimal string or
            carries more significant fractional digits than ``decimals``.
    """
    if isinstance(text, bool) or not isinstance(text, str):
        raise InvalidAmount(
            f"Amount must be a decimal string, got {type(text).__name__}"
        )
    if decimals < 0:
        raise InvalidAmount(f"Invalid precision: {decimals}")

    candidate = text.strip()
    match = _AMOUNT_RE.match(candidate)
    if match is None:
        raise InvalidAmount(f"Not a decimal amount: {text!r}")

    whole = match.group("whole") or ""
    frac = match.group("frac") or ""
    if not whole and not frac:
        raise InvalidAmount(f"Not a decimal amount: {text!r}")

    frac = frac.rstrip("0")
    if len(frac) > decimals:
        raise InvalidAmount(
            f"{text!r} exceeds the asset precision of {decimals} fractional digits"
        )

    scale = 10**decimals
    return int(whole or "0") * scale + int(frac.ljust(decimals, "0") or "0")


def format_units(value: int, decimals: int) -> str:
    """Render ``value`` smallest units as a minimal decimal string."""
    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs(value), 10**decimals)
    if decimals == 0 or frac == 0:
        return f"{sign}{whole}"
    frac_text = str(frac).rjust(decimals, "0").rstrip("0")
    return f"{sign}{whole}.{frac_text}"


class Amount(BaseModel):
    """A non-negative token quantity in smallest units."""

    model_config = ConfigDict(frozen=True)

    value: StrictInt = Field(ge=0, description="Quantity in smallest units")
    decimals: StrictInt = Field(ge=0, le=77, description="Fractional digits")

    @classmethod
    def parse(cls, text: str, decimals: int) -> "Amount":
        """Parse a decimal string such as ``"1.5"`` at the given precision."""
        return cls(value=parse_units(text, decimals), decimals=decimals)

    @classmethod
    def zero(cls, decimals: int) -> "Amount":
        return cls(value=0, decimals=decimals)

    def to_decimal(self) -> Decimal:
        """Exact ``Decimal`` view, for display only."""
        return Decimal(self.value).scaleb(-self.decimals)

    def _units_of(self, other: "Amount") -> int:
        if not isinstance(other, Amount):
            raise TypeError(f"Cannot compare Amount with {type(other).__name__}")
        if other.decimals != self.decimals:
            raise ValueError(
                f"Cannot compare amounts with {self.decimals} and {other.decimals} decimals"
            )
        return other.value

    def __lt__(self, other: "Amount") -> bool:
        return self.value < self._units_of(other)

    def __le__(self, other: "Amount") -> bool:
        return self.value <= self._units_of(other)

    def __gt__(self, other: "Amount") -> bool:
        return self.value > self._units_of(other)

    def __ge__(self, other: "Amount") -> bool:
        return self.value >= self._units_of(other)

    def __str__(self) -> str:
        return format_units(self.value, self.decimals)


__all__ = ["Amount", "format_units", "parse_units"]
