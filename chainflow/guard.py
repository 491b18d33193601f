"""Allowance guard deciding whether a permission step is needed."""

from __future__ import annotations

from typing import Optional, Union

from .amounts import Amount

Units = Union[int, Amount]


def _to_units(value: Units, decimals: Optional[int]) -> int:
    if isinstance(value, Amount):
        if decimals is not None and value.decimals != decimals:
            raise ValueError(
                f"Precision mismatch: {value.decimals} vs {decimals} decimals"
            )
        return value.value
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(
            f"Allowance comparisons need integer units, got {type(value).__name__}"
        )
    return value


def should_request_permission(current_level: Units, required_amount: Units) -> bool:
    """Return ``False`` iff ``current_level`` already covers ``required_amount``.

    Both arguments are smallest-unit integers or :class:`Amount` values of the
    same precision. The comparison is exact; no floating-point value is ever
    involved.
    """
    decimals = None
    if isinstance(current_level, Amount):
        decimals = current_level.decimals
    elif isinstance(required_amount, Amount):
        decimals = required_amount.decimals
    current = _to_units(current_level, decimals)
    required = _to_units(required_amount, decimals)
    return current < required
