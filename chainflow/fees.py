"""Fee quotation with a fixed fallback."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import Any, Awaitable, Callable

from .amounts import Amount
from .contracts import FeeQuote, FeeSource
from .errors import QuoteUnavailable

logger = logging.getLogger(__name__)

QuoteCall = Callable[[], Awaitable[Any]]

_FEE_KEYS = ("nativeFee", "native_fee")


def extract_native_fee(result: Any) -> int:
    """Pull the native-fee component out of a raw quote result.

    Accepts a scalar integer, a tuple or list whose first element is the
    native fee, a mapping keyed ``nativeFee``/``native_fee`` or an object
    exposing one of those attributes.

    Raises:
        QuoteUnavailable: If no non-negative integer fee can be found.
    """
    fee: Any = result
    if isinstance(result, Mapping):
        fee = next((result[key] for key in _FEE_KEYS if key in result), None)
    elif isinstance(result, Sequence) and not isinstance(result, (str, bytes)):
        fee = result[0] if result else None
    elif not isinstance(result, int):
        fee = next(
            (getattr(result, key) for key in _FEE_KEYS if hasattr(result, key)),
            None,
        )

    if isinstance(fee, bool) or not isinstance(fee, int):
        raise QuoteUnavailable(f"Malformed fee quote: {result!r}")
    if fee < 0:
        raise QuoteUnavailable(f"Negative fee quote: {fee}")
    return fee


class FeeQuotationResolver:
    """Resolves a bridging fee, substituting a fallback when quoting fails."""

    def __init__(self, fallback_fee: Amount, timeout: float = 5.0) -> None:
        self.fallback_fee = fallback_fee
        self.timeout = timeout

    def _fallback(self, reason: str) -> FeeQuote:
        return FeeQuote(amount=self.fallback_fee, source=FeeSource.FALLBACK, error=reason)

    async def resolve_fee(self, quote_call: QuoteCall) -> FeeQuote:
        """Return a quote from ``quote_call`` or the fallback fee. Never raises."""
        try:
            result = await asyncio.wait_for(quote_call(), timeout=self.timeout)
            fee = extract_native_fee(result)
        except asyncio.TimeoutError:
            logger.warning(
                f"Fee quote timed out after {self.timeout}s, using fallback fee {self.fallback_fee}"
            )
            return self._fallback(f"quote timed out after {self.timeout}s")
        except Exception as e:
            logger.warning(f"Fee quote failed, using fallback fee {self.fallback_fee}: {e}")
            return self._fallback(str(e) or e.__class__.__name__)

        amount = Amount(value=fee, decimals=self.fallback_fee.decimals)
        logger.info(f"Quoted native fee: {amount}")
        return FeeQuote(amount=amount, source=FeeSource.QUOTED)
