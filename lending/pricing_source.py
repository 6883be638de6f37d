"""
pricing_source.py - Price input for loan funding

The lender supplies the collateral asset's price when funding a request. The
ledger stores that number verbatim and never calls a price source itself; the
classes here model the external feed for callers, tests and demos.

Classes:
- PricingSource: Protocol defining the pricing interface
- StaticPricingSource: Time-independent prices
- TimeSeriesPricingSource: Time-varying prices with historical data

Functions:
- to_fixed_point / from_fixed_point: integer encoding with a stated number of
  decimals (18 by default, as on-chain ETH/USD quotes are carried)
- quote_initial_price: look up a price and encode it for fund_loan_request()

All prices are returned in a base currency (typically USD).
"""

from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from typing import Dict, Set, Optional, List, Tuple, Protocol, runtime_checkable
from bisect import bisect_right

from .core import DEFAULT_PRICE_DECIMALS, InvalidAmount, as_decimal


@runtime_checkable
class PricingSource(Protocol):
    """
    Protocol for pricing sources.

    A pricing source provides asset prices at specific timestamps,
    denominated in a base currency (typically USD).
    """
    base_currency: str

    def get_price(self, unit_symbol: str, timestamp: datetime) -> Optional[Decimal]:
        """Get the price of a single asset at a specific timestamp."""
        ...

    def get_prices(self, units: Set[str], timestamp: datetime) -> Dict[str, Decimal]:
        """Get prices for multiple assets at a specific timestamp."""
        ...


class StaticPricingSource:
    """
    Pricing source with static prices (time-independent).

    The base currency always has a price of 1.
    """

    def __init__(self, prices: Dict[str, Decimal], base_currency: str = "USD"):
        self.base_currency = base_currency
        self.prices = {symbol: as_decimal(price, f"price of {symbol}") for symbol, price in prices.items()}
        self.prices[base_currency] = Decimal("1")

    def get_price(self, unit_symbol: str, timestamp: datetime) -> Optional[Decimal]:
        """Get static price (timestamp is ignored)."""
        return self.prices.get(unit_symbol)

    def get_prices(self, units: Set[str], timestamp: datetime) -> Dict[str, Decimal]:
        return {unit: self.prices[unit] for unit in units if unit in self.prices}

    def update_price(self, unit_symbol: str, price: Decimal):
        self.prices[unit_symbol] = as_decimal(price, f"price of {unit_symbol}")

    def __repr__(self):
        return f"StaticPricingSource({len(self.prices)} prices, base={self.base_currency})"


class TimeSeriesPricingSource:
    """
    Pricing source with time-varying prices.

    Uses the most recent price at or before the requested timestamp.

    Example:
        pricer = TimeSeriesPricingSource({
            'ETH': [(t0, Decimal("3000")), (t1, Decimal("3150"))],
        })
        pricer.get_price('ETH', t1)  # Decimal("3150")
    """

    def __init__(
        self,
        price_paths: Optional[Dict[str, List[Tuple[datetime, Decimal]]]] = None,
        base_currency: str = "USD"
    ):
        self.base_currency = base_currency
        self.price_history: Dict[str, List[Tuple[datetime, Decimal]]] = {}

        if price_paths:
            for unit, path in price_paths.items():
                if not path:
                    continue
                self.price_history[unit] = sorted(
                    ((ts, as_decimal(price, f"price of {unit}")) for ts, price in path),
                    key=lambda x: x[0],
                )

    def add_price(self, unit_symbol: str, timestamp: datetime, price: Decimal):
        """Add a price observation, keeping the history in timestamp order."""
        history = self.price_history.setdefault(unit_symbol, [])
        history.append((timestamp, as_decimal(price, f"price of {unit_symbol}")))
        history.sort(key=lambda x: x[0])

    def get_price(self, unit_symbol: str, timestamp: datetime) -> Optional[Decimal]:
        """
        Get price at or before the specified timestamp.

        Returns None if no observation exists at or before the timestamp.
        """
        if unit_symbol == self.base_currency:
            return Decimal("1")

        history = self.price_history.get(unit_symbol)
        if not history:
            return None

        timestamps = [ts for ts, _ in history]
        idx = bisect_right(timestamps, timestamp)
        if idx == 0:
            return None
        return history[idx - 1][1]

    def get_prices(self, units: Set[str], timestamp: datetime) -> Dict[str, Decimal]:
        prices = {}
        for unit in units:
            price = self.get_price(unit, timestamp)
            if price is not None:
                prices[unit] = price
        return prices

    def __repr__(self):
        total_observations = sum(len(history) for history in self.price_history.values())
        return f"TimeSeriesPricingSource({len(self.price_history)} units, {total_observations} observations, base={self.base_currency})"


# ============================================================================
# FIXED-POINT ENCODING
# ============================================================================

def to_fixed_point(price, decimals: int = DEFAULT_PRICE_DECIMALS) -> int:
    """
    Encode a price as an integer scaled by 10**decimals.

    Digits beyond the stated precision are truncated.

    Example:
        to_fixed_point(Decimal("3150.25"))  # 3150250000000000000000

    Raises:
        InvalidAmount: If the price is negative or not a finite number.
        ValueError: If decimals is negative.
    """
    if decimals < 0:
        raise ValueError(f"decimals cannot be negative, got {decimals}")
    value = as_decimal(price, "price")
    if value < 0:
        raise InvalidAmount(f"price cannot be negative, got {value}")
    return int((value * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))


def from_fixed_point(raw: int, decimals: int = DEFAULT_PRICE_DECIMALS) -> Decimal:
    """Decode an integer scaled by 10**decimals back to a Decimal price."""
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise InvalidAmount(f"fixed-point price must be an integer, got {raw!r}")
    if decimals < 0:
        raise ValueError(f"decimals cannot be negative, got {decimals}")
    return Decimal(raw) / (Decimal(10) ** decimals)


def quote_initial_price(
    source: PricingSource,
    asset: str,
    timestamp: datetime,
    decimals: int = DEFAULT_PRICE_DECIMALS,
) -> int:
    """
    Look up an asset price and encode it as the initial_price of a funding.

    Raises:
        LookupError: If the source has no price for the asset at the timestamp.
    """
    price = source.get_price(asset, timestamp)
    if price is None:
        raise LookupError(f"No price for {asset} at or before {timestamp}")
    return to_fixed_point(price, decimals)
