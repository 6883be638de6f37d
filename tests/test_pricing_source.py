"""
test_pricing_source.py - Unit tests for pricing_source.py

Tests:
- StaticPricingSource: static prices, updates
- TimeSeriesPricingSource: time-varying prices (incremental and path initialization)
- Fixed-point encoding of funding prices
- quote_initial_price feeding fund_loan_request
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from lending import (
    StaticPricingSource,
    TimeSeriesPricingSource,
    PricingSource,
    to_fixed_point,
    from_fixed_point,
    quote_initial_price,
    InvalidAmount,
)
from tests.helpers import T0, make_book


class TestStaticPricingSource:
    """Tests for StaticPricingSource."""

    def test_create_static_source(self):
        source = StaticPricingSource({'ETH': Decimal("3150")})
        assert source.base_currency == 'USD'
        assert isinstance(source, PricingSource)

    def test_create_with_custom_base_currency(self):
        source = StaticPricingSource({'ETH': Decimal("2900")}, base_currency='EUR')
        assert source.base_currency == 'EUR'
        assert source.get_price('EUR', T0) == Decimal("1")

    def test_prices_stored_as_decimal(self):
        source = StaticPricingSource({'ETH': 3150.1, 'BTC': 97000})
        assert source.get_price('ETH', T0) == Decimal("3150.1")
        assert source.get_price('BTC', T0) == Decimal("97000")

    def test_invalid_price(self):
        with pytest.raises(InvalidAmount):
            StaticPricingSource({'ETH': "n/a"})

    def test_get_price_unknown_unit(self):
        source = StaticPricingSource({'ETH': Decimal("3150")})
        assert source.get_price('UNKNOWN', T0) is None

    def test_get_price_ignores_timestamp(self):
        source = StaticPricingSource({'ETH': Decimal("3150")})
        assert source.get_price('ETH', T0) == source.get_price('ETH', T0 + timedelta(days=365))

    def test_get_prices_multiple(self):
        source = StaticPricingSource({'ETH': Decimal("3150"), 'BTC': Decimal("97000")})
        prices = source.get_prices({'ETH', 'BTC', 'UNKNOWN'}, T0)
        assert prices == {'ETH': Decimal("3150"), 'BTC': Decimal("97000")}

    def test_update_price(self):
        source = StaticPricingSource({'ETH': Decimal("3150")})
        source.update_price('ETH', "3200.5")
        assert source.get_price('ETH', T0) == Decimal("3200.5")

    def test_repr(self):
        assert 'StaticPricingSource' in repr(StaticPricingSource({'ETH': Decimal("3150")}))


class TestTimeSeriesPricingSource:
    """Tests for TimeSeriesPricingSource."""

    def test_create_empty_source(self):
        source = TimeSeriesPricingSource()
        assert source.base_currency == 'USD'
        assert source.price_history == {}

    def test_get_price_uses_last_known(self):
        source = TimeSeriesPricingSource()
        source.add_price('ETH', datetime(2025, 1, 17), Decimal("3200"))
        source.add_price('ETH', datetime(2025, 1, 15), Decimal("3150"))

        assert source.get_price('ETH', datetime(2025, 1, 15)) == Decimal("3150")
        assert source.get_price('ETH', datetime(2025, 1, 16)) == Decimal("3150")
        assert source.get_price('ETH', datetime(2025, 1, 20)) == Decimal("3200")

    def test_get_price_before_any_data(self):
        source = TimeSeriesPricingSource()
        source.add_price('ETH', datetime(2025, 1, 15), Decimal("3150"))
        assert source.get_price('ETH', datetime(2025, 1, 10)) is None

    def test_get_price_base_currency(self):
        assert TimeSeriesPricingSource().get_price('USD', T0) == Decimal("1")

    def test_get_price_unknown_unit(self):
        assert TimeSeriesPricingSource().get_price('UNKNOWN', T0) is None

    def test_create_with_unsorted_paths(self):
        path = [
            (T0 + timedelta(days=2), 3300.0),
            (T0, 3100.0),
            (T0 + timedelta(days=1), 3200.0),
        ]
        source = TimeSeriesPricingSource({'ETH': path, 'BTC': []})
        assert source.get_price('ETH', T0) == Decimal("3100.0")
        assert source.get_price('ETH', T0 + timedelta(hours=36)) == Decimal("3200.0")
        assert 'BTC' not in source.price_history

    def test_get_prices_skips_missing(self):
        source = TimeSeriesPricingSource({'ETH': [(T0, Decimal("3150"))]})
        assert source.get_prices({'ETH', 'BTC'}, T0) == {'ETH': Decimal("3150")}

    def test_repr(self):
        source = TimeSeriesPricingSource()
        source.add_price('ETH', T0, Decimal("3150"))
        source.add_price('ETH', T0 + timedelta(days=1), Decimal("3160"))
        repr_str = repr(source)
        assert '1 units' in repr_str
        assert '2 observations' in repr_str


class TestFixedPoint:
    """Tests for fixed-point price encoding."""

    def test_to_fixed_point(self):
        assert to_fixed_point(Decimal("3150.25")) == 3150250000000000000000
        assert to_fixed_point(Decimal("3150"), decimals=8) == 315000000000

    def test_truncates_extra_digits(self):
        assert to_fixed_point(Decimal("1.239"), decimals=2) == 123

    def test_zero_price(self):
        assert to_fixed_point(Decimal("0")) == 0

    def test_negative_price(self):
        with pytest.raises(InvalidAmount):
            to_fixed_point(Decimal("-1"))

    def test_negative_decimals(self):
        with pytest.raises(ValueError):
            to_fixed_point(Decimal("1"), decimals=-1)

    def test_from_fixed_point(self):
        assert from_fixed_point(3150250000000000000000) == Decimal("3150.25")

    @pytest.mark.parametrize("raw", [True, 1.5, "3150", Decimal("3150")])
    def test_from_fixed_point_rejects_non_int(self, raw):
        with pytest.raises(InvalidAmount):
            from_fixed_point(raw)


class TestQuoteInitialPrice:
    """Tests for quote_initial_price."""

    def test_quote(self):
        source = TimeSeriesPricingSource({'ETH': [(T0, Decimal("3150"))]})
        assert quote_initial_price(source, 'ETH', T0 + timedelta(hours=1)) == 3150 * 10**18

    def test_no_price(self):
        source = TimeSeriesPricingSource({'ETH': [(T0, Decimal("3150"))]})
        with pytest.raises(LookupError):
            quote_initial_price(source, 'ETH', T0 - timedelta(days=1))

    def test_quoted_price_stored_verbatim_on_loan(self):
        book = make_book(alice=100, bob=100)
        book.create_loan_request("alice", Decimal("10"), 30, Decimal("5"), Decimal("20"))
        source = StaticPricingSource({'ETH': Decimal("3150.123456789")})
        price = quote_initial_price(source, 'ETH', book.current_time)

        book.fund_loan_request(1, "bob", price)
        assert book.get_loan(1).initial_price == price
        assert from_fixed_point(book.get_loan(1).initial_price) == Decimal("3150.123456789")
