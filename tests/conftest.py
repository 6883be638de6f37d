"""
conftest.py - Shared pytest fixtures for lending tests

Provides common fixtures used across unit, functional and conformance tests:
- Basic ledgers (empty, ETH with escrow)
- Loan books (funded accounts, with an open loan)
- FakeView setups for pure record functions
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from lending import Ledger, cash, ESCROW_WALLET, LoanTerms
from lending.units.loan_request import create_loan_request_unit
from lending.units.loan import create_loan_unit

from tests.fake_view import FakeView
from tests.helpers import T0, PRICE, make_book


# =============================================================================
# LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", verbose=False, test_mode=True)


@pytest.fixture
def eth_ledger():
    """Ledger with ETH, escrow and two wallets."""
    ledger = Ledger("test", T0, verbose=False, test_mode=True)
    ledger.register_unit(cash("ETH", "Ether"))
    ledger.register_wallet(ESCROW_WALLET)
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    return ledger


@pytest.fixture
def funded_ledger(eth_ledger):
    """ETH ledger with alice holding 100 ETH."""
    eth_ledger.set_balance("alice", "ETH", Decimal("100"))
    return eth_ledger


# =============================================================================
# LOAN BOOK FIXTURES
# =============================================================================

@pytest.fixture
def book():
    """Loan book with alice, bob and carol holding 100 ETH each."""
    return make_book(alice=100, bob=100, carol=100)


@pytest.fixture
def request_book(book):
    """Book with request #1: alice asks 10 ETH for 30 days at 5%, 20 ETH collateral."""
    book.create_loan_request("alice", Decimal("10"), 30, Decimal("5"), Decimal("20"))
    return book


@pytest.fixture
def loan_book(request_book):
    """Book with loan #1: bob funded request #1 at T0."""
    request_book.fund_loan_request(1, "bob", PRICE)
    return request_book


# =============================================================================
# FAKE VIEW FIXTURES
# =============================================================================

@pytest.fixture
def terms():
    return LoanTerms(Decimal("10"), Decimal("20"), 30, Decimal("5"))


@pytest.fixture
def request_unit(terms):
    return create_loan_request_unit(1, "alice", terms, "ETH", T0)


@pytest.fixture
def request_view(request_unit):
    """FakeView with active request #1 and funded accounts."""
    return FakeView(
        balances={
            "alice": {"ETH": Decimal("80")},
            "bob": {"ETH": Decimal("100")},
            ESCROW_WALLET: {"ETH": Decimal("20")},
        },
        units=[request_unit],
        time=T0 + timedelta(hours=1),
    )


@pytest.fixture
def loan_unit():
    return create_loan_unit(
        loan_id=1,
        request_id=1,
        borrower="alice",
        lender="bob",
        principal=Decimal("10"),
        collateral=Decimal("20"),
        interest_rate=Decimal("5"),
        duration_days=30,
        start_time=T0,
        initial_price=PRICE,
        currency="ETH",
    )
