"""
helpers.py - Shared builders, strategies and invariant checks for lending tests
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from hypothesis import strategies as st

from lending import (
    LoanBook, LendingConfig, OverpaymentPolicy, Unit, LedgerError,
    ESCROW_WALLET, SYSTEM_WALLET,
)

from tests.fake_view import FakeView


T0 = datetime(2025, 1, 1)
PRICE = 3150 * 10**18

ACCOUNTS = ["alice", "bob", "carol"]
START_BALANCE = Decimal("500")


def make_book(overpayment_policy: OverpaymentPolicy = OverpaymentPolicy.REFUND, **balances) -> LoanBook:
    """Quiet loan book at T0 with the given accounts opened and funded."""
    book = LoanBook(
        "test", T0,
        config=LendingConfig(overpayment_policy=overpayment_policy),
        verbose=False,
    )
    for account, amount in balances.items():
        book.open_account(account)
        book.deposit(account, Decimal(str(amount)))
    return book


def escrow_backing(book: LoanBook) -> Decimal:
    """Collateral that escrow must hold: active requests plus open loans."""
    _, loans, _, requests = book.get_all_active_loans()
    return (
        sum((loan.collateral for loan in loans), Decimal("0"))
        + sum((req.collateral for req in requests), Decimal("0"))
    )


def assert_escrow_backed(book: LoanBook) -> None:
    assert book.escrow_balance() == escrow_backing(book)


def account_total(book: LoanBook) -> Decimal:
    """Sum of all non-system balances, escrow included."""
    return sum(
        (book.get_balance(w) for w in book.ledger.list_wallets() if w != SYSTEM_WALLET),
        Decimal("0"),
    )


def loan_view(loan_unit: Unit, time: datetime, alice_balance=Decimal("90"), states=None) -> FakeView:
    """FakeView with open loan #1 (alice borrows from bob) at the given time."""
    return FakeView(
        balances={
            "alice": {"ETH": alice_balance},
            "bob": {"ETH": Decimal("90")},
            ESCROW_WALLET: {"ETH": Decimal("20")},
        },
        units=[loan_unit],
        states=states,
        time=time,
    )


# =============================================================================
# RANDOM OPERATION SEQUENCES
# =============================================================================

amounts = st.decimals(min_value=Decimal("0.01"), max_value=Decimal("100"), places=2)
accounts = st.sampled_from(ACCOUNTS)
ids = st.integers(min_value=1, max_value=6)

operation = st.one_of(
    st.tuples(
        st.just("create"), accounts, amounts,
        st.integers(min_value=1, max_value=60),
        st.decimals(min_value=Decimal("0"), max_value=Decimal("7"), places=2),
        st.decimals(min_value=Decimal("0"), max_value=Decimal("10"), places=2),
    ),
    st.tuples(st.just("fund"), ids, accounts),
    st.tuples(st.just("repay"), ids, st.decimals(min_value=Decimal("0"), max_value=Decimal("5"), places=2)),
    st.tuples(st.just("liquidate"), ids, accounts),
    st.tuples(st.just("cancel"), ids, accounts),
    st.tuples(st.just("deposit"), accounts, amounts),
    st.tuples(st.just("advance"), st.integers(min_value=1, max_value=40)),
)


def apply(book: LoanBook, op) -> Optional[str]:
    """Run one operation, returning the name of the error it raised (if any)."""
    kind = op[0]
    try:
        if kind == "create":
            _, borrower, principal, days, rate, extra = op
            book.create_loan_request(borrower, principal, days, rate, principal * 2 + extra)
        elif kind == "fund":
            book.fund_loan_request(op[1], op[2], PRICE)
        elif kind == "repay":
            loan = book.get_loan(op[1])
            book.repay_loan(op[1], loan.borrower, book.get_repay_amount(op[1]) + op[2])
        elif kind == "liquidate":
            book.liquidate_expired_loan(op[1], op[2])
        elif kind == "cancel":
            book.cancel_loan_request(op[1], op[2])
        elif kind == "deposit":
            book.deposit(op[1], op[2])
        elif kind == "advance":
            book.advance_time(book.current_time + timedelta(days=op[1]))
    except LedgerError as exc:
        return type(exc).__name__
    return None
