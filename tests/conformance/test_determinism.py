"""
Determinism Conformance Tests

INVARIANT: Given identical inputs, the loan book produces identical outputs.

    ∀ inputs I:
        book1.process(I) = book2.process(I)

This guarantees:
- Identical operation sequences reach identical balances and records
- Intent ids are content hashes, independent of the ledger instance
- Repay amounts depend only on the loan terms
"""

from hypothesis import given, settings
from hypothesis import strategies as st
from decimal import Decimal

from lending import calculate_repay_amount
from tests.helpers import ACCOUNTS, START_BALANCE, operation, apply, make_book


def state_of(book):
    ledger = book.ledger
    balances = {w: ledger.get_balance(w, book.currency) for w in sorted(ledger.list_wallets())}
    records = {sym: ledger.get_unit_state(sym) for sym in ledger.list_units()}
    intents = [tx.intent_id for tx in ledger.transaction_log]
    return balances, records, intents


class TestDeterminismProperties:
    """Property-based determinism tests."""

    @given(st.lists(operation, min_size=1, max_size=20))
    @settings(max_examples=50, deadline=None)
    def test_identical_sequences_produce_identical_state(self, ops):
        """
        PROPERTY: Two books processing the same operations reach the same state
        and raise the same errors.
        """
        book1 = make_book(**{name: START_BALANCE for name in ACCOUNTS})
        book2 = make_book(**{name: START_BALANCE for name in ACCOUNTS})

        errors1 = [apply(book1, op) for op in ops]
        errors2 = [apply(book2, op) for op in ops]

        assert errors1 == errors2
        assert state_of(book1) == state_of(book2)

    @given(
        principal=st.decimals(min_value=Decimal("0.01"), max_value=Decimal("1000000"), places=6),
        rate=st.decimals(min_value=Decimal("0"), max_value=Decimal("7"), places=3),
        days=st.integers(min_value=1, max_value=3650),
    )
    @settings(max_examples=100)
    def test_repay_amount_is_pure(self, principal, rate, days):
        """
        PROPERTY: The amount due is a function of the terms alone.
        """
        assert calculate_repay_amount(principal, rate, days) == calculate_repay_amount(principal, rate, days)


class TestCloneDeterminism:
    """A cloned ledger continues exactly like the original."""

    def test_clone_then_same_operation(self, loan_book):
        cloned = loan_book.ledger.clone()
        assert cloned.get_unit_state("LOAN_1") == loan_book.ledger.get_unit_state("LOAN_1")
        assert cloned.list_units() == loan_book.ledger.list_units()
        for wallet in loan_book.ledger.list_wallets():
            assert cloned.get_balance(wallet, "ETH") == loan_book.ledger.get_balance(wallet, "ETH")
