"""
test_ledger.py - Unit tests for the Ledger class

Tests:
- Wallet and unit registration
- Balance queries and positions
- Time management
- Transaction execution (apply, reject, idempotency)
- Record state guards (stale state rejection)
- Atomic record creation
- Clone and double-entry verification
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from lending import (
    Ledger, Move, Unit, UnitStateChange, ExecuteResult, LedgerError,
    UnitNotRegistered, WalletNotRegistered, LoanTerms,
    build_transaction, cash, ESCROW_WALLET, SYSTEM_WALLET, UNIT_TYPE_LOAN_REQUEST,
)
from lending.core import _freeze_state
from lending.units.loan_request import create_loan_request_unit
from tests.helpers import T0


def _record(symbol: str = "REC", **state) -> Unit:
    return Unit(
        symbol=symbol, name="record", unit_type=UNIT_TYPE_LOAN_REQUEST,
        max_balance=Decimal("0"), decimal_places=0,
        _frozen_state=_freeze_state(state or {"active": True}),
    )


class TestLedgerCreation:

    def test_create_ledger(self, empty_ledger):
        assert empty_ledger.name == "test"
        assert empty_ledger.current_time == datetime(1970, 1, 1)
        assert empty_ledger.is_registered(SYSTEM_WALLET)

    def test_create_with_initial_time(self):
        ledger = Ledger("main", T0, verbose=False)
        assert ledger.current_time == T0


class TestRegistration:

    def test_register_wallet(self, eth_ledger):
        assert eth_ledger.is_registered("alice")
        assert {"alice", "bob", ESCROW_WALLET, SYSTEM_WALLET} == eth_ledger.list_wallets()

    def test_register_duplicate_wallet_raises(self, eth_ledger):
        with pytest.raises(ValueError, match="already registered"):
            eth_ledger.register_wallet("alice")

    def test_register_empty_wallet_raises(self, eth_ledger):
        with pytest.raises(ValueError):
            eth_ledger.register_wallet("  ")

    def test_register_duplicate_unit_raises(self, eth_ledger):
        with pytest.raises(ValueError):
            eth_ledger.register_unit(cash("ETH", "Ether"))

    def test_get_unit_state(self, eth_ledger):
        assert eth_ledger.get_unit_state("ETH") == {"issuer": SYSTEM_WALLET}

    def test_get_unit_state_unregistered_raises(self, eth_ledger):
        with pytest.raises(UnitNotRegistered):
            eth_ledger.get_unit_state("REQ_1")

    def test_list_units(self, eth_ledger):
        eth_ledger.register_unit(_record())
        assert eth_ledger.list_units() == ["ETH", "REC"]


class TestBalances:

    def test_default_zero(self, eth_ledger):
        assert eth_ledger.get_balance("alice", "ETH") == Decimal("0")

    def test_unregistered_wallet_raises(self, eth_ledger):
        with pytest.raises(WalletNotRegistered):
            eth_ledger.get_balance("mallory", "ETH")

    def test_unregistered_unit_raises(self, eth_ledger):
        with pytest.raises(UnitNotRegistered):
            eth_ledger.get_balance("alice", "BTC")

    def test_positions_and_supply(self, funded_ledger):
        funded_ledger.set_balance("bob", "ETH", Decimal("5"))
        assert funded_ledger.get_positions("ETH") == {"alice": Decimal("100"), "bob": Decimal("5")}
        assert funded_ledger.total_supply("ETH") == Decimal("105")
        assert funded_ledger.get_wallet_balances("alice") == {"ETH": Decimal("100")}

    def test_set_balance_requires_test_mode(self):
        ledger = Ledger("prod", T0, verbose=False)
        ledger.register_unit(cash("ETH", "Ether"))
        ledger.register_wallet("alice")
        with pytest.raises(LedgerError, match="test_mode"):
            ledger.set_balance("alice", "ETH", Decimal("1"))


class TestTimeManagement:

    def test_advance_time(self, eth_ledger):
        eth_ledger.advance_time(T0 + timedelta(days=1))
        assert eth_ledger.current_time == T0 + timedelta(days=1)

    def test_advance_to_same_time(self, eth_ledger):
        eth_ledger.advance_time(T0)
        assert eth_ledger.current_time == T0

    def test_advance_time_backwards_raises(self, eth_ledger):
        with pytest.raises(ValueError, match="backwards"):
            eth_ledger.advance_time(T0 - timedelta(seconds=1))

    def test_advanced_to_keeps_time_on_success(self, eth_ledger):
        with eth_ledger.advanced_to(T0 + timedelta(days=1)):
            assert eth_ledger.current_time == T0 + timedelta(days=1)
        assert eth_ledger.current_time == T0 + timedelta(days=1)

    def test_advanced_to_restores_time_on_error(self, eth_ledger):
        with pytest.raises(LedgerError):
            with eth_ledger.advanced_to(T0 + timedelta(days=1)):
                raise LedgerError("boom")
        assert eth_ledger.current_time == T0

    def test_advanced_to_none_leaves_time(self, eth_ledger):
        with eth_ledger.advanced_to(None):
            pass
        assert eth_ledger.current_time == T0


class TestExecution:

    def test_execute_simple_transaction(self, funded_ledger):
        tx = build_transaction(funded_ledger, [Move(Decimal("30"), "ETH", "alice", "bob", "pay_1")])
        assert funded_ledger.execute(tx) == ExecuteResult.APPLIED
        assert funded_ledger.get_balance("alice", "ETH") == Decimal("70")
        assert funded_ledger.get_balance("bob", "ETH") == Decimal("30")
        assert len(funded_ledger.transaction_log) == 1
        assert funded_ledger.last_rejection is None

    def test_issuance_from_system_wallet(self, eth_ledger):
        tx = build_transaction(eth_ledger, [Move(Decimal("5"), "ETH", SYSTEM_WALLET, "bob", "deposit_1")])
        assert eth_ledger.execute(tx) == ExecuteResult.APPLIED
        assert eth_ledger.get_balance(SYSTEM_WALLET, "ETH") == Decimal("-5")
        assert eth_ledger.total_supply("ETH") == Decimal("0")

    def test_reject_insufficient_funds(self, funded_ledger):
        tx = build_transaction(funded_ledger, [Move(Decimal("101"), "ETH", "alice", "bob", "pay_1")])
        assert funded_ledger.execute(tx) == ExecuteResult.REJECTED
        assert "insufficient funds" in funded_ledger.last_rejection
        assert funded_ledger.get_balance("alice", "ETH") == Decimal("100")
        assert funded_ledger.transaction_log == []

    def test_reject_unregistered_wallet(self, funded_ledger):
        tx = build_transaction(funded_ledger, [Move(Decimal("1"), "ETH", "alice", "mallory", "pay_1")])
        assert funded_ledger.execute(tx) == ExecuteResult.REJECTED
        assert "mallory" in funded_ledger.last_rejection

    def test_reject_future_timestamp(self, funded_ledger):
        tx = build_transaction(funded_ledger, [Move(Decimal("1"), "ETH", "alice", "bob", "pay_1")])
        later = Ledger("other", T0 + timedelta(days=1), verbose=False)
        future_tx = build_transaction(later, list(tx.moves))
        assert funded_ledger.execute(future_tx) == ExecuteResult.REJECTED
        assert funded_ledger.last_rejection == "future timestamp"

    def test_idempotency(self, funded_ledger):
        tx = build_transaction(funded_ledger, [Move(Decimal("10"), "ETH", "alice", "bob", "pay_1")])
        assert funded_ledger.execute(tx) == ExecuteResult.APPLIED
        assert funded_ledger.execute(tx) == ExecuteResult.ALREADY_APPLIED
        assert funded_ledger.get_balance("bob", "ETH") == Decimal("10")

    def test_escrow_rejects_untagged_deposit(self, funded_ledger):
        tx = build_transaction(funded_ledger, [Move(Decimal("10"), "ETH", "alice", ESCROW_WALLET, "gift")])
        assert funded_ledger.execute(tx) == ExecuteResult.REJECTED
        assert "lending record" in funded_ledger.last_rejection

    def test_record_units_hold_no_balances(self, eth_ledger):
        eth_ledger.register_unit(_record())
        tx = build_transaction(eth_ledger, [Move(Decimal("1"), "REC", SYSTEM_WALLET, "alice", "x")])
        assert eth_ledger.execute(tx) == ExecuteResult.REJECTED

    def test_empty_transaction_is_noop(self, eth_ledger):
        tx = build_transaction(eth_ledger, [])
        assert eth_ledger.execute(tx) == ExecuteResult.APPLIED
        assert eth_ledger.transaction_log == []


class TestStateGuards:
    """old_state is checked against the record at execution time."""

    def test_state_change_applied(self, eth_ledger):
        eth_ledger.register_unit(_record())
        tx = build_transaction(eth_ledger, [], [UnitStateChange("REC", {"active": True}, {"active": False})])
        assert eth_ledger.execute(tx) == ExecuteResult.APPLIED
        assert eth_ledger.get_unit_state("REC") == {"active": False}

    def test_stale_state_rejected(self, eth_ledger):
        eth_ledger.register_unit(_record())
        first = build_transaction(
            eth_ledger, [], [UnitStateChange("REC", {"active": True}, {"active": False, "by": "bob"})]
        )
        second = build_transaction(
            eth_ledger, [], [UnitStateChange("REC", {"active": True}, {"active": False, "by": "carol"})]
        )
        assert eth_ledger.execute(first) == ExecuteResult.APPLIED
        assert eth_ledger.execute(second) == ExecuteResult.REJECTED
        assert "stale state for REC" in eth_ledger.last_rejection
        assert eth_ledger.get_unit_state("REC")["by"] == "bob"

    def test_stale_state_applies_no_moves(self, funded_ledger):
        funded_ledger.register_unit(_record(active=False))
        tx = build_transaction(
            funded_ledger,
            [Move(Decimal("10"), "ETH", "alice", "bob", "REC")],
            [UnitStateChange("REC", {"active": True}, {"active": False})],
        )
        assert funded_ledger.execute(tx) == ExecuteResult.REJECTED
        assert funded_ledger.get_balance("bob", "ETH") == Decimal("0")

    def test_state_change_on_unknown_unit(self, eth_ledger):
        tx = build_transaction(eth_ledger, [], [UnitStateChange("NOPE", {}, {"a": 1})])
        assert eth_ledger.execute(tx) == ExecuteResult.REJECTED
        assert "NOPE" in eth_ledger.last_rejection


class TestRecordCreation:
    """units_to_create register atomically with the moves."""

    @pytest.fixture
    def request_unit(self):
        return create_loan_request_unit(1, "alice", LoanTerms(Decimal("10"), Decimal("20"), 30, Decimal("5")), "ETH", T0)

    def test_record_and_lock_applied_together(self, funded_ledger, request_unit):
        tx = build_transaction(
            funded_ledger,
            [Move(Decimal("20"), "ETH", "alice", ESCROW_WALLET, "REQ_1")],
            units_to_create=(request_unit,),
        )
        assert funded_ledger.execute(tx) == ExecuteResult.APPLIED
        assert funded_ledger.get_unit_state("REQ_1")["active"] is True
        assert funded_ledger.get_balance(ESCROW_WALLET, "ETH") == Decimal("20")

    def test_rejection_unregisters_record(self, eth_ledger, request_unit):
        tx = build_transaction(
            eth_ledger,
            [Move(Decimal("20"), "ETH", "alice", ESCROW_WALLET, "REQ_1")],
            units_to_create=(request_unit,),
        )
        assert eth_ledger.execute(tx) == ExecuteResult.REJECTED
        assert "REQ_1" not in eth_ledger.list_units()

    def test_duplicate_record_rejected(self, funded_ledger, request_unit):
        funded_ledger.register_unit(request_unit)
        tx = build_transaction(funded_ledger, [], units_to_create=(request_unit,))
        assert funded_ledger.execute(tx) == ExecuteResult.REJECTED
        assert "already registered" in funded_ledger.last_rejection
        assert "REQ_1" in funded_ledger.list_units()


class TestCloneAndVerification:

    def test_clone_creates_independent_copy(self, funded_ledger):
        clone = funded_ledger.clone()
        tx = build_transaction(clone, [Move(Decimal("10"), "ETH", "alice", "bob", "pay_1")])
        assert clone.execute(tx) == ExecuteResult.APPLIED
        assert clone.get_balance("alice", "ETH") == Decimal("90")
        assert funded_ledger.get_balance("alice", "ETH") == Decimal("100")
        assert clone.lock is not funded_ledger.lock

    def test_clone_keeps_idempotency_history(self, funded_ledger):
        tx = build_transaction(funded_ledger, [Move(Decimal("10"), "ETH", "alice", "bob", "pay_1")])
        funded_ledger.execute(tx)
        assert funded_ledger.clone().execute(tx) == ExecuteResult.ALREADY_APPLIED

    def test_verify_double_entry(self, eth_ledger):
        tx = build_transaction(eth_ledger, [
            Move(Decimal("7"), "ETH", SYSTEM_WALLET, "alice", "deposit_1"),
            Move(Decimal("3"), "ETH", "alice", "bob", "pay_1"),
        ])
        eth_ledger.execute(tx)
        result = eth_ledger.verify_double_entry({"ETH": Decimal("0")})
        assert result["valid"]
        assert result["supplies"]["ETH"] == Decimal("0")

    def test_verify_double_entry_reports_drift(self, funded_ledger):
        result = funded_ledger.verify_double_entry({"ETH": Decimal("0"), "BTC": Decimal("1")})
        assert not result["valid"]
        units = {d["unit"] for d in result["discrepancies"]}
        assert units == {"ETH", "BTC"}
