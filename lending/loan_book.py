"""
loan_book.py - The Loan Ledger

LoanBook is the public surface for peer-to-peer collateralized lending. It owns
a Ledger holding every account balance, the escrow wallet and all lending
records, and it is the only code that submits lending transactions.

Every mutating operation runs load -> validate -> build -> execute inside one
critical section. Ledger.execute() additionally rejects a transaction whose
record state went stale, so a flag such as `active` or `repaid` is
checked-and-set in the same step that moves the funds.

Lifecycle:
    create_loan_request   borrower locks collateral             REQ_<id> active
    fund_loan_request     lender pays principal                 LOAN_<id> open
    repay_loan            borrower pays due, gets collateral    LOAN_<id> repaid
    liquidate_expired_loan  after end_time, lender gets collateral  LOAN_<id> liquidated
    cancel_loan_request   borrower takes collateral back        REQ_<id> cancelled

Example:
    book = LoanBook("p2p", initial_time=datetime(2025, 1, 1))
    for account in ("alice", "bob"):
        book.open_account(account)
    book.deposit("alice", Decimal("50"))
    book.deposit("bob", Decimal("50"))
    request_id = book.create_loan_request("alice", Decimal("10"), 30, Decimal("5"), Decimal("20"))
    loan_id = book.fund_loan_request(request_id, "bob", initial_price=3150 * 10**18)
    book.repay_loan(loan_id, "alice", book.get_repay_amount(loan_id))
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple, Type

from .core import (
    LendingConfig, PendingTransaction, ExecuteResult, Move, TransactionOrigin, OriginType,
    SYSTEM_WALLET, ESCROW_WALLET,
    LedgerError, TransferError, WalletNotRegistered, InvalidAmount,
    EscrowTransferFailed, FundingTransferFailed, RepaymentTransferFailed,
    as_decimal, check_precision, cash,
)
from .ledger import Ledger
from .pricing_source import PricingSource, quote_initial_price
from .units.loan_request import (
    LoanRequest, validate_loan_terms, load_loan_request,
    compute_loan_request, compute_funding, compute_cancellation,
)
from .units.loan import (
    Loan, LoanStatus, PriceInput, load_loan, classify_loan,
    compute_repay_amount, compute_repayment, compute_liquidation,
)


@dataclass(frozen=True, slots=True)
class LoanPosition:
    """A loan as seen by one of its parties at a given time."""
    loan: Loan
    status: LoanStatus
    repay_amount: Decimal


@dataclass(frozen=True, slots=True)
class BorrowerPositions:
    """Open loans and pending requests of one borrower."""
    loans: Tuple[LoanPosition, ...]
    requests: Tuple[LoanRequest, ...]


ActiveLoans = Tuple[List[int], List[Loan], List[int], List[LoanRequest]]


class LoanBook:
    """
    Collateralized P2P loan ledger.

    Args:
        name: Ledger identifier
        initial_time: Starting logical time (default: 1970-01-01)
        config: Lending terms and currency (default: LendingConfig())
        verbose: Print one line per lending operation and every ledger transaction
        test_mode: Allow Ledger.set_balance() on the underlying ledger

    Thread Safety:
        All public methods may be called from multiple threads.
    """

    def __init__(
        self,
        name: str = "loan_book",
        initial_time: Optional[datetime] = None,
        config: Optional[LendingConfig] = None,
        verbose: bool = True,
        test_mode: bool = False,
    ):
        self.config = config or LendingConfig()
        self.verbose = verbose
        self.ledger = Ledger(name, initial_time, verbose=verbose, test_mode=test_mode)
        self.ledger.register_unit(
            cash(self.config.currency, self.config.currency_name, self.config.decimal_places)
        )
        self.ledger.register_wallet(ESCROW_WALLET)
        self._lock = self.ledger.lock
        self._next_request_id = 1
        self._next_loan_id = 1
        self._deposit_sequence = 0

    @property
    def currency(self) -> str:
        return self.config.currency

    @property
    def current_time(self) -> datetime:
        return self.ledger.current_time

    def advance_time(self, new_time: datetime) -> None:
        """Advance the logical clock (forward only)."""
        self.ledger.advance_time(new_time)

    def _log(self, message: str) -> None:
        if self.verbose:
            print(message)

    def _execute(self, pending: PendingTransaction, error: Type[TransferError], context: str) -> None:
        """Submit a transaction; any outcome other than APPLIED raises."""
        result = self.ledger.execute(pending)
        if result == ExecuteResult.REJECTED:
            raise error(f"{context}: {self.ledger.last_rejection}")
        if result == ExecuteResult.ALREADY_APPLIED:
            raise LedgerError(f"{context}: transaction {pending.intent_id} was already applied")

    # ========================================================================
    # ACCOUNTS
    # ========================================================================

    def open_account(self, account: str) -> str:
        """
        Register an account wallet.

        Raises:
            ValueError: If the account is empty or already exists.
        """
        return self.ledger.register_wallet(account)

    def deposit(self, account: str, amount, now: Optional[datetime] = None) -> Decimal:
        """
        Credit an account with new money issued from the system wallet.

        Raises:
            WalletNotRegistered: If the account is not open.
            InvalidAmount: If the amount is not positive or finer than the currency.
            TransferError: If the ledger rejects the deposit (e.g. into escrow).
        """
        amount = as_decimal(amount, "amount")
        if amount <= Decimal("0"):
            raise InvalidAmount(f"deposit amount must be positive, got {amount}")
        check_precision(amount, "amount", self.config.decimal_places)
        with self.ledger.advanced_to(now):
            if not self.ledger.is_registered(account):
                raise WalletNotRegistered(f"Wallet {account} not registered")
            self._deposit_sequence += 1
            move = Move(amount, self.currency, SYSTEM_WALLET, account, f"deposit_{self._deposit_sequence}")
            origin = TransactionOrigin(OriginType.SYSTEM, SYSTEM_WALLET, event_type="DEPOSIT")
            pending = PendingTransaction(
                moves=(move,), state_changes=(), origin=origin, timestamp=self.ledger.current_time,
            )
            self._execute(pending, TransferError, f"Deposit to {account}")
        self._log(f"💰 Deposit: {amount} {self.currency} -> {account}")
        return amount

    def get_balance(self, account: str) -> Decimal:
        return self.ledger.get_balance(account, self.currency)

    def escrow_balance(self) -> Decimal:
        """Collateral currently held in escrow."""
        return self.ledger.get_balance(ESCROW_WALLET, self.currency)

    # ========================================================================
    # LENDING OPERATIONS
    # ========================================================================

    def create_loan_request(
        self,
        borrower: str,
        principal,
        duration_days: int,
        interest_rate,
        collateral,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Open a loan request, locking the collateral in escrow.

        Returns:
            The new request id. Ids are assigned from 1 and a failed creation
            does not consume one.

        Raises:
            InvalidAmount, InvalidDuration, InterestRateOutOfRange,
            InsufficientCollateral, EscrowTransferFailed
        """
        cfg = self.config
        terms = validate_loan_terms(
            principal, duration_days, interest_rate, collateral,
            collateral_ratio=cfg.collateral_ratio,
            min_interest_rate=cfg.min_interest_rate,
            max_interest_rate=cfg.max_interest_rate,
            decimal_places=cfg.decimal_places,
        )
        with self.ledger.advanced_to(now):
            request_id = self._next_request_id
            pending = compute_loan_request(self.ledger, request_id, borrower, terms, self.currency)
            self._execute(
                pending, EscrowTransferFailed,
                f"Loan request {request_id}: cannot lock {terms.collateral} {self.currency} from {borrower}",
            )
            self._next_request_id += 1
        self._log(
            f"📄 Request #{request_id}: {borrower} asks {terms.principal} {self.currency} "
            f"for {terms.duration_days}d at {terms.interest_rate}%, collateral {terms.collateral}"
        )
        return request_id

    def quote_price(self, source: PricingSource, asset: str) -> int:
        """
        Price of an asset at the current time, encoded with
        config.price_decimals for use as the initial_price of a funding.

        Raises:
            LookupError: If the source has no price for the asset yet.
        """
        return quote_initial_price(source, asset, self.current_time, self.config.price_decimals)

    def fund_loan_request(
        self,
        request_id: int,
        lender: str,
        initial_price: PriceInput,
        payment=None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Fund an active request. The principal goes to the borrower and a loan
        starts now, ending duration_days later.

        Returns:
            The new loan id.

        Raises:
            RequestNotFound, RequestAlreadyFunded, SelfFundingNotAllowed,
            FundingTransferFailed
        """
        with self.ledger.advanced_to(now):
            loan_id = self._next_loan_id
            pending = compute_funding(self.ledger, request_id, lender, initial_price, loan_id, payment)
            self._execute(
                pending, FundingTransferFailed,
                f"Loan request {request_id}: funding by {lender} rejected",
            )
            self._next_loan_id += 1
            loan = load_loan(self.ledger, loan_id)
        self._log(
            f"🤝 Loan #{loan_id}: {lender} funds request #{request_id} with {loan.principal} "
            f"{self.currency}, due {loan.end_time}"
        )
        return loan_id

    def get_repay_amount(self, loan_id: int) -> Decimal:
        """
        Principal plus interest for the full term.

        Raises:
            LoanNotFound
        """
        return compute_repay_amount(
            self.ledger, loan_id, self.config.days_per_year, self.config.decimal_places
        )

    def repay_loan(self, loan_id: int, borrower: str, payment, now: Optional[datetime] = None) -> Decimal:
        """
        Repay a loan and recover the collateral.

        Returns:
            The amount transferred to the lender.

        Raises:
            LoanNotFound, AlreadyRepaid, AlreadyLiquidated, NotBorrower,
            InsufficientPayment, OverpaymentRejected, RepaymentTransferFailed
        """
        cfg = self.config
        with self.ledger.advanced_to(now):
            pending = compute_repayment(
                self.ledger, loan_id, borrower, payment,
                cfg.overpayment_policy, cfg.days_per_year, cfg.decimal_places,
            )
            self._execute(pending, RepaymentTransferFailed, f"Loan {loan_id}: repayment by {borrower} rejected")
            loan = load_loan(self.ledger, loan_id)
        self._log(
            f"✅ Loan #{loan_id} repaid: {loan.amount_repaid} {self.currency} to {loan.lender}, "
            f"{loan.collateral} collateral back to {borrower}"
        )
        return loan.amount_repaid

    def liquidate_expired_loan(self, loan_id: int, caller: str, now: Optional[datetime] = None) -> Decimal:
        """
        Forfeit the collateral of an expired loan to its lender.

        Returns:
            The collateral transferred.

        Raises:
            LoanNotFound, AlreadyRepaid, AlreadyLiquidated, NotYetExpired
        """
        with self.ledger.advanced_to(now):
            pending = compute_liquidation(self.ledger, loan_id, caller)
            self._execute(pending, EscrowTransferFailed, f"Loan {loan_id}: liquidation by {caller} rejected")
            loan = load_loan(self.ledger, loan_id)
        self._log(
            f"⚠️  Loan #{loan_id} liquidated by {caller}: {loan.collateral} {self.currency} to {loan.lender}"
        )
        return loan.collateral

    def cancel_loan_request(self, request_id: int, borrower: str, now: Optional[datetime] = None) -> None:
        """
        Withdraw an unfunded request and release its collateral.

        Raises:
            RequestNotFound, RequestAlreadyFunded, NotBorrower
        """
        with self.ledger.advanced_to(now):
            pending = compute_cancellation(self.ledger, request_id, borrower)
            self._execute(pending, EscrowTransferFailed, f"Loan request {request_id}: cancellation rejected")
        self._log(f"🚫 Request #{request_id} cancelled by {borrower}")

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_loan_request(self, request_id: int) -> LoanRequest:
        return load_loan_request(self.ledger, request_id)

    def get_loan(self, loan_id: int) -> Loan:
        return load_loan(self.ledger, loan_id)

    def _all_requests(self) -> List[LoanRequest]:
        return [load_loan_request(self.ledger, i) for i in range(1, self._next_request_id)]

    def _all_loans(self) -> List[Loan]:
        return [load_loan(self.ledger, i) for i in range(1, self._next_loan_id)]

    def get_all_active_loans(self) -> ActiveLoans:
        """
        Open loans and active requests, ids ascending.

        Returns:
            (loan_ids, loans, request_ids, requests)
        """
        with self._lock:
            loans = [loan for loan in self._all_loans() if not loan.is_closed]
            requests = [req for req in self._all_requests() if req.active]
        return (
            [loan.loan_id for loan in loans],
            loans,
            [req.request_id for req in requests],
            requests,
        )

    def _position(self, loan: Loan, now: datetime) -> LoanPosition:
        due = compute_repay_amount(
            self.ledger, loan.loan_id, self.config.days_per_year, self.config.decimal_places
        )
        return LoanPosition(loan, classify_loan(loan, now), due)

    def get_borrower_positions(self, borrower: str, now: Optional[datetime] = None) -> BorrowerPositions:
        """Open loans and pending requests of a borrower, classified at `now`."""
        with self._lock:
            now = now or self.ledger.current_time
            _, loans, _, requests = self.get_all_active_loans()
            return BorrowerPositions(
                loans=tuple(self._position(loan, now) for loan in loans if loan.borrower == borrower),
                requests=tuple(req for req in requests if req.borrower == borrower),
            )

    def get_lender_positions(self, lender: str, now: Optional[datetime] = None) -> Tuple[LoanPosition, ...]:
        """Every loan a lender funded, open or closed, classified at `now`."""
        with self._lock:
            now = now or self.ledger.current_time
            return tuple(
                self._position(loan, now) for loan in self._all_loans() if loan.lender == lender
            )

    def get_fundable_requests(self, lender: str) -> List[LoanRequest]:
        """Active requests the given account may fund (not its own)."""
        _, _, _, requests = self.get_all_active_loans()
        return [req for req in requests if req.borrower != lender]
