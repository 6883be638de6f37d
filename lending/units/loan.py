"""
loan.py - Funded Loan Records

A Loan is created exactly once, when a lender funds a LoanRequest. Its terms
are copied verbatim from the request and never recomputed; only the closing
fields change, once, by repayment or by liquidation.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASS: Loan - typed snapshot of the record state
2. PURE CALCULATION FUNCTIONS (calculate_*, classify_loan): explicit inputs only
3. ADAPTER: load_loan() - the only reader of LedgerView for loan state
4. TRANSACTION BUILDERS (compute_*): load + validate + PendingTransaction

Key Formulas:
    end_time = start_time + duration_days
    due = principal + principal * interest_rate / 100 * duration_days / days_per_year
          (truncated to the currency's decimal places)

State machine:
    Open -> Repaid       (repay, by the borrower, any time before liquidation)
    Open -> Liquidated   (liquidate, by anyone, strictly after end_time)
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, Any, Optional, Union

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType, OverpaymentPolicy,
    UNIT_TYPE_LOAN, ESCROW_WALLET, DAYS_PER_YEAR, DEFAULT_CURRENCY_DECIMALS, DECIMAL_ROUNDING,
    UnitNotRegistered, LoanNotFound, AlreadyRepaid, AlreadyLiquidated,
    NotBorrower, NotYetExpired, InsufficientPayment, OverpaymentRejected,
    RepaymentTransferFailed, InvalidAmount,
    as_decimal, check_precision, build_transaction, loan_symbol,
    _freeze_state,
)


# Price supplied by the lender, stored as given and never interpreted
PriceInput = Union[int, float, Decimal]

EVENT_REPAY = "REPAY"
EVENT_LIQUIDATE = "LIQUIDATE"


class LoanStatus(str, Enum):
    """Derived status of a loan at a given time."""
    ACTIVE = "Active"           # Open, not past end_time
    EXPIRED = "Expired"         # Open, past end_time, liquidatable
    REPAID = "Repaid"
    LIQUIDATED = "Liquidated"


@dataclass(frozen=True, slots=True)
class Loan:
    """
    Immutable snapshot of a loan record.

    principal, collateral, interest_rate and duration_days are the request's
    terms at funding time. initial_price is kept for audit only.
    """
    loan_id: int
    request_id: int
    borrower: str
    lender: str
    principal: Decimal
    collateral: Decimal
    interest_rate: Decimal        # Annual simple rate in percent (5 = 5%)
    duration_days: int
    start_time: datetime
    end_time: datetime
    initial_price: PriceInput
    currency: str
    repaid: bool = False
    liquidated: bool = False
    closed_at: Optional[datetime] = None
    amount_repaid: Decimal = Decimal("0")

    @property
    def symbol(self) -> str:
        return loan_symbol(self.loan_id)

    @property
    def is_closed(self) -> bool:
        return self.repaid or self.liquidated


# ============================================================================
# UNIT FACTORY
# ============================================================================

def create_loan_unit(
    loan_id: int,
    request_id: int,
    borrower: str,
    lender: str,
    principal: Decimal,
    collateral: Decimal,
    interest_rate: Decimal,
    duration_days: int,
    start_time: datetime,
    initial_price: PriceInput,
    currency: str,
) -> Unit:
    """
    Create the ledger unit holding a loan record.

    The unit carries no balances (min and max balance are both zero); it exists
    for its state, which names the parties and guards the escrowed collateral.

    Raises:
        ValueError: If borrower and lender are the same or empty, or the
                    duration is not a positive integer.
        InvalidAmount: If principal or collateral is not positive.
    """
    if not borrower or not borrower.strip():
        raise ValueError("borrower cannot be empty")
    if not lender or not lender.strip():
        raise ValueError("lender cannot be empty")
    if borrower == lender:
        raise ValueError("borrower and lender must be different")
    if isinstance(duration_days, bool) or not isinstance(duration_days, int) or duration_days <= 0:
        raise ValueError(f"duration_days must be a positive integer, got {duration_days!r}")
    if principal <= Decimal("0"):
        raise InvalidAmount(f"principal must be positive, got {principal}")
    if collateral <= Decimal("0"):
        raise InvalidAmount(f"collateral must be positive, got {collateral}")
    return Unit(
        symbol=loan_symbol(loan_id),
        name=f"Loan #{loan_id}",
        unit_type=UNIT_TYPE_LOAN,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        decimal_places=0,
        transfer_rule=None,
        _frozen_state=_freeze_state({
            'loan_id': loan_id,
            'request_id': request_id,
            'borrower': borrower,
            'lender': lender,
            'principal': principal,
            'collateral': collateral,
            'interest_rate': interest_rate,
            'duration_days': duration_days,
            'start_time': start_time,
            'end_time': start_time + timedelta(days=duration_days),
            'initial_price': initial_price,
            'currency': currency,
            'repaid': False,
            'liquidated': False,
            'closed_at': None,
            'amount_repaid': Decimal("0"),
        }),
    )


# ============================================================================
# ADAPTERS
# ============================================================================

def load_loan(view: LedgerView, loan_id: int) -> Loan:
    """
    Load a loan record as a frozen dataclass.

    Raises:
        LoanNotFound: If no loan with this id exists.
    """
    symbol = loan_symbol(loan_id)
    try:
        unit = view.get_unit(symbol)
        raw = view.get_unit_state(symbol)
    except UnitNotRegistered:
        raise LoanNotFound(f"Loan {loan_id} does not exist") from None
    if unit.unit_type != UNIT_TYPE_LOAN:
        raise LoanNotFound(f"{symbol} is not a loan record")

    return Loan(
        loan_id=raw['loan_id'],
        request_id=raw['request_id'],
        borrower=raw['borrower'],
        lender=raw['lender'],
        principal=raw['principal'],
        collateral=raw['collateral'],
        interest_rate=raw['interest_rate'],
        duration_days=raw['duration_days'],
        start_time=raw['start_time'],
        end_time=raw['end_time'],
        initial_price=raw['initial_price'],
        currency=raw['currency'],
        repaid=raw.get('repaid', False),
        liquidated=raw.get('liquidated', False),
        closed_at=raw.get('closed_at'),
        amount_repaid=raw.get('amount_repaid', Decimal("0")),
    )


def to_state_dict(loan: Loan) -> Dict[str, Any]:
    """Inverse of load_loan(): the state dict stored on the ledger unit."""
    return {
        'loan_id': loan.loan_id,
        'request_id': loan.request_id,
        'borrower': loan.borrower,
        'lender': loan.lender,
        'principal': loan.principal,
        'collateral': loan.collateral,
        'interest_rate': loan.interest_rate,
        'duration_days': loan.duration_days,
        'start_time': loan.start_time,
        'end_time': loan.end_time,
        'initial_price': loan.initial_price,
        'currency': loan.currency,
        'repaid': loan.repaid,
        'liquidated': loan.liquidated,
        'closed_at': loan.closed_at,
        'amount_repaid': loan.amount_repaid,
    }


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_repay_amount(
    principal: Decimal,
    interest_rate: Decimal,
    duration_days: int,
    days_per_year: int = DAYS_PER_YEAR,
    decimal_places: int = DEFAULT_CURRENCY_DECIMALS,
) -> Decimal:
    """
    Principal plus simple interest over the full term.

    Independent of elapsed time: repaying early or late owes the same amount.
    The interest is truncated to decimal_places, as integer wei arithmetic does.

    Example:
        calculate_repay_amount(Decimal("10"), Decimal("5"), 30)
        # Decimal("10.041095890410958904")
    """
    interest = principal * interest_rate * Decimal(duration_days) / (Decimal("100") * Decimal(days_per_year))
    quantizer = Decimal(10) ** -decimal_places
    return (principal + interest).quantize(quantizer, rounding=DECIMAL_ROUNDING['INTEREST'])


def is_expired(loan: Loan, now: datetime) -> bool:
    """A loan is liquidatable strictly after its end_time."""
    return now > loan.end_time


def classify_loan(loan: Loan, now: datetime) -> LoanStatus:
    """
    Status of a loan as shown to its parties at time `now`.

    Classification never changes which operations are legal: an expired loan
    can still be repaid until it is liquidated.
    """
    if loan.repaid:
        return LoanStatus.REPAID
    if loan.liquidated:
        return LoanStatus.LIQUIDATED
    if is_expired(loan, now):
        return LoanStatus.EXPIRED
    return LoanStatus.ACTIVE


def _check_open(loan: Loan) -> None:
    if loan.liquidated:
        raise AlreadyLiquidated(f"Loan {loan.loan_id} was liquidated at {loan.closed_at}")
    if loan.repaid:
        raise AlreadyRepaid(f"Loan {loan.loan_id} was repaid at {loan.closed_at}")


# ============================================================================
# TRANSACTION BUILDERS
# ============================================================================

def compute_repay_amount(
    view: LedgerView,
    loan_id: int,
    days_per_year: int = DAYS_PER_YEAR,
    decimal_places: int = DEFAULT_CURRENCY_DECIMALS,
) -> Decimal:
    """Amount due on a loan, from its original terms."""
    loan = load_loan(view, loan_id)
    return calculate_repay_amount(
        loan.principal, loan.interest_rate, loan.duration_days, days_per_year, decimal_places
    )


def compute_repayment(
    view: LedgerView,
    loan_id: int,
    borrower: str,
    payment: Decimal,
    overpayment_policy: OverpaymentPolicy = OverpaymentPolicy.REFUND,
    days_per_year: int = DAYS_PER_YEAR,
    decimal_places: int = DEFAULT_CURRENCY_DECIMALS,
) -> PendingTransaction:
    """
    Repay a loan in full and release the collateral to the borrower.

    The amount transferred to the lender depends on the overpayment policy:
    REFUND moves exactly the amount due, RETAIN moves the whole payment,
    REJECT refuses any payment above the amount due.

    Returns:
        PendingTransaction with:
        - moves: borrower -> lender (amount), escrow -> borrower (collateral)
        - state_changes: repaid, closed_at, amount_repaid

    Raises:
        InvalidAmount, LoanNotFound, AlreadyRepaid, AlreadyLiquidated, NotBorrower,
        InsufficientPayment, OverpaymentRejected, RepaymentTransferFailed
    """
    payment = as_decimal(payment, "payment")
    check_precision(payment, "payment", decimal_places)
    loan = load_loan(view, loan_id)
    _check_open(loan)
    if borrower != loan.borrower:
        raise NotBorrower(f"{borrower} is not the borrower of loan {loan_id}")

    due = calculate_repay_amount(
        loan.principal, loan.interest_rate, loan.duration_days, days_per_year, decimal_places
    )
    if payment < due:
        raise InsufficientPayment(f"Loan {loan_id}: payment {payment} is below amount due {due}")
    if payment > due and overpayment_policy == OverpaymentPolicy.REJECT:
        raise OverpaymentRejected(f"Loan {loan_id}: payment {payment} exceeds amount due {due}")

    available = view.get_balance(borrower, loan.currency)
    if available < payment:
        raise RepaymentTransferFailed(
            f"Loan {loan_id}: {borrower} holds {available} {loan.currency}, payment is {payment}"
        )

    amount = payment if overpayment_policy == OverpaymentPolicy.RETAIN else due
    symbol = loan_symbol(loan_id)
    moves = [
        Move(amount, loan.currency, borrower, loan.lender, symbol),
        Move(loan.collateral, loan.currency, ESCROW_WALLET, borrower, symbol),
    ]

    old_state = to_state_dict(loan)
    new_state = {
        **old_state,
        'repaid': True,
        'closed_at': view.current_time,
        'amount_repaid': amount,
    }
    origin = TransactionOrigin(OriginType.USER_ACTION, borrower, unit_symbol=symbol, event_type=EVENT_REPAY)
    return build_transaction(view, moves, [UnitStateChange(symbol, old_state, new_state)], origin)


def compute_liquidation(view: LedgerView, loan_id: int, caller: str) -> PendingTransaction:
    """
    Forfeit an expired loan's collateral to the lender.

    Fixed forfeiture: the whole collateral goes to the lender regardless of
    the asset price; the lender receives no repayment. Any caller may trigger
    it once the loan is strictly past end_time.

    Raises:
        LoanNotFound, AlreadyRepaid, AlreadyLiquidated, NotYetExpired
    """
    loan = load_loan(view, loan_id)
    _check_open(loan)
    now = view.current_time
    if not is_expired(loan, now):
        raise NotYetExpired(f"Loan {loan_id} ends at {loan.end_time}, now is {now}")

    symbol = loan_symbol(loan_id)
    moves = [Move(loan.collateral, loan.currency, ESCROW_WALLET, loan.lender, symbol)]

    old_state = to_state_dict(loan)
    new_state = {**old_state, 'liquidated': True, 'closed_at': now}
    origin = TransactionOrigin(OriginType.USER_ACTION, caller, unit_symbol=symbol, event_type=EVENT_LIQUIDATE)
    return build_transaction(view, moves, [UnitStateChange(symbol, old_state, new_state)], origin)
