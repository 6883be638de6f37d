"""
loan_request.py - Collateralized Loan Requests

A borrower opens a LoanRequest by locking collateral in escrow. The request
stays active until a lender funds it (creating a Loan) or the borrower
cancels it; either transition is terminal.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES:
   - LoanTerms: validated principal, collateral, duration and rate
   - LoanRequest: typed snapshot of the record state

2. PURE VALIDATION (validate_loan_terms): explicit inputs, typed errors

3. ADAPTER (load_loan_request): the only reader of LedgerView for requests

4. TRANSACTION BUILDERS (compute_*):
   - compute_loan_request: register record + lock collateral
   - compute_funding: principal lender -> borrower + create Loan
   - compute_cancellation: release collateral back to the borrower

Invariant checked at creation:
    collateral >= collateral_ratio * principal     (ratio 2 by default)
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, Optional

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    UNIT_TYPE_LOAN_REQUEST, ESCROW_WALLET,
    COLLATERAL_RATIO, MIN_INTEREST_RATE, MAX_INTEREST_RATE, DEFAULT_CURRENCY,
    DEFAULT_CURRENCY_DECIMALS,
    UnitNotRegistered, RequestNotFound, RequestAlreadyFunded, SelfFundingNotAllowed,
    NotBorrower, InvalidAmount, InvalidDuration, InterestRateOutOfRange,
    InsufficientCollateral, FundingTransferFailed,
    as_decimal, check_precision, build_transaction, request_symbol, loan_symbol,
    _freeze_state,
)
from .loan import PriceInput, create_loan_unit


EVENT_CREATE_REQUEST = "CREATE_REQUEST"
EVENT_FUND = "FUND"
EVENT_CANCEL_REQUEST = "CANCEL_REQUEST"


@dataclass(frozen=True, slots=True)
class LoanTerms:
    """Validated terms of a loan request."""
    principal: Decimal
    collateral: Decimal
    duration_days: int
    interest_rate: Decimal


@dataclass(frozen=True, slots=True)
class LoanRequest:
    """
    Immutable snapshot of a loan request record.

    active is True until the request is funded or cancelled. cancelled tells
    the two terminal states apart; funded_loan_id links to the resulting loan.
    """
    request_id: int
    borrower: str
    principal: Decimal
    collateral: Decimal
    duration_days: int
    interest_rate: Decimal
    currency: str
    created_at: datetime
    active: bool = True
    cancelled: bool = False
    funded_loan_id: Optional[int] = None

    @property
    def symbol(self) -> str:
        return request_symbol(self.request_id)


# ============================================================================
# VALIDATION
# ============================================================================

def validate_loan_terms(
    principal,
    duration_days,
    interest_rate,
    collateral,
    collateral_ratio: Decimal = COLLATERAL_RATIO,
    min_interest_rate: Decimal = MIN_INTEREST_RATE,
    max_interest_rate: Decimal = MAX_INTEREST_RATE,
    decimal_places: int = DEFAULT_CURRENCY_DECIMALS,
) -> LoanTerms:
    """
    Validate and normalize the terms of a new request.

    Checks run in order: principal, duration, rate, collateral. Amounts must
    be representable in the currency's precision.

    Raises:
        InvalidAmount: principal <= 0, non-numeric or too precise amounts
        InvalidDuration: duration_days is not a positive integer
        InterestRateOutOfRange: rate outside [min_interest_rate, max_interest_rate]
        InsufficientCollateral: collateral < collateral_ratio * principal

    Example:
        terms = validate_loan_terms(Decimal("10"), 30, Decimal("5"), Decimal("20"))
    """
    principal = as_decimal(principal, "principal")
    if principal <= Decimal("0"):
        raise InvalidAmount(f"principal must be positive, got {principal}")
    check_precision(principal, "principal", decimal_places)

    if isinstance(duration_days, bool) or not isinstance(duration_days, int):
        raise InvalidDuration(f"duration_days must be an integer, got {duration_days!r}")
    if duration_days <= 0:
        raise InvalidDuration(f"duration_days must be positive, got {duration_days}")

    interest_rate = as_decimal(interest_rate, "interest_rate", InterestRateOutOfRange)
    if interest_rate < min_interest_rate or interest_rate > max_interest_rate:
        raise InterestRateOutOfRange(
            f"interest_rate must be in [{min_interest_rate}, {max_interest_rate}], got {interest_rate}"
        )

    collateral = as_decimal(collateral, "collateral")
    check_precision(collateral, "collateral", decimal_places)
    required = collateral_ratio * principal
    if collateral < required:
        raise InsufficientCollateral(
            f"collateral {collateral} is below {collateral_ratio} x principal ({required})"
        )

    return LoanTerms(principal, collateral, duration_days, interest_rate)


# ============================================================================
# UNIT FACTORY
# ============================================================================

def create_loan_request_unit(
    request_id: int,
    borrower: str,
    terms: LoanTerms,
    currency: str,
    created_at: datetime,
) -> Unit:
    """
    Create the ledger unit holding a loan request record.

    Raises:
        ValueError: If borrower or currency is empty.
    """
    if not borrower or not borrower.strip():
        raise ValueError("borrower cannot be empty")
    if not currency or not currency.strip():
        raise ValueError("currency cannot be empty")

    return Unit(
        symbol=request_symbol(request_id),
        name=f"Loan request #{request_id}",
        unit_type=UNIT_TYPE_LOAN_REQUEST,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        decimal_places=0,
        transfer_rule=None,
        _frozen_state=_freeze_state({
            'request_id': request_id,
            'borrower': borrower,
            'principal': terms.principal,
            'collateral': terms.collateral,
            'duration_days': terms.duration_days,
            'interest_rate': terms.interest_rate,
            'currency': currency,
            'created_at': created_at,
            'active': True,
            'cancelled': False,
            'funded_loan_id': None,
        }),
    )


# ============================================================================
# ADAPTERS
# ============================================================================

def load_loan_request(view: LedgerView, request_id: int) -> LoanRequest:
    """
    Load a loan request as a frozen dataclass.

    Raises:
        RequestNotFound: If no request with this id exists.
    """
    symbol = request_symbol(request_id)
    try:
        unit = view.get_unit(symbol)
        raw = view.get_unit_state(symbol)
    except UnitNotRegistered:
        raise RequestNotFound(f"Loan request {request_id} does not exist") from None
    if unit.unit_type != UNIT_TYPE_LOAN_REQUEST:
        raise RequestNotFound(f"{symbol} is not a loan request record")

    return LoanRequest(
        request_id=raw['request_id'],
        borrower=raw['borrower'],
        principal=raw['principal'],
        collateral=raw['collateral'],
        duration_days=raw['duration_days'],
        interest_rate=raw['interest_rate'],
        currency=raw['currency'],
        created_at=raw['created_at'],
        active=raw.get('active', False),
        cancelled=raw.get('cancelled', False),
        funded_loan_id=raw.get('funded_loan_id'),
    )


def to_state_dict(request: LoanRequest) -> Dict[str, Any]:
    """Inverse of load_loan_request()."""
    return {
        'request_id': request.request_id,
        'borrower': request.borrower,
        'principal': request.principal,
        'collateral': request.collateral,
        'duration_days': request.duration_days,
        'interest_rate': request.interest_rate,
        'currency': request.currency,
        'created_at': request.created_at,
        'active': request.active,
        'cancelled': request.cancelled,
        'funded_loan_id': request.funded_loan_id,
    }


def _check_active(request: LoanRequest) -> None:
    if request.active:
        return
    if request.cancelled:
        raise RequestAlreadyFunded(f"Loan request {request.request_id} was cancelled")
    raise RequestAlreadyFunded(
        f"Loan request {request.request_id} was already funded as loan {request.funded_loan_id}"
    )


# ============================================================================
# TRANSACTION BUILDERS
# ============================================================================

def compute_loan_request(
    view: LedgerView,
    request_id: int,
    borrower: str,
    terms: LoanTerms,
    currency: str = DEFAULT_CURRENCY,
) -> PendingTransaction:
    """
    Register a new request and lock its collateral in escrow, atomically.

    The ledger rejects the transaction if the borrower cannot cover the
    collateral; the record is then not registered.

    Returns:
        PendingTransaction with:
        - units_to_create: the REQ_<id> record (active)
        - moves: borrower -> escrow (collateral)
    """
    unit = create_loan_request_unit(request_id, borrower, terms, currency, view.current_time)
    moves = [Move(terms.collateral, currency, borrower, ESCROW_WALLET, unit.symbol)]
    origin = TransactionOrigin(
        OriginType.USER_ACTION, borrower, unit_symbol=unit.symbol, event_type=EVENT_CREATE_REQUEST
    )
    return build_transaction(view, moves, origin=origin, units_to_create=(unit,))


def compute_funding(
    view: LedgerView,
    request_id: int,
    lender: str,
    initial_price: PriceInput,
    loan_id: int,
    payment: Optional[Decimal] = None,
) -> PendingTransaction:
    """
    Fund an active request: pay the principal and open a Loan.

    The collateral stays in escrow, now guarded by the loan record. payment
    defaults to the principal and must equal it exactly.

    Returns:
        PendingTransaction with:
        - units_to_create: the LOAN_<id> record
        - moves: lender -> borrower (principal)
        - state_changes: request active=False, funded_loan_id=loan_id

    Raises:
        RequestNotFound, RequestAlreadyFunded, SelfFundingNotAllowed,
        FundingTransferFailed
    """
    request = load_loan_request(view, request_id)
    _check_active(request)
    if lender == request.borrower:
        raise SelfFundingNotAllowed(f"{lender} cannot fund own loan request {request_id}")

    if payment is not None:
        payment = as_decimal(payment, "payment", FundingTransferFailed)
        if payment != request.principal:
            raise FundingTransferFailed(
                f"Loan request {request_id}: payment {payment} does not equal principal {request.principal}"
            )

    loan_unit = create_loan_unit(
        loan_id=loan_id,
        request_id=request_id,
        borrower=request.borrower,
        lender=lender,
        principal=request.principal,
        collateral=request.collateral,
        interest_rate=request.interest_rate,
        duration_days=request.duration_days,
        start_time=view.current_time,
        initial_price=initial_price,
        currency=request.currency,
    )
    moves = [Move(request.principal, request.currency, lender, request.borrower, loan_symbol(loan_id))]

    old_state = to_state_dict(request)
    new_state = {**old_state, 'active': False, 'funded_loan_id': loan_id}
    origin = TransactionOrigin(
        OriginType.USER_ACTION, lender, unit_symbol=request.symbol, event_type=EVENT_FUND
    )
    return build_transaction(
        view, moves, [UnitStateChange(request.symbol, old_state, new_state)], origin,
        units_to_create=(loan_unit,),
    )


def compute_cancellation(view: LedgerView, request_id: int, borrower: str) -> PendingTransaction:
    """
    Withdraw an active request and return its collateral to the borrower.

    Raises:
        RequestNotFound, RequestAlreadyFunded, NotBorrower
    """
    request = load_loan_request(view, request_id)
    _check_active(request)
    if borrower != request.borrower:
        raise NotBorrower(f"{borrower} is not the borrower of loan request {request_id}")

    moves = [Move(request.collateral, request.currency, ESCROW_WALLET, borrower, request.symbol)]
    old_state = to_state_dict(request)
    new_state = {**old_state, 'active': False, 'cancelled': True}
    origin = TransactionOrigin(
        OriginType.USER_ACTION, borrower, unit_symbol=request.symbol, event_type=EVENT_CANCEL_REQUEST
    )
    return build_transaction(view, moves, [UnitStateChange(request.symbol, old_state, new_state)], origin)
