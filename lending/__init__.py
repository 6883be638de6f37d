"""
lending - Collateralized Peer-to-Peer Lending Ledger

A borrower locks collateral and requests a loan, a lender funds it, and the
loan book enforces repayment or liquidation at maturity. Balances, escrow and
lending records live in a double-entry ledger.

Usage:
    from datetime import datetime
    from decimal import Decimal
    from lending import LoanBook

    book = LoanBook("p2p", initial_time=datetime(2025, 1, 1))
    book.open_account("alice")
    book.open_account("bob")
    book.deposit("alice", Decimal("20"))
    book.deposit("bob", Decimal("10"))

    request_id = book.create_loan_request("alice", Decimal("10"), 30, Decimal("5"), Decimal("20"))
    loan_id = book.fund_loan_request(request_id, "bob", initial_price=3150 * 10**18)

    # After 31 days, anyone may liquidate an unpaid loan
    book.liquidate_expired_loan(loan_id, "keeper", now=datetime(2025, 2, 1))
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    OverpaymentPolicy,
    LendingConfig,
    escrow_transfer_rule,
    cash,
    request_symbol,
    loan_symbol,
    SYSTEM_WALLET,
    ESCROW_WALLET,
    UNIT_TYPE_CASH,
    UNIT_TYPE_LOAN_REQUEST,
    UNIT_TYPE_LOAN,
    QUANTITY_EPSILON,
    COLLATERAL_RATIO,
    MIN_INTEREST_RATE,
    MAX_INTEREST_RATE,
    DAYS_PER_YEAR,
    DEFAULT_CURRENCY,
    DEFAULT_PRICE_DECIMALS,
    # Exceptions
    LedgerError,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    LendingError,
    ValidationError,
    InvalidAmount,
    InvalidDuration,
    InterestRateOutOfRange,
    InsufficientCollateral,
    InsufficientPayment,
    OverpaymentRejected,
    RecordNotFound,
    RequestNotFound,
    LoanNotFound,
    StateConflictError,
    RequestAlreadyFunded,
    SelfFundingNotAllowed,
    AlreadyRepaid,
    AlreadyLiquidated,
    NotBorrower,
    NotYetExpired,
    TransferError,
    EscrowTransferFailed,
    FundingTransferFailed,
    RepaymentTransferFailed,
)

# Ledger
from .ledger import Ledger

# Lending records
from .units import (
    LoanTerms,
    LoanRequest,
    Loan,
    LoanStatus,
    validate_loan_terms,
    load_loan_request,
    load_loan,
    calculate_repay_amount,
    classify_loan,
    is_expired,
)

# Loan book
from .loan_book import (
    LoanBook,
    LoanPosition,
    BorrowerPositions,
)

# Price input
from .pricing_source import (
    PricingSource,
    StaticPricingSource,
    TimeSeriesPricingSource,
    to_fixed_point,
    from_fixed_point,
    quote_initial_price,
)

__all__ = [
    # Core types
    'LedgerView',
    'Move',
    'Transaction',
    'PendingTransaction',
    'TransactionOrigin',
    'OriginType',
    'build_transaction',
    'Unit',
    'UnitStateChange',
    'ExecuteResult',
    'OverpaymentPolicy',
    'LendingConfig',
    'escrow_transfer_rule',
    'cash',
    'request_symbol',
    'loan_symbol',
    'SYSTEM_WALLET',
    'ESCROW_WALLET',
    'UNIT_TYPE_CASH',
    'UNIT_TYPE_LOAN_REQUEST',
    'UNIT_TYPE_LOAN',
    'QUANTITY_EPSILON',
    'COLLATERAL_RATIO',
    'MIN_INTEREST_RATE',
    'MAX_INTEREST_RATE',
    'DAYS_PER_YEAR',
    'DEFAULT_CURRENCY',
    'DEFAULT_PRICE_DECIMALS',
    # Exceptions
    'LedgerError',
    'TransferRuleViolation',
    'UnitNotRegistered',
    'WalletNotRegistered',
    'LendingError',
    'ValidationError',
    'InvalidAmount',
    'InvalidDuration',
    'InterestRateOutOfRange',
    'InsufficientCollateral',
    'InsufficientPayment',
    'OverpaymentRejected',
    'RecordNotFound',
    'RequestNotFound',
    'LoanNotFound',
    'StateConflictError',
    'RequestAlreadyFunded',
    'SelfFundingNotAllowed',
    'AlreadyRepaid',
    'AlreadyLiquidated',
    'NotBorrower',
    'NotYetExpired',
    'TransferError',
    'EscrowTransferFailed',
    'FundingTransferFailed',
    'RepaymentTransferFailed',
    # Ledger
    'Ledger',
    # Lending records
    'LoanTerms',
    'LoanRequest',
    'Loan',
    'LoanStatus',
    'validate_loan_terms',
    'load_loan_request',
    'load_loan',
    'calculate_repay_amount',
    'classify_loan',
    'is_expired',
    # Loan book
    'LoanBook',
    'LoanPosition',
    'BorrowerPositions',
    # Price input
    'PricingSource',
    'StaticPricingSource',
    'TimeSeriesPricingSource',
    'to_fixed_point',
    'from_fixed_point',
    'quote_initial_price',
]

__version__ = '1.0.0'
