"""
Units module - lending records stored as ledger units.

- Loan requests: collateral locked in escrow until funded or cancelled
- Loans: funded requests, closed by repayment or liquidation

All record factories and related functions are re-exported here for convenience.
"""

# Loan requests
from .loan_request import (
    LoanTerms,
    LoanRequest,
    validate_loan_terms,
    create_loan_request_unit,
    load_loan_request,
    compute_loan_request,
    compute_funding,
    compute_cancellation,
)

# Loans
from .loan import (
    Loan,
    LoanStatus,
    create_loan_unit,
    load_loan,
    calculate_repay_amount,
    is_expired,
    classify_loan,
    compute_repay_amount,
    compute_repayment,
    compute_liquidation,
)

__all__ = [
    'LoanTerms',
    'LoanRequest',
    'validate_loan_terms',
    'create_loan_request_unit',
    'load_loan_request',
    'compute_loan_request',
    'compute_funding',
    'compute_cancellation',
    'Loan',
    'LoanStatus',
    'create_loan_unit',
    'load_loan',
    'calculate_repay_amount',
    'is_expired',
    'classify_loan',
    'compute_repay_amount',
    'compute_repayment',
    'compute_liquidation',
]
