#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Collateralized Lending Step by Step

This is a pedagogical demonstration of the P2P loan ledger. Each step builds
on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Requests     - Accounts, collateral locked in escrow, validation
  4-6:  Loans        - Funding at a quoted price, repay amount, repayment
  7-8:  Endings      - Default and liquidation, cancellation
  9-10: Guarantees   - Conservation proof, racing lenders

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys
import threading

from lending import (
    LoanBook, LendingConfig, LoanStatus, ESCROW_WALLET, SYSTEM_WALLET,
    TimeSeriesPricingSource, from_fixed_point,
    LendingError, ValidationError, StateConflictError,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    # Initial funding
    alice_initial: Decimal = Decimal("100")
    bob_initial: Decimal = Decimal("100")
    carol_initial: Decimal = Decimal("100")

    # First loan
    principal: Decimal = Decimal("10")
    collateral: Decimal = Decimal("20")
    duration_days: int = 30
    interest_rate: Decimal = Decimal("5")


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def show_balances(book: LoanBook):
    for account in ("alice", "bob", "carol"):
        print(f"  {account:8s} {book.get_balance(account)}")
    print(f"  {ESCROW_WALLET:8s} {book.escrow_balance()}")


# ============================================================================
# PHASE 1: REQUESTS (Steps 1-3)
# ============================================================================

def step_01_open_book() -> LoanBook:
    """Create the loan book and fund three accounts."""
    step_header(1, "The Loan Book",
        "A loan book is a ledger with one currency and an escrow wallet.")

    print(">>> book = LoanBook('tutorial', initial_time=datetime(2025, 1, 1, 9, 0))")
    book = LoanBook("tutorial", initial_time=CONFIG.start_time, verbose=True)

    section_header("Deposits")
    for account, amount in (
        ("alice", CONFIG.alice_initial),
        ("bob", CONFIG.bob_initial),
        ("carol", CONFIG.carol_initial),
    ):
        book.open_account(account)
        book.deposit(account, amount)

    section_header("Key Insight")
    print(f"""
    Deposits issue money from the {SYSTEM_WALLET!r} wallet. Every lending
    operation afterwards only moves money between accounts and escrow.
    """)
    show_balances(book)
    return book


def step_02_create_request(book: LoanBook) -> int:
    """Alice asks for a loan and locks her collateral."""
    step_header(2, "A Loan Request",
        "Creating a request locks the collateral in escrow in the same transaction.")

    print(f">>> book.create_loan_request('alice', {CONFIG.principal}, {CONFIG.duration_days}, "
          f"{CONFIG.interest_rate}, {CONFIG.collateral})")
    request_id = book.create_loan_request(
        "alice", CONFIG.principal, CONFIG.duration_days, CONFIG.interest_rate, CONFIG.collateral,
    )

    section_header("Balances")
    show_balances(book)
    print(f"\nThe request is itself a record: {book.get_loan_request(request_id)}")
    return request_id


def step_03_rejected_requests(book: LoanBook):
    """Terms the book refuses."""
    step_header(3, "Validation",
        "Bad terms fail before anything is touched.")

    attempts = [
        ("rate above 7%", (Decimal("10"), 30, Decimal("7.5"), Decimal("20"))),
        ("collateral below 2x", (Decimal("10"), 30, Decimal("5"), Decimal("19"))),
        ("zero duration", (Decimal("10"), 0, Decimal("5"), Decimal("20"))),
        ("more collateral than balance", (Decimal("100"), 30, Decimal("5"), Decimal("200"))),
    ]
    for label, args in attempts:
        try:
            book.create_loan_request("alice", *args)
        except ValidationError as exc:
            print(f"  {label:30s} -> {type(exc).__name__}: {exc}")
        except LendingError as exc:
            print(f"  {label:30s} -> {type(exc).__name__}")

    section_header("Key Insight")
    print("""
    Validation errors are ValueErrors. A ledger rejection (here: not enough
    balance for the collateral) rolls back the whole transaction, including
    the request record, and the request id is not consumed.
    """)
    show_balances(book)


# ============================================================================
# PHASE 2: LOANS (Steps 4-6)
# ============================================================================

def step_04_fund(book: LoanBook, request_id: int) -> int:
    """Bob funds the request at the current ETH price."""
    step_header(4, "Funding",
        "The lender pays the principal to the borrower; the loan clock starts.")

    feed = TimeSeriesPricingSource({
        'ETH': [
            (CONFIG.start_time, Decimal("3120.40")),
            (CONFIG.start_time + timedelta(hours=2), Decimal("3150.25")),
        ],
    })
    book.advance_time(CONFIG.start_time + timedelta(hours=3))
    price = book.quote_price(feed, 'ETH')
    print(f">>> price = book.quote_price(feed, 'ETH')  # {price}")

    loan_id = book.fund_loan_request(request_id, "bob", price)

    loan = book.get_loan(loan_id)
    section_header("The Loan")
    print(f"  start:         {loan.start_time}")
    print(f"  end:           {loan.end_time}")
    print(f"  initial price: {from_fixed_point(loan.initial_price)} USD/ETH")
    show_balances(book)
    return loan_id


def step_05_positions(book: LoanBook, loan_id: int):
    """What alice owes."""
    step_header(5, "Repay Amount",
        "Simple interest for the full term, independent of when repayment happens.")

    due = book.get_repay_amount(loan_id)
    print(f"  10 + 10 x 5% x 30/365 = {due}")

    positions = book.get_borrower_positions("alice")
    for position in positions.loans:
        print(f"  loan #{position.loan.loan_id}: {position.status.value}, owes {position.repay_amount}")


def step_06_repay(book: LoanBook, loan_id: int):
    """Alice repays and recovers her collateral."""
    step_header(6, "Repayment",
        "Repayment pays the lender and releases the collateral atomically.")

    book.advance_time(book.current_time + timedelta(days=20))
    due = book.get_repay_amount(loan_id)
    book.repay_loan(loan_id, "alice", due)

    show_balances(book)
    print(f"\n  bob earned {book.get_balance('bob') - CONFIG.bob_initial} ETH of interest")


# ============================================================================
# PHASE 3: ENDINGS (Steps 7-8)
# ============================================================================

def step_07_liquidation(book: LoanBook):
    """Carol borrows from alice and defaults."""
    step_header(7, "Default and Liquidation",
        "After end_time anyone may liquidate; the collateral goes to the lender.")

    request_id = book.create_loan_request("carol", Decimal("15"), 7, Decimal("3"), Decimal("30"))
    loan_id = book.fund_loan_request(request_id, "alice", 3150 * 10**18)
    end_time = book.get_loan(loan_id).end_time

    try:
        book.liquidate_expired_loan(loan_id, "bob", now=end_time)
    except StateConflictError as exc:
        print(f"  at end_time: {type(exc).__name__}")

    book.advance_time(end_time + timedelta(hours=1))
    print(f"  status now: {book.get_borrower_positions('carol').loans[0].status.value}")
    book.liquidate_expired_loan(loan_id, "bob")

    statuses = [(p.loan.loan_id, p.status) for p in book.get_lender_positions("alice")]
    assert statuses == [(loan_id, LoanStatus.LIQUIDATED)]
    show_balances(book)


def step_08_cancellation(book: LoanBook):
    """Bob withdraws an unfunded request."""
    step_header(8, "Cancellation",
        "An unfunded request can be withdrawn by its borrower.")

    request_id = book.create_loan_request("bob", Decimal("5"), 14, Decimal("2"), Decimal("10"))
    print(f"  fundable for carol: {[r.request_id for r in book.get_fundable_requests('carol')]}")
    book.cancel_loan_request(request_id, "bob")
    print(f"  fundable for carol: {[r.request_id for r in book.get_fundable_requests('carol')]}")
    show_balances(book)


# ============================================================================
# PHASE 4: GUARANTEES (Steps 9-10)
# ============================================================================

def step_09_conservation(book: LoanBook):
    """Prove nothing was created or destroyed."""
    step_header(9, "Conservation",
        "Sum of all balances, system wallet included, is zero.")

    result = book.ledger.verify_double_entry({book.currency: Decimal("0")})
    print(f"  valid:    {result['valid']}")
    print(f"  supplies: {result['supplies']}")
    loan_ids, _, request_ids, _ = book.get_all_active_loans()
    print(f"  open loans: {loan_ids}, active requests: {request_ids}")
    print(f"  escrow:     {book.escrow_balance()}")
    print(f"  transactions logged: {len(book.ledger.transaction_log)}")


def step_10_race():
    """Two lenders fund the same request at once."""
    step_header(10, "Racing Lenders",
        "Concurrent operations on one record: exactly one wins.")

    book = LoanBook("race", CONFIG.start_time, config=LendingConfig(), verbose=False)
    for account in ("alice", "bob", "carol"):
        book.open_account(account)
        book.deposit(account, Decimal("100"))
    request_id = book.create_loan_request("alice", Decimal("10"), 30, Decimal("5"), Decimal("20"))

    barrier = threading.Barrier(2)
    outcomes = {}

    def fund(lender):
        barrier.wait()
        try:
            outcomes[lender] = f"funded loan #{book.fund_loan_request(request_id, lender, 3150 * 10**18)}"
        except StateConflictError as exc:
            outcomes[lender] = type(exc).__name__

    threads = [threading.Thread(target=fund, args=(lender,)) for lender in ("bob", "carol")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    for lender, outcome in sorted(outcomes.items()):
        print(f"  {lender:6s} -> {outcome}")
    print(f"  alice received {book.get_balance('alice') - Decimal('80')} ETH, once")


def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       COLLATERALIZED LENDING - INTERACTIVE TUTORIAL")
    print("=" * 70)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")

    wait_for_enter()

    book = step_01_open_book()
    wait_for_enter()

    request_id = step_02_create_request(book)
    wait_for_enter()

    step_03_rejected_requests(book)
    wait_for_enter()

    loan_id = step_04_fund(book, request_id)
    wait_for_enter()

    step_05_positions(book, loan_id)
    wait_for_enter()

    step_06_repay(book, loan_id)
    wait_for_enter()

    step_07_liquidation(book)
    wait_for_enter()

    step_08_cancellation(book)
    wait_for_enter()

    step_09_conservation(book)
    wait_for_enter()

    step_10_race()

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See lending/units/*.py for the request and loan records
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
