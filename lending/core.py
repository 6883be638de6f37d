"""
Core types and pure functions for the collateralized lending ledger.

This module provides the foundational data structures and protocols:
1. Configuration: Decimal context, constants, LendingConfig, OverpaymentPolicy
2. Protocols: LedgerView for read-only ledger access
3. Immutable data structures: Move, PendingTransaction, Transaction, Unit
4. Exceptions: LedgerError and the lending error taxonomy
5. Transfer rules: escrow_transfer_rule guarding the escrow wallet
6. Unit factories: cash()

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, Type, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# All amounts, rates and prices are Decimal. The global context is configured
# once at import time so every calculation is deterministic.
#
# PRECONDITION: No other code should modify the global Decimal context.
# If thread-local contexts are needed, use decimal.localcontext().
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance (deposits). Exempt from balance validation.
SYSTEM_WALLET = "system"

# Ledger-owned wallet holding borrower collateral between request creation
# and a terminal transition. Only lending records may move funds in or out.
ESCROW_WALLET = "escrow"

UNIT_TYPE_CASH = "CASH"
UNIT_TYPE_LOAN_REQUEST = "LOAN_REQUEST"
UNIT_TYPE_LOAN = "LOAN"

REQUEST_SYMBOL_PREFIX = "REQ_"
LOAN_SYMBOL_PREFIX = "LOAN_"

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-18")

# Native settlement currency (amounts mirror on-chain ether with wei precision).
DEFAULT_CURRENCY = "ETH"
DEFAULT_CURRENCY_NAME = "Ether"
DEFAULT_CURRENCY_DECIMALS = 18

# Fixed-point decimals of the price supplied by the lender at funding time.
DEFAULT_PRICE_DECIMALS = 18

# Lending terms
COLLATERAL_RATIO = Decimal("2")
MIN_INTEREST_RATE = Decimal("0")
MAX_INTEREST_RATE = Decimal("7")
DAYS_PER_YEAR = 365

DECIMAL_ROUNDING = {
    UNIT_TYPE_CASH: ROUND_HALF_EVEN,
    # Interest is truncated like integer wei arithmetic
    'INTEREST': ROUND_DOWN,
}


def request_symbol(request_id: int) -> str:
    """Unit symbol under which a loan request record is stored."""
    return f"{REQUEST_SYMBOL_PREFIX}{request_id}"


def loan_symbol(loan_id: int) -> str:
    """Unit symbol under which a loan record is stored."""
    return f"{LOAN_SYMBOL_PREFIX}{loan_id}"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Internal state for a unit (the fields of a lending record).
UnitState = Dict[str, Any]


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Transaction ID was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation (insufficient funds, balance
              constraints, transfer rules, or stale record state).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"           # Borrower/lender initiated operation
    SYSTEM = "system"                     # Issuance, initial setup
    EXTERNAL = "external"                 # External system integration


class OverpaymentPolicy(str, Enum):
    """What happens to the part of a repayment above the amount due."""
    REFUND = "refund"   # Only the amount due leaves the borrower
    REJECT = "reject"   # Repayment fails with OverpaymentRejected
    RETAIN = "retain"   # Whole payment goes to the lender


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates the unit's transfer rule."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered with the ledger."""
    pass


class LendingError(LedgerError):
    """Base exception for lending operations. Subclasses name the failed precondition."""
    pass


# Validation errors: checked before any state mutation.

class ValidationError(LendingError, ValueError):
    pass


class InvalidAmount(ValidationError):
    pass


class InvalidDuration(ValidationError):
    pass


class InterestRateOutOfRange(ValidationError):
    pass


class InsufficientCollateral(ValidationError):
    pass


class InsufficientPayment(ValidationError):
    pass


class OverpaymentRejected(ValidationError):
    pass


# Lookup errors

class RecordNotFound(LendingError):
    pass


class RequestNotFound(RecordNotFound):
    pass


class LoanNotFound(RecordNotFound):
    pass


# State-conflict errors: detected by the record's own flag.

class StateConflictError(LendingError):
    pass


class RequestAlreadyFunded(StateConflictError):
    """The request is no longer active (funded or cancelled)."""
    pass


class SelfFundingNotAllowed(StateConflictError):
    pass


class AlreadyRepaid(StateConflictError):
    """The loan is closed and cannot be repaid or liquidated again."""
    pass


class AlreadyLiquidated(AlreadyRepaid):
    pass


class NotBorrower(StateConflictError):
    pass


class NotYetExpired(StateConflictError):
    pass


# Transfer errors: the ledger rejected the transaction, nothing was applied.

class TransferError(LendingError):
    pass


class EscrowTransferFailed(TransferError):
    pass


class FundingTransferFailed(TransferError):
    pass


class RepaymentTransferFailed(TransferError):
    pass


def as_decimal(value: Any, name: str, error: Type[LendingError] = InvalidAmount) -> Decimal:
    """
    Convert a numeric input to a finite Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1"), not its binary expansion.

    Raises:
        error: If the value is not numeric or not finite.
    """
    if isinstance(value, bool):
        raise error(f"{name} must be a number, got {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            raise error(f"{name} must be a number, got {value!r}") from None
    else:
        raise error(f"{name} must be a number, got {type(value).__name__}")
    if result.is_nan() or result.is_infinite():
        raise error(f"{name} must be finite, got {value!r}")
    return result


def check_precision(value: Decimal, name: str, decimal_places: int) -> None:
    """
    Reject amounts with more decimal places than the currency carries.

    Raises:
        InvalidAmount: If value is not representable at decimal_places.
    """
    quantizer = Decimal(10) ** -decimal_places
    try:
        quantized = value.quantize(quantizer)
    except InvalidOperation:
        raise InvalidAmount(f"{name} {value} is too large") from None
    if value != quantized:
        raise InvalidAmount(f"{name} {value} has more than {decimal_places} decimal places")


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class LendingConfig:
    """
    Immutable configuration of a loan book.

    Attributes:
        currency: Settlement unit symbol.
        currency_name: Human-readable currency name.
        decimal_places: Precision of the settlement currency.
        collateral_ratio: Minimum collateral / principal at request creation.
        min_interest_rate: Lowest accepted annual rate, in percent.
        max_interest_rate: Highest accepted annual rate, in percent.
        days_per_year: Day-count basis for simple interest.
        price_decimals: Fixed-point decimals of the funding price input.
        overpayment_policy: Treatment of repayments above the amount due.
    """
    currency: str = DEFAULT_CURRENCY
    currency_name: str = DEFAULT_CURRENCY_NAME
    decimal_places: int = DEFAULT_CURRENCY_DECIMALS
    collateral_ratio: Decimal = COLLATERAL_RATIO
    min_interest_rate: Decimal = MIN_INTEREST_RATE
    max_interest_rate: Decimal = MAX_INTEREST_RATE
    days_per_year: int = DAYS_PER_YEAR
    price_decimals: int = DEFAULT_PRICE_DECIMALS
    overpayment_policy: OverpaymentPolicy = OverpaymentPolicy.REFUND

    def __post_init__(self):
        if not self.currency or not self.currency.strip():
            raise ValueError("currency cannot be empty")
        if self.decimal_places < 0:
            raise ValueError(f"decimal_places cannot be negative, got {self.decimal_places}")
        if self.price_decimals < 0:
            raise ValueError(f"price_decimals cannot be negative, got {self.price_decimals}")
        if self.days_per_year <= 0:
            raise ValueError(f"days_per_year must be positive, got {self.days_per_year}")
        for name in ('collateral_ratio', 'min_interest_rate', 'max_interest_rate'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))
        if self.collateral_ratio <= Decimal("0"):
            raise ValueError(f"collateral_ratio must be positive, got {self.collateral_ratio}")
        if self.min_interest_rate > self.max_interest_rate:
            raise ValueError(
                f"min_interest_rate ({self.min_interest_rate}) cannot exceed "
                f"max_interest_rate ({self.max_interest_rate})"
            )
        if not isinstance(self.overpayment_policy, OverpaymentPolicy):
            object.__setattr__(self, 'overpayment_policy', OverpaymentPolicy(self.overpayment_policy))


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Record functions (units/loan_request.py, units/loan.py) and transfer rules
    accept a LedgerView to declare their read-only intent. The Ledger class
    implements this protocol; tests use FakeView.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet (Decimal("0") if none)."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's state. Raises UnitNotRegistered if unknown."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the caller (borrower, lender, liquidator)
        unit_symbol: Symbol of the lending record acted upon (if applicable)
        event_type: Lending operation (e.g., "FUND", "REPAY", "LIQUIDATE")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Before/after snapshot of a record's state.

    old_state doubles as the guard of the change: the ledger rejects the
    transaction if the record no longer matches it at execution time.

    Attributes:
        unit: Symbol of the unit whose state changed
        old_state: Complete state before the change
        new_state: Complete state after the change
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for fields that differ."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (must be finite and positive).
        unit_symbol: The symbol of the unit being transferred (e.g., "ETH").
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: The lending record (or deposit reference) generating this move.
        metadata: Optional additional information about the move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if self.quantity < QUANTITY_EPSILON:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """
    Canonical string for a Decimal: Decimal("1.0") and Decimal("1.00") both give "1".
    """
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Deterministic serialization of a value for hashing, independent of
    dict insertion order and Decimal representation.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return f"E:{value.value}"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = ()
) -> str:
    """
    Content hash of a transaction's intent (moves, state changes, origin,
    created units). Timestamps are excluded, so the same intent always hashes
    to the same id. Used for idempotency.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}|{_canonicalize(unit.state)}")

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        content_parts.append(
            f"state_change:{sc.unit}|{_canonicalize(sc.old_state)}|{_canonicalize(sc.new_state)}"
        )

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Built by the record functions and submitted to Ledger.execute(). The
    intent_id is computed from the content when not supplied.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of record state changes (old_state is the guard)
        origin: Who/what created this transaction and why
        timestamp: Logical time the transaction was built at
        units_to_create: Records to register atomically with the moves
        intent_id: Content-addressable hash of the transaction intent
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if there are no moves, no state changes and no units to create."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction stamped with the view's current time.

    State snapshots are deep-copied so later mutation of the caller's dicts
    cannot alter the recorded intent.

    Example:
        moves = [Move(Decimal("10"), "ETH", "lender", "borrower", "REQ_1")]
        old_state = view.get_unit_state("REQ_1")
        new_state = {**old_state, "active": False}
        tx = build_transaction(view, moves, [UnitStateChange("REQ_1", old_state, new_state)])
    """
    if origin is None:
        origin = TransactionOrigin(origin_type=OriginType.SYSTEM, source_id="ledger")

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of record state changes
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was built
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: Logical time of execution
        sequence_number: Monotonic sequence within the ledger
        units_to_create: Records registered by this transaction
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   execution_time : ' + str(self.execution_time))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
        ]
        if self.units_to_create:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Records Created (' + str(len(self.units_to_create)) + '):')}│")
            for unit in self.units_to_create:
                lines.append(f"│{pad('   ' + unit.symbol + ' (' + unit.name + ')')}│")
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
        for i, move in enumerate(self.moves):
            move_str = f"   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}"
            lines.append(f"│{pad(move_str)}│")
        if self.state_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' State Changes (' + str(len(self.state_changes)) + '):')}│")
            for sc in self.state_changes:
                lines.append(f"│{pad('   [' + sc.unit + ']')}│")
                for field_name, (old_val, new_val) in sc.changed_fields().items():
                    lines.append(f"│{pad(f'      {field_name}: {old_val!r} → {new_val!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[LedgerView, Move], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a tuple of (key, value) pairs sorted by key."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit in the ledger: either a currency, or a lending record.

    Attributes:
        symbol: Short identifier (e.g., "ETH", "REQ_1", "LOAN_1").
        name: Human-readable name.
        unit_type: CASH, LOAN_REQUEST or LOAN.
        min_balance: Minimum allowed balance in any wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Number of decimal places for rounding (None = no rounding).
        transfer_rule: Optional function to validate moves involving this unit.
        _frozen_state: Internal frozen state representation.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """A new dict each time, so callers cannot mutate the unit."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Round a value to this unit's decimal precision."""
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(quantizer, rounding=rounding_mode)


# ============================================================================
# TRANSFER RULES
# ============================================================================

def escrow_transfer_rule(view: LedgerView, move: Move) -> None:
    """
    Restrict moves into and out of the escrow wallet to lending records.

    A move touching ESCROW_WALLET must name a lending record as its
    contract_id and carry exactly that record's collateral:
    - Lock (into escrow): the record is an active request and the source is
      its borrower.
    - Release (out of escrow): the record is an active request being returned
      to its borrower, or an open loan paying its borrower or lender.

    Moves that do not touch escrow are unrestricted.

    Raises:
        TransferRuleViolation: If the move is not authorized by the record.
    """
    if ESCROW_WALLET not in (move.source, move.dest):
        return

    try:
        unit = view.get_unit(move.contract_id)
        state = view.get_unit_state(move.contract_id)
    except UnitNotRegistered:
        raise TransferRuleViolation(
            f"Escrow move {move!r} does not reference a lending record"
        ) from None

    if unit.unit_type not in (UNIT_TYPE_LOAN_REQUEST, UNIT_TYPE_LOAN):
        raise TransferRuleViolation(
            f"Escrow move {move!r}: {move.contract_id} is not a lending record"
        )

    if move.quantity != state.get('collateral'):
        raise TransferRuleViolation(
            f"Escrow move {move!r}: quantity differs from {move.contract_id} "
            f"collateral {state.get('collateral')}"
        )

    borrower = state.get('borrower')
    if move.dest == ESCROW_WALLET:
        if unit.unit_type != UNIT_TYPE_LOAN_REQUEST or not state.get('active', False):
            raise TransferRuleViolation(
                f"Escrow lock {move!r}: {move.contract_id} is not an active request"
            )
        if move.source != borrower:
            raise TransferRuleViolation(
                f"Escrow lock {move!r}: {move.source} is not the borrower of {move.contract_id}"
            )
        return

    if unit.unit_type == UNIT_TYPE_LOAN_REQUEST:
        if not state.get('active', False) or move.dest != borrower:
            raise TransferRuleViolation(
                f"Escrow release {move!r}: {move.contract_id} cannot release to {move.dest}"
            )
        return

    if state.get('repaid', False) or state.get('liquidated', False):
        raise TransferRuleViolation(
            f"Escrow release {move!r}: {move.contract_id} is closed"
        )
    if move.dest not in (borrower, state.get('lender')):
        raise TransferRuleViolation(
            f"Escrow release {move!r}: {move.dest} is not a party to {move.contract_id}"
        )


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def cash(
    symbol: str,
    name: str,
    decimal_places: int = DEFAULT_CURRENCY_DECIMALS,
    min_balance: Decimal = Decimal("0"),
) -> Unit:
    """
    Create a settlement currency unit.

    Args:
        symbol: Currency code (e.g., "ETH").
        name: Full name of the currency (e.g., "Ether").
        decimal_places: Number of decimal places for amounts (default: 18).
        min_balance: Lowest balance any non-system wallet may hold (default: 0,
                     no overdrafts).

    Returns:
        A Unit whose moves into or out of escrow are checked by
        escrow_transfer_rule.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_CASH,
        decimal_places=decimal_places,
        min_balance=min_balance,
        transfer_rule=escrow_transfer_rule,
        _frozen_state=_freeze_state({'issuer': SYSTEM_WALLET}),
    )
