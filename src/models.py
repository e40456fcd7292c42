import threading
from dataclasses import dataclass, field
from decimal import (
    MAX_EMAX,
    MAX_PREC,
    MIN_EMIN,
    Context,
    Decimal,
    DecimalException,
    DivisionByZero,
    Inexact,
    InvalidOperation,
    Overflow,
    Rounded,
)
from enum import Enum
from typing import ClassVar, Dict, Optional, Union

from errors import LedgerInvariantError


class TransactionType(Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    DISPUTE = "dispute"
    RESOLVE = "resolve"
    CHARGEBACK = "chargeback"


class TransactionKind(Enum):
    """Kinds of transaction that move money and are kept for later disputes."""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class DisputeState(Enum):
    NONE = "none"
    DISPUTED = "disputed"
    RESOLVED = "resolved"
    CHARGED_BACK = "charged_back"


DISPUTE_TRANSITIONS: Dict[DisputeState, tuple] = {
    DisputeState.NONE: (DisputeState.DISPUTED,),
    DisputeState.DISPUTED: (DisputeState.RESOLVED, DisputeState.CHARGED_BACK),
    DisputeState.RESOLVED: (),
    DisputeState.CHARGED_BACK: (),
}


class AccountStatus(Enum):
    ACTIVE = "active"
    FROZEN = "frozen"


class OutcomeStatus(Enum):
    APPLIED = "applied"
    IGNORED = "ignored"
    REJECTED = "rejected"


class OutcomeReason(Enum):
    # Ignored: valid input that cannot apply to the current ledger
    ACCOUNT_FROZEN = "account_frozen"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    UNKNOWN_TRANSACTION = "unknown_transaction"
    CLIENT_MISMATCH = "client_mismatch"
    ALREADY_DISPUTED = "already_disputed"
    DISPUTE_CLOSED = "dispute_closed"
    NOT_DISPUTED = "not_disputed"
    # Rejected: malformed input
    NEGATIVE_AMOUNT = "negative_amount"
    DUPLICATE_TRANSACTION = "duplicate_transaction"


# Balance arithmetic never rounds: any inexact result traps instead of losing digits.
LEDGER_CONTEXT = Context(
    prec=MAX_PREC,
    Emax=MAX_EMAX,
    Emin=MIN_EMIN,
    traps=[InvalidOperation, DivisionByZero, Overflow, Inexact, Rounded],
)


def ledger_add(left: Decimal, right: Decimal) -> Decimal:
    try:
        return LEDGER_CONTEXT.add(left, right)
    except DecimalException as e:
        raise LedgerInvariantError(f"Inexact balance arithmetic: {left} + {right}") from e


def ledger_subtract(left: Decimal, right: Decimal) -> Decimal:
    try:
        return LEDGER_CONTEXT.subtract(left, right)
    except DecimalException as e:
        raise LedgerInvariantError(f"Inexact balance arithmetic: {left} - {right}") from e


class Funds(Decimal):
    """
    Non-negative decimal used for every stored balance.
    Construction from a negative or NaN value raises LedgerInvariantError,
    so a balance can never be assigned a negative result.
    """

    def __new__(cls, value="0", context=None):
        instance = super().__new__(cls, value, context)
        if instance.is_nan() or instance < 0:
            raise LedgerInvariantError(f"Balance cannot be negative: {value}")
        return instance

    def __repr__(self) -> str:
        return f"Funds('{self}')"


@dataclass(frozen=True)
class Deposit:
    kind: ClassVar[TransactionKind] = TransactionKind.DEPOSIT

    tx_id: int
    client_id: int
    amount: Decimal


@dataclass(frozen=True)
class Withdrawal:
    kind: ClassVar[TransactionKind] = TransactionKind.WITHDRAWAL

    tx_id: int
    client_id: int
    amount: Decimal


@dataclass(frozen=True)
class Dispute:
    tx_id: int
    client_id: int


@dataclass(frozen=True)
class Resolve:
    tx_id: int
    client_id: int


@dataclass(frozen=True)
class Chargeback:
    tx_id: int
    client_id: int


Event = Union[Deposit, Withdrawal, Dispute, Resolve, Chargeback]


@dataclass
class TransactionRecord:
    tx_id: int
    client_id: int
    amount: Decimal
    kind: TransactionKind
    dispute_state: DisputeState = DisputeState.NONE

    def transition_to(self, state: DisputeState) -> None:
        if state not in DISPUTE_TRANSITIONS[self.dispute_state]:
            raise LedgerInvariantError(
                f"Transaction {self.tx_id}: illegal dispute transition "
                f"{self.dispute_state.value} -> {state.value}"
            )
        self.dispute_state = state

    @classmethod
    def from_event(cls, event: Union[Deposit, Withdrawal]) -> "TransactionRecord":
        return cls(
            tx_id=event.tx_id,
            client_id=event.client_id,
            amount=event.amount,
            kind=event.kind,
        )


@dataclass(frozen=True)
class AccountSnapshot:
    client_id: int
    available: Decimal
    held: Decimal
    total: Decimal
    frozen: bool


@dataclass
class ClientAccount:
    client_id: int
    available: Decimal = Funds("0")
    held: Decimal = Funds("0")
    status: AccountStatus = AccountStatus.ACTIVE
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def __post_init__(self):
        self.available = Funds(self.available)
        self.held = Funds(self.held)

    @property
    def total(self) -> Funds:
        return Funds(ledger_add(self.available, self.held))

    @property
    def is_frozen(self) -> bool:
        return self.status == AccountStatus.FROZEN

    # New balances are computed before any assignment; a violation leaves the account untouched.

    def credit(self, amount: Decimal) -> None:
        self.available = Funds(ledger_add(self.available, amount))

    def debit(self, amount: Decimal) -> None:
        self.available = Funds(ledger_subtract(self.available, amount))

    def hold(self, amount: Decimal) -> None:
        available = Funds(ledger_subtract(self.available, amount))
        held = Funds(ledger_add(self.held, amount))
        self.available, self.held = available, held

    def release_hold(self, amount: Decimal) -> None:
        held = Funds(ledger_subtract(self.held, amount))
        available = Funds(ledger_add(self.available, amount))
        self.available, self.held = available, held

    def remove_held(self, amount: Decimal) -> None:
        self.held = Funds(ledger_subtract(self.held, amount))

    def freeze(self) -> None:
        self.status = AccountStatus.FROZEN

    def snapshot(self) -> AccountSnapshot:
        return AccountSnapshot(
            client_id=self.client_id,
            available=self.available,
            held=self.held,
            total=self.total,
            frozen=self.is_frozen,
        )


@dataclass(frozen=True)
class Outcome:
    status: OutcomeStatus
    reason: Optional[OutcomeReason] = None

    @classmethod
    def applied(cls) -> "Outcome":
        return cls(OutcomeStatus.APPLIED)

    @classmethod
    def ignored(cls, reason: OutcomeReason) -> "Outcome":
        return cls(OutcomeStatus.IGNORED, reason)

    @classmethod
    def rejected(cls, reason: OutcomeReason) -> "Outcome":
        return cls(OutcomeStatus.REJECTED, reason)

    @property
    def is_applied(self) -> bool:
        return self.status == OutcomeStatus.APPLIED

    def __str__(self) -> str:
        if self.reason is None:
            return self.status.value
        return f"{self.status.value}({self.reason.value})"


class ProcessingStats:
    """Thread-safe counters for tracking processing statistics."""

    def __init__(self):
        self._lock = threading.Lock()
        self.applied = 0
        self.ignored = 0
        self.rejected = 0
        self.halted = 0

    def record(self, outcome: Outcome):
        with self._lock:
            if outcome.status == OutcomeStatus.APPLIED:
                self.applied += 1
            elif outcome.status == OutcomeStatus.IGNORED:
                self.ignored += 1
            else:
                self.rejected += 1

    def record_halted(self):
        with self._lock:
            self.halted += 1

    @property
    def processed(self) -> int:
        return self.applied + self.ignored + self.rejected + self.halted

    def __str__(self) -> str:
        return (
            f"Processed: {self.processed}, "
            f"Applied: {self.applied}, "
            f"Ignored: {self.ignored}, "
            f"Rejected: {self.rejected}, "
            f"Halted: {self.halted}"
        )
