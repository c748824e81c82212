"""
Core types and pure functions for the point-transfer ledger.

This module provides the foundational data structures and protocols for the ledger:
1. Protocols: AccountView for read-only account access
2. Immutable data structures: Account, TransferIntent, TransferRecord, TransferResult
3. Exceptions: LedgerError and the transfer failure kinds
4. Enums: TransferType, TransferErrorKind, TransferState
5. Helpers: amount checking and lock ordering

Nothing in this module mutates ledger state.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Protocol, Tuple, Union, runtime_checkable


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved account for issuance (signup bonus, rewards, adjustments).
# The system account is exempt from the non-negative floor, so the sum of all
# balances, system included, is always zero.
SYSTEM_ACCOUNT = "system"

# Smallest amount a member may send to another member.
MIN_TRANSFER_AMOUNT = 1

# Largest balance a single account may hold (signed 64-bit ceiling).
MAX_BALANCE = 2 ** 63 - 1

# Default page size for transfer listings.
DEFAULT_PAGE_SIZE = 20


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Opaque account identifier.
AccountId = Union[str, int]


# ============================================================================
# ENUMS
# ============================================================================

class TransferType(Enum):
    """
    Category of a point transfer.

    ACCOUNT_TO_ACCOUNT is the only peer-to-peer category. The others are
    sourced from SYSTEM_ACCOUNT.
    """
    ACCOUNT_TO_ACCOUNT = "account2account"   # Member sends points to member
    INIT = "init"                            # Signup allowance
    REWARD = "reward"                        # Activity reward
    ADJUSTMENT = "adjustment"                # Operator correction

    @property
    def is_peer(self) -> bool:
        return self is TransferType.ACCOUNT_TO_ACCOUNT


class TransferErrorKind(Enum):
    """Failure kinds reported to callers of the ledger."""
    INVALID_AMOUNT = "invalid_amount"
    SELF_TRANSFER = "self_transfer"
    UNKNOWN_ACCOUNT = "unknown_account"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    AMOUNT_OVERFLOW = "amount_overflow"
    PERSISTENCE_FAILURE = "persistence_failure"


class TransferState(Enum):
    """
    Progress of a single transfer attempt.

    VALIDATED -> LOCKED -> DEBITED -> CREDITED -> LOGGED -> COMMITTED
    Any failure after VALIDATED ends in ROLLED_BACK.
    """
    VALIDATED = "validated"
    LOCKED = "locked"
    DEBITED = "debited"
    CREDITED = "credited"
    LOGGED = "logged"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    kind: Optional[TransferErrorKind] = None
    retryable = False


class InvalidAmount(LedgerError):
    """Raised when an amount is not a positive integer at or above the minimum."""
    kind = TransferErrorKind.INVALID_AMOUNT


class SelfTransfer(LedgerError):
    """Raised when sender and receiver are the same account."""
    kind = TransferErrorKind.SELF_TRANSFER


class UnknownAccount(LedgerError):
    """Raised when an account id does not resolve to an existing, active account."""
    kind = TransferErrorKind.UNKNOWN_ACCOUNT


class InsufficientFunds(LedgerError):
    """Raised when a debit would take an account balance below zero."""
    kind = TransferErrorKind.INSUFFICIENT_FUNDS


class AmountOverflow(LedgerError):
    """Raised when a credit would take an account balance above its ceiling."""
    kind = TransferErrorKind.AMOUNT_OVERFLOW


class PersistenceFailure(LedgerError):
    """
    Raised when a transfer record cannot be durably appended.

    The enclosing transfer is rolled back. Callers may retry the whole
    transfer from scratch.
    """
    kind = TransferErrorKind.PERSISTENCE_FAILURE
    retryable = True


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class AccountView(Protocol):
    """
    Read-only interface to account identity.

    TransferPolicy uses this to check existence and status without being able
    to touch balances. AccountStore implements it; tests use FakeView.
    """

    def exists(self, account_id: AccountId) -> bool:
        """Return True if the account is registered."""
        ...

    def is_active(self, account_id: AccountId) -> bool:
        """Return True if the account is registered and may take part in transfers."""
        ...


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Account:
    """
    Snapshot of a single account.

    Attributes:
        account_id: Opaque unique identifier.
        name: Unique display name (defaults to the id as a string).
        balance: Current point balance.
        active: False once the account is blocked; blocked accounts are
                invisible to peer transfers.

    AccountStore replaces the snapshot on every change; holders of an
    old snapshot never see it move.
    """
    account_id: AccountId
    name: str
    balance: int = 0
    active: bool = True

    def __repr__(self) -> str:
        status = "" if self.active else ", inactive"
        return f"Account({self.account_id!r}: {self.balance}{status})"


@dataclass(frozen=True, slots=True)
class TransferIntent:
    """
    A validated transfer request - represents INTENT.

    Produced by TransferPolicy (or LedgerService.issue for system-sourced
    categories) and consumed by LedgerService. Holding an intent means the
    amount, direction and account existence checks already passed; the
    sender's balance is only checked once the accounts are locked.
    """
    from_id: AccountId
    to_id: AccountId
    amount: int
    kind: TransferType = TransferType.ACCOUNT_TO_ACCOUNT
    data_id: Optional[Any] = None

    def __repr__(self) -> str:
        return f"TransferIntent({self.amount} {self.kind.value}: {self.from_id}→{self.to_id})"


@dataclass(frozen=True, slots=True)
class TransferRecord:
    """
    An immutable audit entry for one committed transfer - represents FACT.

    Attributes:
        record_id: Strictly increasing sequence number (assigned by the log,
                   0 until appended).
        from_id: Sender account id (SYSTEM_ACCOUNT for issuance).
        to_id: Receiver account id.
        kind: Transfer category.
        amount: Points moved (positive).
        timestamp: When the transfer was committed. Stamped by the log under
                   its lock, so it never decreases with record_id unless the
                   clock itself goes backwards; record_id is the replay order.
        data_id: Reference to the business object behind the transfer.
        from_balance: Sender balance after the transfer (None for SYSTEM_ACCOUNT).
        to_balance: Receiver balance after the transfer.
    """
    record_id: int
    from_id: AccountId
    to_id: AccountId
    kind: TransferType
    amount: int
    timestamp: datetime
    data_id: Optional[Any] = None
    from_balance: Optional[int] = None
    to_balance: Optional[int] = None

    def __post_init__(self):
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValueError(f"TransferRecord amount must be int, got {type(self.amount)}")
        if self.amount <= 0:
            raise ValueError(f"TransferRecord amount must be positive, got {self.amount}")
        if self.from_id == self.to_id:
            raise ValueError("Sender and receiver must be different")

    def involves(self, account_id: AccountId) -> bool:
        return account_id == self.from_id or account_id == self.to_id

    def signed_amount(self, account_id: AccountId) -> int:
        """Effect of this record on the given account's balance."""
        if account_id == self.to_id:
            return self.amount
        if account_id == self.from_id:
            return -self.amount
        return 0

    def __repr__(self) -> str:
        return (
            f"TransferRecord(#{self.record_id} {self.amount} {self.kind.value}: "
            f"{self.from_id}→{self.to_id})"
        )


@dataclass(frozen=True, slots=True)
class TransferResult:
    """Outcome of a committed transfer."""
    record_id: int
    new_from_balance: Optional[int]
    new_to_balance: int


# ============================================================================
# HELPERS
# ============================================================================

def check_amount(amount: Any, minimum: int = MIN_TRANSFER_AMOUNT) -> int:
    """
    Return amount if it is an acceptable transfer amount.

    Raises:
        InvalidAmount: If amount is not an int, is not positive, or is
                       below the minimum.
    """
    # bool is an int subclass; True must not move one point
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"Amount must be an integer, got {type(amount).__name__}")
    if amount <= 0:
        raise InvalidAmount(f"Amount must be positive, got {amount}")
    if amount < minimum:
        raise InvalidAmount(f"Amount {amount} below minimum {minimum}")
    return amount


def lock_order_key(account_id: AccountId) -> Tuple[str, Any]:
    """
    Sort key defining the global lock acquisition order.

    Ids of one type sort naturally; mixed str/int ids sort by type name first
    so the order stays total.
    """
    return (type(account_id).__name__, account_id)
