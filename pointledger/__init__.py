"""
pointledger - Point-Transfer Ledger

Atomic, auditable point transfers between forum member accounts.

Usage:
    from pointledger import LedgerService, TransferType, InsufficientFunds

    service = LedgerService()
    service.open_account("alice")
    service.open_account("bob")

    # Fund accounts via SYSTEM_ACCOUNT (signup allowance)
    service.issue("alice", 100, TransferType.INIT)

    # Transfer between members
    result = service.transfer("alice", "bob", 50)
    result.new_from_balance   # 50

    records, total = service.list_transfers("bob", offset=0, limit=10)
"""

# Core types
from .core import (
    AccountView,
    Account,
    TransferIntent,
    TransferRecord,
    TransferResult,
    TransferType,
    TransferErrorKind,
    TransferState,
    LedgerError,
    InvalidAmount,
    SelfTransfer,
    UnknownAccount,
    InsufficientFunds,
    AmountOverflow,
    PersistenceFailure,
    check_amount,
    lock_order_key,
    SYSTEM_ACCOUNT,
    MIN_TRANSFER_AMOUNT,
    MAX_BALANCE,
    DEFAULT_PAGE_SIZE,
)

# Accounts
from .accounts import AccountStore

# Transfer log
from .transfer_log import (
    TransferLog,
    JsonlTransferLog,
    open_log,
    record_to_dict,
    record_from_dict,
)

# Validation
from .policy import TransferPolicy, validate_transfer

# Ledger
from .ledger import LedgerService

__all__ = [
    # Core
    'AccountView', 'Account', 'TransferIntent', 'TransferRecord', 'TransferResult',
    'TransferType', 'TransferErrorKind', 'TransferState',
    'LedgerError', 'InvalidAmount', 'SelfTransfer', 'UnknownAccount',
    'InsufficientFunds', 'AmountOverflow', 'PersistenceFailure',
    'check_amount', 'lock_order_key',
    'SYSTEM_ACCOUNT', 'MIN_TRANSFER_AMOUNT', 'MAX_BALANCE', 'DEFAULT_PAGE_SIZE',
    # Accounts
    'AccountStore',
    # Log
    'TransferLog', 'JsonlTransferLog', 'open_log', 'record_to_dict', 'record_from_dict',
    # Validation
    'TransferPolicy', 'validate_transfer',
    # Ledger
    'LedgerService',
]

__version__ = '0.1.0'
