"""
accounts.py - Authoritative account balances

AccountStore holds the current balance and identity of every account, plus
one lock per account. It is the only mutable state the ledger touches.

debit() and credit() assume the caller already holds the account's lock;
LedgerService is the only intended caller.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Dict, List, Optional
import threading

from .core import (
    Account, AccountId,
    MAX_BALANCE, SYSTEM_ACCOUNT,
    InsufficientFunds, AmountOverflow, UnknownAccount,
)


class AccountStore:
    """
    In-memory account registry with per-account locks.

    Implements the AccountView protocol (exists, is_active) so it can be
    handed to TransferPolicy as a read-only lookup.

    The system account is registered automatically and is exempt from the
    non-negative floor.

    Example:
        store = AccountStore()
        store.open_account("alice")
        store.open_account("bob")
        store.get("alice").balance   # 0
    """

    def __init__(self, max_balance: int = MAX_BALANCE):
        self.max_balance = max_balance
        self._accounts: Dict[AccountId, Account] = {}
        self._names: Dict[str, AccountId] = {}
        self._locks: Dict[AccountId, threading.Lock] = {}
        # Guards registration and status changes, not balances
        self._registry_lock = threading.Lock()

        self._register(Account(SYSTEM_ACCOUNT, name=SYSTEM_ACCOUNT))

    # ========================================================================
    # AccountView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    def exists(self, account_id: AccountId) -> bool:
        return account_id in self._accounts

    def is_active(self, account_id: AccountId) -> bool:
        account = self._accounts.get(account_id)
        return account is not None and account.active

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get(self, account_id: AccountId) -> Account:
        """
        Return the current snapshot of an account.

        Raises:
            UnknownAccount: If the account is not registered
        """
        account = self._accounts.get(account_id)
        if account is None:
            raise UnknownAccount(f"Account {account_id!r} not registered")
        return account

    def find(self, account_id: AccountId) -> Optional[Account]:
        return self._accounts.get(account_id)

    def get_by_name(self, name: str) -> Account:
        """
        Look up an account by its display name.

        Raises:
            UnknownAccount: If no account has that name
        """
        account_id = self._names.get(name)
        if account_id is None:
            raise UnknownAccount(f"No account named {name!r}")
        return self._accounts[account_id]

    def list_accounts(self, include_system: bool = False) -> List[Account]:
        """List account snapshots, system account excluded unless asked for."""
        return [
            a for a in list(self._accounts.values())
            if include_system or a.account_id != SYSTEM_ACCOUNT
        ]

    def total_balance(self) -> int:
        """
        Sum of all balances, system account included.

        Zero whenever every balance came from a transfer or an issuance. Only
        meaningful while no transfer is in flight.
        """
        return sum(a.balance for a in list(self._accounts.values()))

    def __len__(self) -> int:
        return len(self._accounts)

    def __contains__(self, account_id: AccountId) -> bool:
        return account_id in self._accounts

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def open_account(self, account_id: AccountId, name: Optional[str] = None) -> Account:
        """
        Register a new account with a zero balance.

        Args:
            account_id: Unique identifier for the account
            name: Unique display name (default: str(account_id))

        Returns:
            The new Account snapshot

        Raises:
            ValueError: If the id or the name is already registered
        """
        if account_id is None or (isinstance(account_id, str) and not account_id.strip()):
            raise ValueError("Account id cannot be empty")
        account = Account(account_id, name=name if name is not None else str(account_id))
        with self._registry_lock:
            self._register(account)
        return account

    def _register(self, account: Account) -> None:
        if account.account_id in self._accounts:
            raise ValueError(f"Account {account.account_id!r} already registered")
        if account.name in self._names:
            raise ValueError(f"Account name {account.name!r} already taken")
        self._locks[account.account_id] = threading.Lock()
        self._names[account.name] = account.account_id
        self._accounts[account.account_id] = account

    def deactivate(self, account_id: AccountId) -> Account:
        """Block an account from peer transfers. Its balance is kept."""
        return self._set_active(account_id, False)

    def activate(self, account_id: AccountId) -> Account:
        return self._set_active(account_id, True)

    def _set_active(self, account_id: AccountId, active: bool) -> Account:
        if account_id == SYSTEM_ACCOUNT:
            raise ValueError("The system account status cannot change")
        with self._registry_lock, self.lock(account_id):
            account = replace(self.get(account_id), active=active)
            self._accounts[account_id] = account
        return account

    # ========================================================================
    # BALANCE MUTATION (caller holds the account lock)
    # ========================================================================

    def lock(self, account_id: AccountId) -> threading.Lock:
        """
        Return the lock guarding an account's balance.

        Raises:
            UnknownAccount: If the account is not registered
        """
        lock = self._locks.get(account_id)
        if lock is None:
            raise UnknownAccount(f"Account {account_id!r} not registered")
        return lock

    def debit(self, account_id: AccountId, amount: int) -> int:
        """
        Decrease an account's balance.

        Returns:
            The new balance

        Raises:
            UnknownAccount: If the account is not registered
            InsufficientFunds: If the balance would fall below zero
        """
        account = self.get(account_id)
        new_balance = account.balance - amount
        if new_balance < 0 and account_id != SYSTEM_ACCOUNT:
            raise InsufficientFunds(
                f"{account_id!r}: balance {account.balance} < {amount}"
            )
        self._accounts[account_id] = replace(account, balance=new_balance)
        return new_balance

    def credit(self, account_id: AccountId, amount: int) -> int:
        """
        Increase an account's balance.

        Returns:
            The new balance

        Raises:
            UnknownAccount: If the account is not registered
            AmountOverflow: If the balance would exceed max_balance
        """
        account = self.get(account_id)
        new_balance = account.balance + amount
        if new_balance > self.max_balance:
            raise AmountOverflow(
                f"{account_id!r}: {account.balance} + {amount} > max {self.max_balance}"
            )
        self._accounts[account_id] = replace(account, balance=new_balance)
        return new_balance

    def restore_balance(self, account_id: AccountId, balance: int) -> Account:
        """
        Set a balance rebuilt from the transfer log (service startup only).

        Raises:
            UnknownAccount: If the account is not registered
            ValueError: If the balance breaks the floor or the ceiling
        """
        if balance < 0 and account_id != SYSTEM_ACCOUNT:
            raise ValueError(f"{account_id!r}: rebuilt balance {balance} is negative")
        if balance > self.max_balance:
            raise ValueError(f"{account_id!r}: rebuilt balance {balance} > max {self.max_balance}")
        with self.lock(account_id):
            account = replace(self.get(account_id), balance=balance)
            self._accounts[account_id] = account
        return account
