"""
fake_view.py - Test doubles for pointledger

Provides:
- FakeView: minimal AccountView for testing TransferPolicy without an AccountStore
- StepClock: deterministic timestamps
- FlakyLog: a TransferLog whose persistence can be made to fail on demand
- make_service / balances_of: service construction and inspection helpers
"""

from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Optional, Set

from pointledger import LedgerService, TransferLog, TransferRecord, PersistenceFailure


class FakeView:
    """
    Minimal AccountView implementation for testing validation rules.

    Example:
        view = FakeView(active={'alice', 'bob'}, inactive={'mallory'})

        view.exists('mallory')      # True
        view.is_active('mallory')   # False
    """

    def __init__(self, active: Iterable = (), inactive: Optional[Iterable] = None):
        self._active: Set = set(active)
        self._inactive: Set = set(inactive or ())
        self.lookups = 0

    def exists(self, account_id) -> bool:
        self.lookups += 1
        return account_id in self._active or account_id in self._inactive

    def is_active(self, account_id) -> bool:
        self.lookups += 1
        return account_id in self._active


class StepClock:
    """Every call returns one second later than the previous one."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


class FlakyLog(TransferLog):
    """In-memory log that raises PersistenceFailure while `failing` is set."""

    def __init__(self):
        super().__init__()
        self.failing = False
        self.attempts = 0

    def _persist(self, record: TransferRecord) -> None:
        self.attempts += 1
        if self.failing:
            raise PersistenceFailure(f"disk unavailable for record {record.record_id}")


def make_service(*members: str, funds: Dict[str, int] = None, **kwargs) -> LedgerService:
    """Service with the given members, each funded through SYSTEM_ACCOUNT."""
    kwargs.setdefault("verbose", False)
    kwargs.setdefault("clock", StepClock())
    service = LedgerService(**kwargs)
    for member in members:
        service.open_account(member)
    for member, amount in (funds or {}).items():
        service.issue(member, amount)
    return service


def balances_of(service: LedgerService, include_system: bool = False) -> Dict[str, int]:
    """Snapshot of every account balance."""
    return {
        a.account_id: a.balance
        for a in service.accounts.list_accounts(include_system=include_system)
    }
