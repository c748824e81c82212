"""
ledger.py - Point-Transfer Ledger Service

LedgerService is the only component that moves points. It combines an
AccountStore (current balances) with a TransferLog (audit trail) and keeps the
two reconciled.

Key responsibilities:
    - Validates requests through TransferPolicy before touching any lock
    - Locks both accounts in a fixed global order (no deadlock)
    - Debits, credits and appends one record as a single unit; any failure
      undoes the earlier steps before the locks are released
    - Serves the read side (balances, paged transfer listings)
    - Rebuilds balances from the log (replay, reconciliation)
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import ExitStack, contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from .accounts import AccountStore
from .core import (
    # Types
    Account, AccountId, TransferIntent, TransferRecord, TransferResult,
    TransferState, TransferType,
    # Constants
    DEFAULT_PAGE_SIZE, SYSTEM_ACCOUNT,
    # Exceptions
    LedgerError, UnknownAccount,
    # Helpers
    check_amount, lock_order_key,
)
from .policy import TransferPolicy
from .transfer_log import TransferLog


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Placeholder until TransferLog.append stamps the record
_UNSTAMPED = datetime.min.replace(tzinfo=timezone.utc)


class LedgerService:
    """
    Atomic point transfers with a complete audit trail.

    Collaborators are passed in; anything omitted gets an in-memory default.

    Guarantees:
        - balance >= 0 for every account except SYSTEM_ACCOUNT
        - the sum of all balances (system included) is always zero
        - each committed transfer appends exactly one record
        - replaying an account's records from zero gives its balance

    Thread Safety:
        transfer() and issue() may be called from any number of threads.
        Transfers sharing an account are serialized; disjoint ones run
        in parallel.

    Example:
        service = LedgerService()
        service.open_account("alice")
        service.open_account("bob")
        service.issue("alice", 100)

        result = service.transfer("alice", "bob", 50)
        service.get_balance("alice")   # 50
    """

    def __init__(
        self,
        accounts: Optional[AccountStore] = None,
        log: Optional[TransferLog] = None,
        policy: Optional[TransferPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
        name: str = "points",
        verbose: bool = False,
    ):
        """
        Create a ledger service.

        Args:
            accounts: Account store (default: empty AccountStore)
            log: Transfer log (default: in-memory TransferLog)
            policy: Validation rules (default: TransferPolicy())
            clock: Source of record timestamps (default: UTC wall clock)
            name: Ledger identifier used in diagnostics
            verbose: Print one line per transfer outcome (default: False)

        A log that already holds records (e.g. a reopened JsonlTransferLog)
        sets the balances: a store still at zero is rebuilt from the records,
        any other store must already reconcile with them.

        Raises:
            UnknownAccount: If a record names an account the store lacks
            ValueError: If the store and the log disagree
        """
        self.name = name
        self.accounts = accounts if accounts is not None else AccountStore()
        self.log = log if log is not None else TransferLog()
        self.policy = policy if policy is not None else TransferPolicy()
        self._clock = clock or _utcnow
        self.verbose = verbose
        if len(self.log):
            self._restore_balances()

    @classmethod
    def from_log(
        cls,
        log: TransferLog,
        accounts: Optional[AccountStore] = None,
        **kwargs: Any,
    ) -> LedgerService:
        """
        Resume a service over an existing log, keeping that log for new commits.

        Accounts named by the records but missing from the store are opened
        with default names before balances are rebuilt.

        Example:
            service = LedgerService.from_log(JsonlTransferLog("transfers.jsonl"))
        """
        accounts = accounts if accounts is not None else AccountStore()
        for record in log:
            for account_id in (record.from_id, record.to_id):
                if not accounts.exists(account_id):
                    accounts.open_account(account_id)
        return cls(accounts=accounts, log=log, **kwargs)

    def _restore_balances(self) -> None:
        stored = self.accounts.list_accounts(include_system=True)
        if any(account.balance for account in stored):
            report = self.verify_reconciliation()
            if not report['valid']:
                raise ValueError(
                    f"Account balances disagree with the transfer log: {report['discrepancies']}"
                )
            return

        balances: Dict[AccountId, int] = defaultdict(int)
        for record in self.log:
            balances[record.from_id] -= record.amount
            balances[record.to_id] += record.amount
        missing = [a for a in balances if not self.accounts.exists(a)]
        if missing:
            raise UnknownAccount(f"Transfer log names unregistered accounts: {missing!r}")
        for account_id, balance in balances.items():
            self.accounts.restore_balance(account_id, balance)

        report = self.verify_reconciliation()
        if not report['valid']:
            raise ValueError(f"Transfer log does not reconcile: {report['discrepancies']}")
        self._report("↻", f"RESTORED {len(self.log)} records")

    # ========================================================================
    # READ SIDE
    # ========================================================================

    def get_balance(self, account_id: AccountId) -> int:
        """
        Current balance of an account.

        Raises:
            UnknownAccount: If the account is not registered
        """
        return self.accounts.get(account_id).balance

    def get_account(self, account_id: AccountId) -> Account:
        return self.accounts.get(account_id)

    def list_transfers(
        self,
        account_id: AccountId,
        offset: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Tuple[List[TransferRecord], int]:
        """
        One page of an account's transfers, oldest first, and the total count.

        The caller owns page-window math; this only slices.

        Raises:
            UnknownAccount: If the account is not registered
            ValueError: If offset < 0 or limit <= 0
        """
        self.accounts.get(account_id)
        return self.log.page_for_account(account_id, offset, limit)

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def open_account(self, account_id: AccountId, name: Optional[str] = None) -> Account:
        """Register an account with a zero balance. See AccountStore.open_account."""
        return self.accounts.open_account(account_id, name)

    # ========================================================================
    # TRANSFERS (Mutating)
    # ========================================================================

    def transfer(
        self,
        from_id: AccountId,
        to_id: AccountId,
        amount: int,
        kind: TransferType = TransferType.ACCOUNT_TO_ACCOUNT,
        data_id: Optional[Any] = None,
    ) -> TransferResult:
        """
        Move points from one member to another.

        Args:
            from_id: Sending account
            to_id: Receiving account
            amount: Points to move
            kind: Transfer category (peer categories only)
            data_id: Business reference stored on the record (default: to_id)

        Returns:
            TransferResult with the record id and both new balances

        Raises:
            InvalidAmount, SelfTransfer, UnknownAccount: before any lock
            InsufficientFunds: under lock, before any mutation
            AmountOverflow: receiver would exceed its ceiling; rolled back
            PersistenceFailure: record not stored; rolled back, retryable
        """
        try:
            intent = self.policy.validate(from_id, to_id, amount, self.accounts, kind, data_id)
        except LedgerError as e:
            self._report("✗", f"REJECTED {e.kind.value}: {e}")
            raise
        return self.commit(intent)

    def issue(
        self,
        to_id: AccountId,
        amount: int,
        kind: TransferType = TransferType.INIT,
        data_id: Optional[Any] = None,
    ) -> TransferResult:
        """
        Move points from SYSTEM_ACCOUNT to an account (allowance, reward, correction).

        Raises:
            ValueError: If kind is a peer category
            InvalidAmount: If amount is not a positive int
            UnknownAccount: If the receiver is missing, inactive or the system account
            AmountOverflow, PersistenceFailure: as for transfer()
        """
        if kind.is_peer:
            raise ValueError("Peer transfers go through transfer()")
        try:
            check_amount(amount, minimum=1)
            if not TransferPolicy.resolves(to_id, self.accounts):
                raise UnknownAccount(f"Account {to_id!r} does not exist or is inactive")
        except LedgerError as e:
            self._report("✗", f"REJECTED {e.kind.value}: {e}")
            raise
        intent = TransferIntent(SYSTEM_ACCOUNT, to_id, amount, kind, data_id)
        return self.commit(intent)

    def commit(self, intent: TransferIntent, timestamp: Optional[datetime] = None) -> TransferResult:
        """
        Apply a validated intent atomically.

        State machine:
            VALIDATED -> LOCKED -> DEBITED -> CREDITED -> LOGGED -> COMMITTED
        Any failure undoes the completed steps in reverse (ROLLED_BACK) and
        re-raises before the locks are released.

        Args:
            intent: Output of TransferPolicy.validate (or issue())
            timestamp: Record time (default: the service clock)
        """
        state = TransferState.VALIDATED
        with self._locked(intent.from_id, intent.to_id):
            state = TransferState.LOCKED
            try:
                self._recheck(intent)
                from_balance = self.accounts.debit(intent.from_id, intent.amount)
                state = TransferState.DEBITED
                to_balance = self.accounts.credit(intent.to_id, intent.amount)
                state = TransferState.CREDITED
                # Without an explicit timestamp the log stamps the record under its lock
                record_id = self.log.append(TransferRecord(
                    record_id=0,
                    from_id=intent.from_id,
                    to_id=intent.to_id,
                    kind=intent.kind,
                    amount=intent.amount,
                    timestamp=timestamp or _UNSTAMPED,
                    data_id=intent.data_id,
                    from_balance=None if intent.from_id == SYSTEM_ACCOUNT else from_balance,
                    to_balance=to_balance,
                ), clock=None if timestamp else self._clock)
                state = TransferState.LOGGED
            except Exception as e:
                failed_at = state
                try:
                    self._rollback(intent, failed_at)
                except Exception as undo_error:
                    self._report(
                        "↺", f"ROLLBACK FAILED from {failed_at.value}: {undo_error} (after {e!r})"
                    )
                    raise LedgerError(
                        f"Rollback from {failed_at.value} failed, balances need reconciliation: "
                        f"{undo_error}"
                    ) from e
                state = TransferState.ROLLED_BACK
                kind = getattr(e, "kind", None)
                label = kind.value if kind is not None else type(e).__name__
                if failed_at is TransferState.LOCKED:
                    self._report("✗", f"REJECTED {label}: {e}")
                else:
                    self._report("↺", f"{state.name} from {failed_at.value} ({label}): {e}")
                raise

        state = TransferState.COMMITTED
        self._report("✓", f"{state.name} #{record_id} {intent}")
        return TransferResult(
            record_id=record_id,
            new_from_balance=None if intent.from_id == SYSTEM_ACCOUNT else from_balance,
            new_to_balance=to_balance,
        )

    def _recheck(self, intent: TransferIntent) -> None:
        """Status can change between validation and locking; check again under lock."""
        for account_id in (intent.from_id, intent.to_id):
            if account_id == SYSTEM_ACCOUNT and not intent.kind.is_peer:
                continue
            if not TransferPolicy.resolves(account_id, self.accounts):
                raise UnknownAccount(f"Account {account_id!r} became unavailable")

    def _rollback(self, intent: TransferIntent, state: TransferState) -> None:
        """Undo the steps completed before a failure, newest first."""
        if state is TransferState.CREDITED:
            self.accounts.debit(intent.to_id, intent.amount)
            state = TransferState.DEBITED
        if state is TransferState.DEBITED:
            self.accounts.credit(intent.from_id, intent.amount)

    @contextmanager
    def _locked(self, *account_ids: AccountId) -> Iterator[None]:
        """
        Hold the locks of the given accounts.

        Locks are taken in ascending lock_order_key order and released in
        reverse, so two transfers over the same pair never wait on each other
        in a cycle.
        """
        with ExitStack() as stack:
            for account_id in sorted(set(account_ids), key=lock_order_key):
                stack.enter_context(self.accounts.lock(account_id))
            yield

    def _report(self, icon: str, message: str) -> None:
        if self.verbose:
            print(f"{icon} [{self.name}] {message}")

    # ========================================================================
    # AUDIT AND RECONSTRUCTION
    # ========================================================================

    def replay_balance(self, account_id: AccountId) -> int:
        """Fold an account's records, oldest first, starting from zero."""
        return sum(r.signed_amount(account_id) for r in self.log.list_for_account(account_id))

    def balance_history(self, account_id: AccountId) -> List[Tuple[TransferRecord, int]]:
        """
        Each record touching an account with the account's balance after it.

        Raises:
            UnknownAccount: If the account is not registered
        """
        self.accounts.get(account_id)
        history = []
        balance = 0
        for record in self.log.list_for_account(account_id):
            balance += record.signed_amount(account_id)
            history.append((record, balance))
        return history

    def verify_reconciliation(self) -> Dict[str, Any]:
        """
        Check that stored balances agree with the transfer log.

        Holds every account lock while checking, so the report describes a
        single consistent point in time.

        Checks:
            1. replayed balance == stored balance for every account
            2. balance snapshots on each record match the replay
            3. the sum of all balances, system included, is zero

        Returns:
            Dict with keys:
            - 'valid': bool - True if all checks pass
            - 'balances': Dict[AccountId, int] - stored balance per account
            - 'total': int - sum of stored balances
            - 'discrepancies': List[Dict] - one entry per failed check

        Example:
            report = service.verify_reconciliation()
            assert report['valid'], report['discrepancies']
        """
        all_ids = [a.account_id for a in self.accounts.list_accounts(include_system=True)]
        with self._locked(*all_ids):
            stored = {a.account_id: a.balance for a in self.accounts.list_accounts(include_system=True)}
            records = list(self.log)

        discrepancies: List[Dict[str, Any]] = []
        replayed: Dict[AccountId, int] = defaultdict(int)
        for record in records:
            replayed[record.from_id] -= record.amount
            replayed[record.to_id] += record.amount
            snapshots = ((record.from_id, record.from_balance), (record.to_id, record.to_balance))
            for account_id, snapshot in snapshots:
                if snapshot is not None and snapshot != replayed[account_id]:
                    discrepancies.append({
                        'record_id': record.record_id,
                        'account': account_id,
                        'expected': replayed[account_id],
                        'actual': snapshot,
                        'error': 'balance snapshot mismatch',
                    })

        for account_id in sorted(set(stored) | set(replayed), key=lock_order_key):
            expected = replayed.get(account_id, 0)
            actual = stored.get(account_id)
            if actual is None:
                discrepancies.append({
                    'account': account_id,
                    'expected': expected,
                    'actual': None,
                    'error': 'account not registered',
                })
            elif actual != expected:
                discrepancies.append({
                    'account': account_id,
                    'expected': expected,
                    'actual': actual,
                    'difference': actual - expected,
                })

        total = sum(stored.values())
        if total != 0:
            discrepancies.append({
                'account': None,
                'expected': 0,
                'actual': total,
                'error': 'balances do not sum to zero',
            })

        return {
            'valid': len(discrepancies) == 0,
            'balances': stored,
            'total': total,
            'discrepancies': discrepancies,
        }

    def replay(self) -> LedgerService:
        """
        Build a new service by re-applying the transfer log.

        The new service has the same accounts (ids, names, status) and a fresh
        in-memory log holding the same records with their original timestamps.
        Balances come only from the records.

        Raises:
            LedgerError: If a record cannot be re-applied
        """
        accounts = AccountStore(max_balance=self.accounts.max_balance)
        for account in self.accounts.list_accounts():
            accounts.open_account(account.account_id, account.name)

        replayed = LedgerService(
            accounts=accounts,
            policy=self.policy,
            clock=self._clock,
            name=f"{self.name}_replayed",
            verbose=self.verbose,
        )
        for record in self.log:
            intent = TransferIntent(
                record.from_id, record.to_id, record.amount, record.kind, record.data_id,
            )
            try:
                replayed.commit(intent, timestamp=record.timestamp)
            except LedgerError as e:
                raise LedgerError(f"Replay failed at record {record.record_id}: {e}") from e

        for account in self.accounts.list_accounts():
            if not account.active:
                accounts.deactivate(account.account_id)
        return replayed
