"""
test_core_types.py - Unit tests for core data structures

Tests:
- Account: defaults, immutability
- TransferRecord: validation, signed effects
- TransferIntent / TransferResult: immutability
- Exceptions: kinds and retryability
- Helpers: check_amount, lock_order_key
"""

import dataclasses
import pytest
from datetime import datetime, timezone

from pointledger import (
    Account, TransferIntent, TransferRecord, TransferResult,
    TransferType, TransferErrorKind, TransferState,
    LedgerError, InvalidAmount, SelfTransfer, UnknownAccount,
    InsufficientFunds, AmountOverflow, PersistenceFailure,
    check_amount, lock_order_key,
    SYSTEM_ACCOUNT, MIN_TRANSFER_AMOUNT, MAX_BALANCE,
)


T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _record(**overrides):
    fields = dict(
        record_id=1, from_id="alice", to_id="bob",
        kind=TransferType.ACCOUNT_TO_ACCOUNT, amount=10, timestamp=T0,
    )
    fields.update(overrides)
    return TransferRecord(**fields)


class TestConstants:

    def test_system_account(self):
        assert SYSTEM_ACCOUNT == "system"

    def test_limits(self):
        assert MIN_TRANSFER_AMOUNT == 1
        assert MAX_BALANCE == 2 ** 63 - 1


class TestAccount:

    def test_defaults(self):
        account = Account("alice", name="alice")
        assert account.balance == 0
        assert account.active is True

    def test_immutable(self):
        account = Account("alice", name="alice")
        with pytest.raises(dataclasses.FrozenInstanceError):
            account.balance = 10

    def test_repr_marks_inactive(self):
        assert "inactive" in repr(Account("alice", name="alice", active=False))
        assert "inactive" not in repr(Account("alice", name="alice"))


class TestTransferRecord:

    def test_create(self):
        record = _record(data_id="bob", from_balance=90, to_balance=10)
        assert record.amount == 10
        assert record.kind is TransferType.ACCOUNT_TO_ACCOUNT
        assert record.to_balance == 10

    def test_immutable(self):
        record = _record()
        with pytest.raises(dataclasses.FrozenInstanceError):
            record.amount = 20

    @pytest.mark.parametrize("amount", [0, -5])
    def test_rejects_non_positive_amount(self, amount):
        with pytest.raises(ValueError):
            _record(amount=amount)

    @pytest.mark.parametrize("amount", [1.5, "10", True])
    def test_rejects_non_int_amount(self, amount):
        with pytest.raises(ValueError):
            _record(amount=amount)

    def test_rejects_same_endpoints(self):
        with pytest.raises(ValueError, match="different"):
            _record(to_id="alice")

    def test_signed_amount(self):
        record = _record(amount=25)
        assert record.signed_amount("alice") == -25
        assert record.signed_amount("bob") == 25
        assert record.signed_amount("carol") == 0

    def test_involves(self):
        record = _record()
        assert record.involves("alice")
        assert record.involves("bob")
        assert not record.involves("carol")

    def test_system_sourced_record(self):
        record = _record(from_id=SYSTEM_ACCOUNT, kind=TransferType.INIT)
        assert record.from_balance is None
        assert record.signed_amount(SYSTEM_ACCOUNT) == -10


class TestIntentAndResult:

    def test_intent_defaults_to_peer_kind(self):
        intent = TransferIntent("alice", "bob", 5)
        assert intent.kind is TransferType.ACCOUNT_TO_ACCOUNT
        assert intent.data_id is None

    def test_intent_immutable(self):
        intent = TransferIntent("alice", "bob", 5)
        with pytest.raises(dataclasses.FrozenInstanceError):
            intent.amount = 500

    def test_result_fields(self):
        result = TransferResult(record_id=3, new_from_balance=50, new_to_balance=150)
        assert (result.record_id, result.new_from_balance, result.new_to_balance) == (3, 50, 150)


class TestTransferType:

    def test_only_account_to_account_is_peer(self):
        assert TransferType.ACCOUNT_TO_ACCOUNT.is_peer
        assert not TransferType.INIT.is_peer
        assert not TransferType.REWARD.is_peer
        assert not TransferType.ADJUSTMENT.is_peer

    def test_state_machine_states(self):
        names = [s.name for s in TransferState]
        assert names == [
            "VALIDATED", "LOCKED", "DEBITED", "CREDITED", "LOGGED", "COMMITTED", "ROLLED_BACK",
        ]


class TestExceptions:

    @pytest.mark.parametrize("exc, kind", [
        (InvalidAmount, TransferErrorKind.INVALID_AMOUNT),
        (SelfTransfer, TransferErrorKind.SELF_TRANSFER),
        (UnknownAccount, TransferErrorKind.UNKNOWN_ACCOUNT),
        (InsufficientFunds, TransferErrorKind.INSUFFICIENT_FUNDS),
        (AmountOverflow, TransferErrorKind.AMOUNT_OVERFLOW),
        (PersistenceFailure, TransferErrorKind.PERSISTENCE_FAILURE),
    ])
    def test_kind(self, exc, kind):
        err = exc("boom")
        assert isinstance(err, LedgerError)
        assert err.kind is kind

    def test_only_persistence_failure_is_retryable(self):
        assert PersistenceFailure("x").retryable
        for exc in (InvalidAmount, SelfTransfer, UnknownAccount, InsufficientFunds, AmountOverflow):
            assert not exc("x").retryable


class TestCheckAmount:

    def test_accepts_positive_int(self):
        assert check_amount(10) == 10

    @pytest.mark.parametrize("amount", [0, -1])
    def test_rejects_non_positive(self, amount):
        with pytest.raises(InvalidAmount, match="positive"):
            check_amount(amount)

    def test_rejects_below_minimum(self):
        with pytest.raises(InvalidAmount, match="minimum"):
            check_amount(5, minimum=10)

    @pytest.mark.parametrize("amount", [1.0, "1", None, True])
    def test_rejects_non_int(self, amount):
        with pytest.raises(InvalidAmount, match="integer"):
            check_amount(amount)


class TestLockOrder:

    def test_strings_sort_naturally(self):
        assert sorted(["bob", "alice"], key=lock_order_key) == ["alice", "bob"]

    def test_ints_sort_numerically(self):
        assert sorted([10, 9, 100], key=lock_order_key) == [9, 10, 100]

    def test_mixed_types_have_total_order(self):
        ids = ["bob", 2, "alice", 1]
        assert sorted(ids, key=lock_order_key) == [1, 2, "alice", "bob"]
