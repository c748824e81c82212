"""
policy.py - Transfer validation rules

TransferPolicy turns a raw transfer request into a TransferIntent, or rejects
it. It reads account identity through the AccountView protocol only and takes
no locks, so a rejected request never contends with committing transfers.

Balance sufficiency is NOT checked here: the sender's balance can change
between validation and locking, so LedgerService checks it under lock.
"""

from __future__ import annotations
from typing import Any, Optional

from .core import (
    AccountId, AccountView, TransferIntent, TransferType,
    MIN_TRANSFER_AMOUNT, SYSTEM_ACCOUNT,
    InvalidAmount, SelfTransfer, UnknownAccount,
    check_amount,
)


class TransferPolicy:
    """
    Pure validation rules for peer-to-peer point transfers.

    Checks, in order:
        1. amount is an int, positive, and at least min_amount (InvalidAmount)
        2. sender and receiver differ (SelfTransfer)
        3. both accounts exist and are active (UnknownAccount)

    The system account never resolves here; system-sourced categories go
    through LedgerService.issue().
    """

    def __init__(self, min_amount: int = MIN_TRANSFER_AMOUNT):
        if isinstance(min_amount, bool) or not isinstance(min_amount, int) or min_amount < 1:
            raise ValueError(f"min_amount must be a positive int, got {min_amount!r}")
        self.min_amount = min_amount

    def validate(
        self,
        from_id: AccountId,
        to_id: AccountId,
        amount: int,
        accounts: AccountView,
        kind: TransferType = TransferType.ACCOUNT_TO_ACCOUNT,
        data_id: Optional[Any] = None,
    ) -> TransferIntent:
        """
        Validate a transfer request.

        Args:
            from_id: Sending account
            to_id: Receiving account
            amount: Points to move
            accounts: Read-only account lookup
            kind: Transfer category (must be a peer category)
            data_id: Business reference (default: the receiver id)

        Returns:
            A TransferIntent ready for LedgerService

        Raises:
            InvalidAmount, SelfTransfer, UnknownAccount
            ValueError: If kind is not a peer category
        """
        if not kind.is_peer:
            raise ValueError(f"{kind.value} transfers are issued by the system, not validated here")
        check_amount(amount, self.min_amount)
        if from_id == to_id:
            raise SelfTransfer(f"Cannot transfer from {from_id!r} to itself")
        for account_id in (from_id, to_id):
            if not self.resolves(account_id, accounts):
                raise UnknownAccount(f"Account {account_id!r} does not exist or is inactive")
        return TransferIntent(
            from_id=from_id,
            to_id=to_id,
            amount=amount,
            kind=kind,
            data_id=to_id if data_id is None else data_id,
        )

    @staticmethod
    def resolves(account_id: AccountId, accounts: AccountView) -> bool:
        """True if the id names an existing, active, non-system account."""
        if account_id == SYSTEM_ACCOUNT:
            return False
        return accounts.exists(account_id) and accounts.is_active(account_id)


def validate_transfer(
    from_id: AccountId,
    to_id: AccountId,
    amount: int,
    accounts: AccountView,
    min_amount: int = MIN_TRANSFER_AMOUNT,
) -> TransferIntent:
    """Validate with a default policy. See TransferPolicy.validate."""
    return TransferPolicy(min_amount).validate(from_id, to_id, amount, accounts)
