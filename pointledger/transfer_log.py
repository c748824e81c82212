"""
transfer_log.py - Append-only audit trail of committed transfers

TransferLog keeps every TransferRecord in memory, in record_id order.
JsonlTransferLog additionally writes each record to a JSON-lines file and
reloads it on startup.

Records are never mutated or removed. Appends are serialized by the log's
own lock; reads never block on it for long.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import IO, Any, Callable, Dict, Iterator, List, Optional, Tuple, Union
import json
import os
import threading

from .core import (
    AccountId, TransferRecord, TransferType,
    PersistenceFailure,
)


class TransferLog:
    """
    In-memory append-only transfer log.

    Subclasses that store records durably override _persist(); a record is
    only visible to readers after _persist() returns.
    """

    def __init__(self):
        self._records: List[TransferRecord] = []
        # Inverted index account -> positions in _records, for per-account reads
        self._by_account: Dict[AccountId, List[int]] = defaultdict(list)
        self._next_id = 1
        self._lock = threading.Lock()

    # ========================================================================
    # WRITE
    # ========================================================================

    def append(
        self,
        record: TransferRecord,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> int:
        """
        Assign the next record id, persist and publish the record.

        Any record_id already on the record is replaced. When a clock is given
        the timestamp is replaced too, read under the log lock so timestamp
        order follows record_id order.

        Returns:
            The assigned record id

        Raises:
            PersistenceFailure: If the record could not be stored. The id is
                                not consumed and nothing is published.
        """
        with self._lock:
            stored = replace(record, record_id=self._next_id)
            if clock is not None:
                stored = replace(stored, timestamp=clock())
            self._persist(stored)
            self._publish(stored)
            self._next_id += 1
            return stored.record_id

    def _persist(self, record: TransferRecord) -> None:
        """Durably store a record. The in-memory log stores nothing extra."""

    def _publish(self, record: TransferRecord) -> None:
        position = len(self._records)
        self._records.append(record)
        self._by_account[record.from_id].append(position)
        self._by_account[record.to_id].append(position)

    # ========================================================================
    # READ
    # ========================================================================

    def get(self, record_id: int) -> TransferRecord:
        """
        Return the record with the given id.

        Raises:
            KeyError: If no such record exists
        """
        if record_id < 1 or record_id > len(self._records):
            raise KeyError(f"Transfer record {record_id} not found")
        return self._records[record_id - 1]

    def list_for_account(self, account_id: AccountId) -> List[TransferRecord]:
        """All records involving an account, ascending by record id."""
        positions = list(self._by_account.get(account_id, ()))
        return [self._records[p] for p in positions]

    def page_for_account(
        self,
        account_id: AccountId,
        offset: int,
        limit: int,
    ) -> Tuple[List[TransferRecord], int]:
        """
        A window of an account's records, ascending, plus the total count.

        Raises:
            ValueError: If offset is negative or limit is not positive
        """
        if offset < 0:
            raise ValueError(f"offset must be >= 0, got {offset}")
        if limit <= 0:
            raise ValueError(f"limit must be > 0, got {limit}")
        positions = list(self._by_account.get(account_id, ()))
        window = positions[offset:offset + limit]
        return [self._records[p] for p in window], len(positions)

    @property
    def last_id(self) -> int:
        """Id of the most recent record (0 when empty)."""
        return len(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[TransferRecord]:
        return iter(list(self._records))


# ============================================================================
# FILE-BACKED LOG
# ============================================================================

def record_to_dict(record: TransferRecord) -> Dict[str, Any]:
    """Serialize a record to JSON-compatible primitives."""
    return {
        "record_id": record.record_id,
        "from_id": record.from_id,
        "to_id": record.to_id,
        "kind": record.kind.value,
        "amount": record.amount,
        "timestamp": record.timestamp.isoformat(),
        "data_id": record.data_id,
        "from_balance": record.from_balance,
        "to_balance": record.to_balance,
    }


def record_from_dict(data: Dict[str, Any]) -> TransferRecord:
    """Inverse of record_to_dict."""
    return TransferRecord(
        record_id=data["record_id"],
        from_id=data["from_id"],
        to_id=data["to_id"],
        kind=TransferType(data["kind"]),
        amount=data["amount"],
        timestamp=datetime.fromisoformat(data["timestamp"]),
        data_id=data.get("data_id"),
        from_balance=data.get("from_balance"),
        to_balance=data.get("to_balance"),
    )


class JsonlTransferLog(TransferLog):
    """
    Transfer log backed by a JSON-lines file, one record per line.

    Each append is flushed and fsynced before the record becomes visible.
    Opening an existing file replays it into memory. One append handle is
    kept open between appends; close() releases it.

    Example:
        with JsonlTransferLog("transfers.jsonl") as log:
            service = LedgerService.from_log(log)
    """

    def __init__(self, path: Union[str, Path], fsync: bool = True):
        super().__init__()
        self.path = Path(path)
        self.fsync = fsync
        self._handle: Optional[IO[str]] = None
        self._load()

    def __enter__(self) -> JsonlTransferLog:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._handle is None

    def close(self) -> None:
        """Close the append handle. A later append reopens the file."""
        with self._lock:
            if self._handle is not None:
                self._handle.close()
                self._handle = None

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                for line_no, line in enumerate(fh, start=1):
                    if not line.strip():
                        continue
                    record = record_from_dict(json.loads(line))
                    if record.record_id != self._next_id:
                        raise PersistenceFailure(
                            f"{self.path}:{line_no}: expected record {self._next_id}, "
                            f"found {record.record_id}"
                        )
                    self._publish(record)
                    self._next_id += 1
        except (OSError, ValueError, KeyError) as e:
            raise PersistenceFailure(f"Cannot load transfer log {self.path}: {e}") from e

    def _persist(self, record: TransferRecord) -> None:
        try:
            line = json.dumps(record_to_dict(record), sort_keys=True)
        except TypeError as e:
            raise PersistenceFailure(f"Record {record.record_id} is not serializable: {e}") from e
        try:
            if self._handle is None:
                self._handle = self.path.open("a", encoding="utf-8")
            fh = self._handle
            start = fh.tell()
            try:
                fh.write(line + "\n")
                fh.flush()
                if self.fsync:
                    os.fsync(fh.fileno())
            except OSError:
                # Drop a half-written line so the file still loads; reopen next time
                self._handle = None
                try:
                    fh.truncate(start)
                finally:
                    fh.close()
                raise
        except OSError as e:
            raise PersistenceFailure(f"Cannot append to {self.path}: {e}") from e


def open_log(path: Optional[Union[str, Path]] = None) -> TransferLog:
    """Return a file-backed log when a path is given, else an in-memory one."""
    if path is None:
        return TransferLog()
    return JsonlTransferLog(path)
