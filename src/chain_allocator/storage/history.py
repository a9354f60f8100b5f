"""Local key/value persistence: transaction history and portfolio value points."""

import json
import logging
import os
import tempfile
import uuid
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Protocol

from chain_allocator.core.models import (
    ExecutionStatus,
    TransactionRecord,
    TransactionStats,
    TransactionType,
    utc_now,
)
from chain_allocator.errors import ChainAllocatorError

logger = logging.getLogger(__name__)


class HistoryError(ChainAllocatorError):
    """Exception raised for unknown records or backward status transitions."""


class KeyValueStore(Protocol):
    """Minimal key/value interface; a missing key reads as None."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store, mainly for tests and one-shot CLI runs."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def get(self, key: str) -> Any | None:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """
    Key/value store persisted as one JSON document.

    A missing or unreadable file is treated as empty. Writes go to a temporary
    file that replaces the original, so a crash never leaves half a document.

    Parameters
    ----------
    path : Path
        Location of the JSON document

    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._data: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._data is None:
            try:
                with open(self.path, encoding="utf-8") as f:
                    self._data = json.load(f)
            except FileNotFoundError:
                self._data = {}
            except (OSError, ValueError) as e:
                logger.warning("Ignoring unreadable state file %s: %s", self.path, e)
                self._data = {}
        return self._data

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".state-", suffix=".json")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(self._load(), f, indent=2)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Any | None:
        return self._load().get(key)

    def set(self, key: str, value: Any) -> None:
        self._load()[key] = value
        self._flush()

    def delete(self, key: str) -> None:
        if self._load().pop(key, None) is not None:
            self._flush()


class PortfolioValueStore:
    """
    Last known portfolio value per wallet, overwritten on every snapshot.

    Parameters
    ----------
    store : KeyValueStore
        Backing store

    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    @staticmethod
    def _key(wallet: str) -> str:
        return f"portfolio_value:{wallet.lower()}"

    def get(self, wallet: str) -> tuple[Decimal, datetime] | None:
        """Previous (value, taken_at) for ``wallet``, or None if never stored."""
        entry = self.store.get(self._key(wallet))
        if not entry:
            return None
        return Decimal(entry["value_usd"]), datetime.fromisoformat(entry["taken_at"])

    def put(self, wallet: str, value_usd: Decimal, taken_at: datetime) -> None:
        self.store.set(self._key(wallet), {"value_usd": str(value_usd), "taken_at": taken_at.isoformat()})


class TransactionHistory:
    """
    Append-only transaction log keyed by wallet.

    Status only moves forward (pending, confirming, then completed or failed).
    Terminal records are frozen except for gas-cost and profit annotations.

    Parameters
    ----------
    store : KeyValueStore
        Backing store
    max_records : int
        Per-wallet cap; the oldest records are dropped beyond it
    clock : Callable[[], datetime]
        Time source, injectable for tests

    """

    def __init__(
        self,
        store: KeyValueStore,
        max_records: int = 500,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.max_records = max_records
        self._clock = clock

    @staticmethod
    def _key(wallet: str) -> str:
        return f"tx_history:{wallet.lower()}"

    def _load(self, wallet: str) -> list[TransactionRecord]:
        raw = self.store.get(self._key(wallet)) or []
        return [TransactionRecord.model_validate(item) for item in raw]

    def _save(self, wallet: str, records: list[TransactionRecord]) -> None:
        self.store.set(self._key(wallet), [r.model_dump(mode="json") for r in records[-self.max_records :]])

    def record(
        self,
        wallet: str,
        type: TransactionType,
        from_chain: int,
        to_chain: int,
        from_token: str,
        to_token: str,
        from_amount: str,
        tool: str | None = None,
        tx_hash: str | None = None,
        status: ExecutionStatus = ExecutionStatus.PENDING,
    ) -> TransactionRecord:
        """
        Append a new record.

        Returns
        -------
        TransactionRecord
            The stored record with a fresh id

        """
        now = self._clock()
        record = TransactionRecord(
            id=uuid.uuid4().hex,
            wallet=wallet.lower(),
            type=type,
            status=status,
            from_chain=from_chain,
            to_chain=to_chain,
            from_token=from_token,
            to_token=to_token,
            from_amount=from_amount,
            tool=tool,
            tx_hash=tx_hash,
            created_at=now,
            updated_at=now,
        )
        records = self._load(wallet)
        records.append(record)
        self._save(wallet, records)
        logger.info("Recorded %s transaction %s for %s", type.value, record.id, record.wallet)
        return record

    def _replace(self, wallet: str, record_id: str, **changes: Any) -> TransactionRecord:
        records = self._load(wallet)
        for i, record in enumerate(records):
            if record.id == record_id:
                updated = record.model_copy(update={**changes, "updated_at": self._clock()})
                records[i] = updated
                self._save(wallet, records)
                return updated
        msg = f"Unknown transaction record {record_id}"
        raise HistoryError(msg)

    def update_status(
        self,
        wallet: str,
        record_id: str,
        status: ExecutionStatus,
        tx_hash: str | None = None,
        to_amount: str | None = None,
        error: str | None = None,
    ) -> TransactionRecord:
        """
        Move a record forward in its lifecycle.

        Raises
        ------
        HistoryError
            If the record is unknown, already terminal, or the move goes backward

        """
        current = self.get(wallet, record_id)
        if current is None:
            msg = f"Unknown transaction record {record_id}"
            raise HistoryError(msg)
        if current.status == status:
            return current
        if current.status.is_terminal or status.rank < current.status.rank:
            msg = f"Cannot move transaction {record_id} from {current.status.value} to {status.value}"
            raise HistoryError(msg)

        changes: dict[str, Any] = {"status": status}
        if tx_hash:
            changes["tx_hash"] = tx_hash
        if to_amount:
            changes["to_amount"] = to_amount
        if error:
            changes["error"] = error
        logger.debug("Transaction %s: %s -> %s", record_id, current.status.value, status.value)
        return self._replace(wallet, record_id, **changes)

    def annotate(
        self,
        wallet: str,
        record_id: str,
        gas_cost_usd: Decimal | None = None,
        profit_usd: Decimal | None = None,
    ) -> TransactionRecord:
        """Attach cost and profit figures, which may arrive after completion."""
        changes: dict[str, Any] = {}
        if gas_cost_usd is not None:
            changes["gas_cost_usd"] = gas_cost_usd
        if profit_usd is not None:
            changes["profit_usd"] = profit_usd
        return self._replace(wallet, record_id, **changes)

    def get(self, wallet: str, record_id: str) -> TransactionRecord | None:
        return next((r for r in self._load(wallet) if r.id == record_id), None)

    def query(
        self,
        wallet: str,
        limit: int | None = None,
        type: TransactionType | None = None,
        status: ExecutionStatus | None = None,
    ) -> list[TransactionRecord]:
        """
        Records for a wallet, newest first.

        Parameters
        ----------
        wallet : str
            Wallet address
        limit : int | None
            Maximum number of records returned
        type : TransactionType | None
            Keep only this transaction type
        status : ExecutionStatus | None
            Keep only this status

        Returns
        -------
        list[TransactionRecord]
            Matching records

        """
        records = [
            r
            for r in reversed(self._load(wallet))
            if (type is None or r.type == type) and (status is None or r.status == status)
        ]
        return records[:limit] if limit is not None else records

    def pending(self, wallet: str) -> list[TransactionRecord]:
        """Records still awaiting settlement."""
        return [r for r in self.query(wallet) if not r.status.is_terminal]

    def stats(self, wallet: str) -> TransactionStats:
        records = self._load(wallet)
        return TransactionStats(
            total=len(records),
            completed=sum(1 for r in records if r.status == ExecutionStatus.COMPLETED),
            failed=sum(1 for r in records if r.status == ExecutionStatus.FAILED),
            pending=sum(1 for r in records if not r.status.is_terminal),
            total_gas_usd=sum((r.gas_cost_usd or Decimal("0") for r in records), Decimal("0")),
            total_profit_usd=sum((r.profit_usd or Decimal("0") for r in records), Decimal("0")),
        )
