"""
Transaction Store

Registry associating a payment reference with its workflow state.

The store is injected into the checkout service so an expiring, persistent
backend can replace the in-memory one without touching the workflow.
All read-modify-write access goes through update(), which is the single
critical section serializing the direct authentication path and the
challenge callback path for a reference.
"""
import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional
import logging

from ..exceptions import TransactionNotFoundError
from ..models.transactions import TransactionRecord

logger = logging.getLogger(__name__)

Mutator = Callable[[TransactionRecord], TransactionRecord]


class TransactionStore(ABC):
    """Storage contract for transaction records."""

    @abstractmethod
    async def put(self, reference: str, record: TransactionRecord) -> None:
        """Store a record, replacing any record under the same reference."""

    @abstractmethod
    async def get(self, reference: str) -> TransactionRecord:
        """
        Retrieve a record.

        Raises:
            TransactionNotFoundError: If nothing is stored under reference
        """

    @abstractmethod
    async def update(self, reference: str, mutator: Mutator) -> TransactionRecord:
        """
        Atomically replace a record with mutator(record).

        If the mutator raises, the stored record is left untouched and the
        exception propagates.

        Raises:
            TransactionNotFoundError: If nothing is stored under reference
        """

    @abstractmethod
    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Evict expired records. Returns the number evicted."""

    @abstractmethod
    def __len__(self) -> int:
        """Number of in-flight records."""


class InMemoryTransactionStore(TransactionStore):
    """
    Process-local transaction store with time-based expiry.

    A restart loses every in-flight transaction.
    """

    def __init__(self, ttl_minutes: int = 30):
        """
        Initialize store.

        Args:
            ttl_minutes: Age after which purge_expired() evicts a record
        """
        self._records: Dict[str, TransactionRecord] = {}
        self._ttl = timedelta(minutes=ttl_minutes)
        self._lock = asyncio.Lock()

        logger.info(f"Transaction store initialized (ttl: {ttl_minutes}m)")

    def __len__(self) -> int:
        return len(self._records)

    async def put(self, reference: str, record: TransactionRecord) -> None:
        async with self._lock:
            if reference in self._records:
                logger.warning(f"Overwriting transaction record: {reference}")
            self._records[reference] = record
        logger.debug(f"Stored transaction record: {reference}")

    async def get(self, reference: str) -> TransactionRecord:
        record = self._records.get(reference)
        if record is None:
            raise TransactionNotFoundError(reference)
        return record

    async def update(self, reference: str, mutator: Mutator) -> TransactionRecord:
        async with self._lock:
            record = self._records.get(reference)
            if record is None:
                raise TransactionNotFoundError(reference)

            updated = mutator(record)
            self._records[reference] = updated
            return updated

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        cutoff = now - self._ttl

        async with self._lock:
            expired = [
                reference
                for reference, record in self._records.items()
                if record.created_at < cutoff
            ]
            for reference in expired:
                del self._records[reference]

        if expired:
            logger.info(f"Purged {len(expired)} expired transactions")

        return len(expired)
