"""
APScheduler Configuration for Transaction Expiry

Runs a periodic sweep evicting abandoned transactions from the store.
Jobs live in memory only; nothing survives a restart, and neither do the
transactions they sweep.
"""
import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.executors.asyncio import AsyncIOExecutor

from .transaction_store import TransactionStore

logger = logging.getLogger(__name__)

EXPIRY_JOB_ID = "transaction_expiry_sweep"


class ExpiryScheduler:
    """
    Scheduler owning the transaction expiry sweep.

    Must be started from inside a running event loop (FastAPI lifespan).
    """

    def __init__(self, store: TransactionStore, interval_minutes: float = 5):
        """
        Configure APScheduler.

        Configuration:
        - AsyncIOScheduler for async job execution
        - MemoryJobStore (no persistence)
        - Coalesce: True (skip missed runs)
        - Max instances: 1 (sweeps never overlap)
        """
        self.store = store
        self.interval_minutes = interval_minutes

        self._scheduler = AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': AsyncIOExecutor()},
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 60
            },
            timezone='UTC'
        )

        logger.info(f"Expiry scheduler initialized (interval: {interval_minutes}m)")

    @property
    def running(self) -> bool:
        return self._scheduler.running

    async def sweep(self) -> int:
        """Evict expired transactions. Returns the number evicted."""
        return await self.store.purge_expired()

    def start(self):
        """
        Start the scheduler and register the sweep job.

        Should be called during FastAPI app startup.
        """
        if self._scheduler.running:
            logger.warning("Scheduler already running")
            return

        self._scheduler.add_job(
            self.sweep,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=EXPIRY_JOB_ID,
            name="Transaction expiry sweep",
            replace_existing=True
        )
        self._scheduler.start()

        next_run = self._scheduler.get_job(EXPIRY_JOB_ID).next_run_time
        logger.info(f"Scheduler started. Expiry sweep next_run={next_run}")

    def shutdown(self, wait: bool = True):
        """
        Shutdown the scheduler gracefully.

        Args:
            wait: Wait for a running sweep to complete before shutdown
        """
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info(f"Scheduler shutdown (wait={wait})")

    def get_job(self, job_id: str = EXPIRY_JOB_ID):
        """Return the APScheduler Job or None if not registered."""
        return self._scheduler.get_job(job_id)
