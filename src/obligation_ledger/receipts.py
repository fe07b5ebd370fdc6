"""Receipt text extraction queue.

Receipts are processed asynchronously with at-least-once delivery: a job
whose extraction or storage fails is put back on the queue until it has
been tried `max_attempts` times. Processing is idempotent per receipt_key,
so a redelivered job for a receipt that already has stored output is
acknowledged without calling the extractor again.

Usage:
    queue = ReceiptQueue(expense_service, extractor, max_attempts=3)
    await queue.submit("rcpt-42", image_bytes)
    stats = await queue.drain()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from obligation_ledger.schemas import Extraction

if TYPE_CHECKING:
    from obligation_ledger.services.expense_service import ExpenseService

logger = logging.getLogger(__name__)


class ReceiptTextExtractor(Protocol):
    """Anything that turns receipt image bytes into text and fields."""

    def extract(self, image_bytes: bytes) -> Extraction: ...


@dataclass
class ReceiptJob:
    receipt_key: str
    image_bytes: bytes
    attempts: int = 0


@dataclass
class QueueStats:
    """Outcome counters for a drained queue."""

    processed: list[str] = field(default_factory=list)
    already_processed: list[str] = field(default_factory=list)
    retried: int = 0
    failed: dict[str, str] = field(default_factory=dict)


class ReceiptQueue:
    """asyncio work queue feeding receipts through an extractor."""

    def __init__(
        self,
        expenses: ExpenseService,
        extractor: ReceiptTextExtractor,
        *,
        max_attempts: int = 3,
        workers: int = 1,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.expenses = expenses
        self.extractor = extractor
        self.max_attempts = max_attempts
        self.workers = workers
        self.stats = QueueStats()
        self._queue: asyncio.Queue[ReceiptJob] = asyncio.Queue()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def submit(self, receipt_key: str, image_bytes: bytes) -> None:
        """Enqueue a receipt. Submitting the same key twice is harmless."""
        await self._queue.put(ReceiptJob(receipt_key=receipt_key, image_bytes=image_bytes))

    async def drain(self) -> QueueStats:
        """Run workers until every job (including retries) is settled."""
        tasks = [asyncio.create_task(self._worker()) for _ in range(self.workers)]
        try:
            await self._queue.join()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        return self.stats

    async def _worker(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._handle(job)
            finally:
                self._queue.task_done()

    async def _handle(self, job: ReceiptJob) -> None:
        job.attempts += 1
        try:
            # Ledger writes and OCR both block; keep them off the event loop
            if await asyncio.to_thread(self.expenses.is_receipt_processed, job.receipt_key):
                logger.info("Receipt %s already processed; acknowledged", job.receipt_key)
                self.stats.already_processed.append(job.receipt_key)
                return
            extraction = await asyncio.to_thread(self.extractor.extract, job.image_bytes)
            await asyncio.to_thread(
                self.expenses.apply_receipt_extraction, job.receipt_key, extraction
            )
        except Exception as e:
            if job.attempts < self.max_attempts:
                logger.warning(
                    "Receipt %s attempt %d/%d failed: %s; requeueing",
                    job.receipt_key,
                    job.attempts,
                    self.max_attempts,
                    e,
                )
                self.stats.retried += 1
                await self._queue.put(job)
            else:
                logger.exception(
                    "Receipt %s failed after %d attempts", job.receipt_key, job.attempts
                )
                self.stats.failed[job.receipt_key] = f"{type(e).__name__}: {e}"
            return

        self.stats.processed.append(job.receipt_key)
        logger.info("Receipt %s processed on attempt %d", job.receipt_key, job.attempts)
