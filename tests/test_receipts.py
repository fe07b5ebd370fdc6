"""Tests for the asynchronous receipt extraction queue."""

import threading
from decimal import Decimal

import pytest

from obligation_ledger.receipts import ReceiptQueue
from obligation_ledger.schemas import Extraction, ReceiptFields


class FakeExtractor:
    """Extractor that fails a configured number of times before succeeding."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = 0

    def extract(self, image_bytes: bytes) -> Extraction:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("OCR backend unavailable")
        return Extraction(
            text=image_bytes.decode(),
            confidence=Decimal("97"),
            fields=ReceiptFields(vendor="Corner Hardware", total=Decimal("18.40")),
        )


@pytest.fixture
def receipt_key(expenses):
    expenses.attach_receipt("rcpt-100", "scan.png", "image/png")
    return "rcpt-100"


class TestReceiptQueue:
    @pytest.mark.asyncio
    async def test_processes_receipt(self, expenses, receipt_key):
        extractor = FakeExtractor()
        queue = ReceiptQueue(expenses, extractor)

        await queue.submit(receipt_key, b"CORNER HARDWARE 18.40")
        stats = await queue.drain()

        assert stats.processed == [receipt_key]
        receipt = expenses.get_receipt(receipt_key)
        assert receipt.ocr_processed
        assert receipt.ocr_text == "CORNER HARDWARE 18.40"
        assert receipt.ocr_fields["vendor"] == "Corner Hardware"

    @pytest.mark.asyncio
    async def test_redelivery_is_acknowledged_without_extracting(self, expenses, receipt_key):
        extractor = FakeExtractor()
        queue = ReceiptQueue(expenses, extractor)

        await queue.submit(receipt_key, b"CORNER HARDWARE 18.40")
        await queue.submit(receipt_key, b"CORNER HARDWARE 18.40")
        stats = await queue.drain()

        assert extractor.calls == 1
        assert stats.processed == [receipt_key]
        assert stats.already_processed == [receipt_key]

    @pytest.mark.asyncio
    async def test_retries_until_success(self, expenses, receipt_key):
        extractor = FakeExtractor(failures=2)
        queue = ReceiptQueue(expenses, extractor, max_attempts=3)

        await queue.submit(receipt_key, b"CORNER HARDWARE 18.40")
        stats = await queue.drain()

        assert extractor.calls == 3
        assert stats.retried == 2
        assert stats.processed == [receipt_key]
        assert stats.failed == {}

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, expenses, receipt_key):
        extractor = FakeExtractor(failures=5)
        queue = ReceiptQueue(expenses, extractor, max_attempts=2)

        await queue.submit(receipt_key, b"CORNER HARDWARE 18.40")
        stats = await queue.drain()

        assert extractor.calls == 2
        assert stats.processed == []
        assert stats.failed[receipt_key].startswith("ConnectionError")
        assert expenses.is_receipt_processed(receipt_key) is False

    @pytest.mark.asyncio
    async def test_unknown_receipt_fails_without_extracting(self, expenses):
        extractor = FakeExtractor()
        queue = ReceiptQueue(expenses, extractor, max_attempts=1, workers=2)

        await queue.submit("never-attached", b"")
        stats = await queue.drain()

        assert extractor.calls == 0
        assert stats.failed["never-attached"].startswith("NotFoundError")

    def test_invalid_settings(self, expenses):
        with pytest.raises(ValueError):
            ReceiptQueue(expenses, FakeExtractor(), max_attempts=0)
        with pytest.raises(ValueError):
            ReceiptQueue(expenses, FakeExtractor(), workers=0)

    @pytest.mark.asyncio
    async def test_ledger_calls_run_off_the_event_loop(self, expenses, receipt_key, monkeypatch):
        loop_thread = threading.get_ident()
        seen: dict[str, int] = {}

        def recording(name):
            original = getattr(expenses, name)

            def call(*args):
                seen[name] = threading.get_ident()
                return original(*args)

            return call

        for name in ("is_receipt_processed", "apply_receipt_extraction"):
            monkeypatch.setattr(expenses, name, recording(name))
        queue = ReceiptQueue(expenses, FakeExtractor())

        await queue.submit(receipt_key, b"CORNER HARDWARE 18.40")
        stats = await queue.drain()

        assert stats.processed == [receipt_key]
        assert set(seen) == {"is_receipt_processed", "apply_receipt_extraction"}
        assert loop_thread not in seen.values()
