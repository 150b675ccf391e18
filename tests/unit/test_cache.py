"""Unit tests for the attachment cache and pending invoice queue.

The cache takes an injected clock, so expiry is tested without real timers.
"""

import pytest

from invoice_ingest.extraction.schema import Invoice
from invoice_ingest.storage.cache import AttachmentCache, PendingInvoiceQueue


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> AttachmentCache:
    return AttachmentCache(ttl_seconds=3600, clock=clock)


class TestAttachmentCache:
    """TTL cache behaviour."""

    def test_put_and_get(self, cache: AttachmentCache) -> None:
        cache.put("INV_1.pdf", b"%PDF-1")

        entry = cache.get("INV_1.pdf")

        assert entry is not None
        assert entry.data == b"%PDF-1"
        assert entry.content_type == "application/pdf"

    def test_missing_entry(self, cache: AttachmentCache) -> None:
        assert cache.get("nope.pdf") is None

    def test_entry_alive_until_ttl(self, cache: AttachmentCache, clock: FakeClock) -> None:
        cache.put("INV_1.pdf", b"data")

        clock.advance(3600)

        assert cache.get("INV_1.pdf") is not None

    def test_expired_entry_is_evicted_on_read(
        self, cache: AttachmentCache, clock: FakeClock
    ) -> None:
        cache.put("INV_1.pdf", b"data")

        clock.advance(3601)

        assert cache.get("INV_1.pdf") is None
        assert cache.keys() == []

    def test_put_refreshes_timestamp(self, cache: AttachmentCache, clock: FakeClock) -> None:
        cache.put("INV_1.pdf", b"old")
        clock.advance(3000)
        cache.put("INV_1.pdf", b"new")
        clock.advance(3000)

        entry = cache.get("INV_1.pdf")

        assert entry is not None
        assert entry.data == b"new"

    def test_purge_expired(self, cache: AttachmentCache, clock: FakeClock) -> None:
        cache.put("old.pdf", b"a")
        clock.advance(2000)
        cache.put("new.pdf", b"bc")
        clock.advance(2000)

        removed = cache.purge_expired()

        assert removed == 1
        assert cache.keys() == ["new.pdf"]
        assert cache.stats() == {"count": 1, "size_bytes": 2}

    def test_unread_expired_entry_dropped_on_later_put(
        self, cache: AttachmentCache, clock: FakeClock
    ) -> None:
        cache.put("forgotten.pdf", b"x" * 10)
        clock.advance(3601)

        cache.put("INV_2.pdf", b"data")

        assert cache.keys() == ["INV_2.pdf"]
        assert cache.stats() == {"count": 1, "size_bytes": 4}

    def test_delete_and_clear(self, cache: AttachmentCache) -> None:

        cache.put("a.pdf", b"a")
        cache.put("b.pdf", b"b")

        assert cache.delete("a.pdf") is True
        assert cache.delete("a.pdf") is False

        cache.clear()
        assert cache.stats() == {"count": 0, "size_bytes": 0}

    @pytest.mark.parametrize("ttl", [0, -1])
    def test_ttl_must_be_positive(self, ttl: float) -> None:
        with pytest.raises(ValueError, match="ttl_seconds"):
            AttachmentCache(ttl_seconds=ttl)


class TestPendingInvoiceQueue:
    """FIFO queue of extracted invoices."""

    def test_enqueue_and_drain_in_order(self) -> None:
        queue = PendingInvoiceQueue()
        invoices = [Invoice(invoice_number=str(n)) for n in range(3)]

        assert queue.enqueue(invoices) == 3
        drained = queue.drain()

        assert [inv.invoice_number for inv in drained] == ["0", "1", "2"]
        assert queue.size() == 0

    def test_drain_respects_max_items(self) -> None:
        queue = PendingInvoiceQueue()
        queue.enqueue(Invoice(invoice_number=str(n)) for n in range(150))

        first = queue.drain()
        rest = queue.drain(max_items=500)

        assert len(first) == 100
        assert first[0].invoice_number == "0"
        assert len(rest) == 50
        assert rest[0].invoice_number == "100"

    def test_drain_empty_and_non_positive(self) -> None:
        queue = PendingInvoiceQueue()
        queue.enqueue([Invoice(invoice_number="1")])

        assert queue.drain(max_items=0) == []
        assert queue.size() == 1
        assert queue.drain() != []
        assert queue.drain() == []

    def test_full_queue_drops_oldest(self) -> None:
        queue = PendingInvoiceQueue(max_items=3)
        queue.enqueue(Invoice(invoice_number=str(n)) for n in range(2))

        assert queue.enqueue(Invoice(invoice_number=str(n)) for n in range(2, 5)) == 3

        assert queue.size() == 3
        assert [inv.invoice_number for inv in queue.drain()] == ["2", "3", "4"]

    @pytest.mark.parametrize("max_items", [0, -5])
    def test_max_items_must_be_positive(self, max_items: int) -> None:
        with pytest.raises(ValueError, match="max_items"):
            PendingInvoiceQueue(max_items=max_items)
