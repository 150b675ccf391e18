"""In-process holding areas owned by the application instance.

AttachmentCache keeps split invoice PDFs retrievable for a limited time when
object storage is not configured. PendingInvoiceQueue hands freshly extracted
invoices to whoever polls for them next.

Both take their time source / state explicitly so tests need no real timers.
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from invoice_ingest.extraction.schema import Invoice

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedAttachment:
    """Stored attachment bytes with insertion time (clock units)."""

    data: bytes
    content_type: str
    stored_at: float


class AttachmentCache:
    """TTL cache of attachment bytes keyed by filename.

    Expired entries are evicted on read and whenever a new entry is stored.

    Attributes:
        ttl_seconds: Lifetime of an entry
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize cache.

        Args:
            ttl_seconds: Lifetime of an entry
            clock: Monotonic time source in seconds
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CachedAttachment] = {}
        self._lock = threading.Lock()

    def _expired(self, entry: CachedAttachment, now: float) -> bool:
        return now - entry.stored_at > self.ttl_seconds

    def _drop_expired(self, now: float) -> int:
        # Caller holds the lock.
        expired = [name for name, entry in self._entries.items() if self._expired(entry, now)]
        for name in expired:
            del self._entries[name]
        return len(expired)

    def put(self, filename: str, data: bytes, content_type: str = "application/pdf") -> None:
        """Store an entry, dropping any that expired without being read."""
        with self._lock:
            now = self._clock()
            removed = self._drop_expired(now)
            self._entries[filename] = CachedAttachment(data, content_type, now)
        if removed:
            logger.info(f"Purged {removed} expired attachment(s)")

    def get(self, filename: str) -> CachedAttachment | None:
        """Return a live entry, evicting it if it has expired."""
        with self._lock:
            entry = self._entries.get(filename)
            if entry is None:
                return None
            if self._expired(entry, self._clock()):
                del self._entries[filename]
                logger.info(f"Evicted expired attachment: {filename}")
                return None
            return entry

    def delete(self, filename: str) -> bool:
        with self._lock:
            return self._entries.pop(filename, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry.

        Returns:
            Number of entries removed
        """
        with self._lock:
            removed = self._drop_expired(self._clock())
        if removed:
            logger.info(f"Purged {removed} expired attachment(s)")
        return removed

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "count": len(self._entries),
                "size_bytes": sum(len(entry.data) for entry in self._entries.values()),
            }


class PendingInvoiceQueue:
    """Bounded FIFO of extracted invoices awaiting pickup.

    When full, enqueueing drops the oldest invoices.
    """

    def __init__(self, max_items: int = 1000) -> None:
        if max_items <= 0:
            raise ValueError("max_items must be positive")
        self.max_items = max_items
        self._items: deque[Invoice] = deque(maxlen=max_items)
        self._lock = threading.Lock()

    def enqueue(self, invoices: Iterable[Invoice]) -> int:
        """Append invoices.

        Returns:
            Number of invoices added
        """
        batch = list(invoices)
        with self._lock:
            dropped = max(len(self._items) + len(batch) - self.max_items, 0)
            self._items.extend(batch)
        if dropped:
            logger.warning(f"Pending queue full, dropped {dropped} oldest invoice(s)")
        return len(batch)

    def drain(self, max_items: int = 100) -> list[Invoice]:
        """Remove and return up to max_items invoices, oldest first."""
        with self._lock:
            count = min(max(max_items, 0), len(self._items))
            return [self._items.popleft() for _ in range(count)]

    def size(self) -> int:
        with self._lock:
            return len(self._items)
