"""Split a multi-invoice source PDF into one PDF per invoice.

Page attribution comes from the extraction service (``pageNumbers`` /
``pageNumber``, 1-indexed) and may be approximate, so bad page references are
skipped rather than treated as errors. Only an unreadable source document is
fatal.

Uses pypdf: https://pypdf.readthedocs.io/
"""

import io
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from pypdf import PdfReader, PdfWriter

from invoice_ingest.extraction.schema import Invoice, coerce_page

logger = logging.getLogger(__name__)


class PdfSplitError(ValueError):
    """Source PDF bytes could not be read; the whole batch fails."""


def _page_tuple(values: Any) -> tuple[int, ...] | None:
    if not isinstance(values, Sequence) or isinstance(values, str | bytes):
        return None
    pages = tuple(page for page in map(coerce_page, values) if page is not None)
    return pages or None


@dataclass(frozen=True)
class PageSelection:
    """Pages of the source document attributed to one invoice.

    Attributes:
        key: Per-invoice key used in the output mapping
        page_numbers: Ordered 1-indexed pages, possibly non-contiguous
        page_number: Single 1-indexed page (used when page_numbers is absent)
    """

    key: str
    page_numbers: tuple[int, ...] | None = None
    page_number: int | None = None

    @classmethod
    def from_invoice(cls, invoice: Invoice, fallback_key: str) -> "PageSelection":
        """Build a selection from an extracted invoice.

        Args:
            invoice: Extracted invoice
            fallback_key: Key used when the invoice has neither id nor number

        Returns:
            PageSelection keyed by invoice id, invoice number or fallback_key
        """
        return cls(
            key=invoice.id or invoice.invoice_number or fallback_key,
            page_numbers=_page_tuple(invoice.page_numbers),
            page_number=invoice.page_number,
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], fallback_key: str) -> "PageSelection":
        """Build a selection from a raw invoice dict in wire form."""
        key = data.get("invoiceKey") or data.get("id") or data.get("invoiceNumber")
        return cls(
            key=str(key) if key else fallback_key,
            page_numbers=_page_tuple(data.get("pageNumbers")),
            page_number=coerce_page(data.get("pageNumber")),
        )

    def requested_pages(self) -> list[int] | None:
        """Requested pages in order, or None when no usable page info is present.

        Entries that are not whole numbers are skipped.
        """
        pages = [page for page in map(coerce_page, self.page_numbers or ()) if page is not None]
        if pages:
            return pages
        single = coerce_page(self.page_number)
        return [single] if single is not None else None


SelectionSource = PageSelection | Invoice | Mapping[str, Any]


def _default_fallback(index: int) -> str:
    return f"invoice-{index + 1}"


def build_selections(
    invoices: Sequence[SelectionSource],
    fallback_key: Callable[[int], str] = _default_fallback,
) -> list[PageSelection]:
    """Normalize invoices to page selections with keys unique within the batch.

    The first invoice holding a key keeps it; later ones get ``<key>-<position>``
    (1-indexed), extended further if that is taken too.

    Args:
        invoices: Selections, extracted invoices or raw invoice dicts
        fallback_key: Key for position ``index`` when an invoice has no id or number

    Returns:
        One selection per invoice, in input order
    """
    selections: list[PageSelection] = []
    seen: set[str] = set()

    for index, item in enumerate(invoices):
        if isinstance(item, PageSelection):
            selection = item
        elif isinstance(item, Invoice):
            selection = PageSelection.from_invoice(item, fallback_key(index))
        else:
            selection = PageSelection.from_mapping(item, fallback_key(index))

        key = selection.key
        while key in seen:
            key = f"{key}-{index + 1}"
        if key != selection.key:
            logger.info(f"Duplicate invoice key {selection.key!r}, using {key!r}")
            selection = PageSelection(key, selection.page_numbers, selection.page_number)

        seen.add(key)
        selections.append(selection)

    return selections


def _open(source: bytes) -> PdfReader:
    try:
        reader = PdfReader(io.BytesIO(source))
        # Force the page tree to load so broken trailers fail here.
        len(reader.pages)
    except Exception as e:
        raise PdfSplitError(f"Source PDF could not be read: {e}") from e
    return reader


def count_pages(source: bytes) -> int:
    """Count pages in a PDF.

    Raises:
        PdfSplitError: If the bytes are not a readable PDF
    """
    return len(_open(source).pages)


def _write_pages(reader: PdfReader, indexes: list[int]) -> bytes:
    writer = PdfWriter()
    for index in indexes:
        writer.add_page(reader.pages[index])
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def split_pdf_by_invoices(source: bytes, invoices: Sequence[SelectionSource]) -> dict[str, bytes]:
    """Produce one PDF per invoice from a shared source document.

    Rules:
    - exactly one invoice: the source bytes are returned as-is
    - page list given: a new document with exactly those pages, in the
      listed order (out-of-range and non-integer pages are skipped; a page
      listed twice appears twice)
    - no page info, or no page in range: the whole source document

    Keys follow build_selections, so invoices sharing a number still get
    separate entries.

    Args:
        source: Source PDF bytes (never modified)
        invoices: Page selections, extracted invoices or raw invoice dicts

    Returns:
        Mapping of invoice key to PDF bytes

    Raises:
        PdfSplitError: If the source PDF cannot be read
    """
    selections = build_selections(invoices)
    if not selections:
        return {}

    if len(selections) == 1:
        return {selections[0].key: source}

    reader = _open(source)
    page_count = len(reader.pages)
    split: dict[str, bytes] = {}

    for selection in selections:
        requested = selection.requested_pages()
        if requested is None:
            logger.info(f"No page info for invoice {selection.key}, attaching full document")
            split[selection.key] = source
            continue

        indexes: list[int] = []
        for page in requested:
            if 1 <= page <= page_count:
                indexes.append(page - 1)
            else:
                logger.warning(
                    f"Skipping page {page} for invoice {selection.key}: "
                    f"source has {page_count} pages"
                )

        if not indexes:
            logger.warning(
                f"No valid pages for invoice {selection.key}, attaching full document"
            )
            split[selection.key] = source
            continue

        split[selection.key] = _write_pages(reader, indexes)
        logger.debug(f"Split invoice {selection.key}: pages {[i + 1 for i in indexes]}")

    return split
