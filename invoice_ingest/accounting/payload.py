"""Build the invoice payload posted to the Odoo bill-creation webhook.

Field names (``product_code``, ``unit_price``, ``discount``, ``subtotal``,
``tax_type``, ``amount``, ...) are dictated by the webhook and must not change.
"""

import re
import secrets
import string
import time
from typing import Any

from pydantic import BaseModel

from invoice_ingest.accounting.dates import normalize_date
from invoice_ingest.accounting.reconcile import reconcile_invoice
from invoice_ingest.extraction.schema import Invoice
from invoice_ingest.shared.config import Settings

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")
_BASE36 = string.ascii_lowercase + string.digits


class Attachment(BaseModel):
    """PDF attachment reference; Odoo fetches the file from the URL."""

    filename: str
    url: str


def generate_task_id() -> str:
    """Task identifier for one push: ``TASK-<epoch ms>-<9 random base36 chars>``."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"TASK-{int(time.time() * 1000)}-{suffix}"


def attachment_filename(invoice: Invoice, index: int, key: str) -> str:
    """Attachment filename ``INV_<invoice number>_<key prefix>.pdf``.

    Args:
        invoice: Invoice being attached
        index: Position of the invoice in the batch (0-based)
        key: Stable invoice key (id or number)

    Returns:
        Filename safe for object keys and URLs
    """
    raw_number = invoice.invoice_number or f"INV-{index + 1}"
    number = _NON_ALNUM.sub("_", raw_number) or f"INV_{index + 1}"
    suffix = _NON_ALNUM.sub("", key)[:8] or f"IDX{index}"
    return f"INV_{number}_{suffix}.pdf"


def build_invoice_payload(
    invoice: Invoice,
    attachment: Attachment,
    settings: Settings,
    index: int = 0,
) -> dict[str, Any]:
    """Transform an extracted invoice into the webhook's invoice object.

    Lines are reconciled, taxes apportioned, dates normalized to yyyy/mm/dd
    and the currency forced to the configured code.

    Args:
        invoice: Extracted (and possibly user-edited) invoice
        attachment: Stored PDF for this invoice
        settings: Application settings
        index: Position in the batch, used for fallback numbering

    Returns:
        JSON-ready dict
    """
    reconciled = reconcile_invoice(invoice)

    lines = [
        {
            "product_code": item.part_number or "",
            "description": item.description,
            "quantity": line.quantity,
            "unit_price": line.unit_price,
            "discount": line.discount,
            "taxes": [],
            "subtotal": line.amount,
        }
        for item, line in zip(invoice.line_items, reconciled.lines, strict=True)
    ]

    return {
        "invoiceNumber": invoice.invoice_number or f"INV-{index + 1}",
        "customerPoNumber": invoice.customer_po_number or "",
        "invoiceDate": normalize_date(invoice.invoice_date),
        "dueDate": normalize_date(invoice.due_date),
        "vendor": invoice.vendor.model_dump(by_alias=True),
        "customer": invoice.customer.model_dump(by_alias=True),
        "lines": lines,
        "taxes": [tax.model_dump() for tax in reconciled.taxes],
        "subtotal": reconciled.subtotal,
        "taxAmount": reconciled.tax_total,
        "taxType": invoice.tax_type,
        "total": reconciled.total,
        "currency": settings.odoo_currency,
        "paymentTerms": invoice.payment_terms or settings.default_payment_terms,
        "pageNumber": invoice.page_number,
        "pageNumbers": invoice.page_numbers,
        "id": invoice.id,
        "status": invoice.status,
        "extractedAt": invoice.extracted_at,
        "taskId": invoice.task_id,
        "batchId": invoice.batch_id,
        "attachments": [attachment.model_dump()],
    }
