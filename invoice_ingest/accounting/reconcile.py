"""Line-item and tax reconciliation for the accounting webhook.

OCR output does not guarantee that ``quantity × unit price`` matches the line
amount printed on the invoice. The accounting system recomputes line subtotals
from quantity, unit price and discount, so the difference is expressed as an
implied discount percentage. Missing, textual, non-finite and absurdly large
inputs are coerced; nothing in this module raises on bad numbers.

Arithmetic uses Decimal with half-up rounding to cents; results are floats
because they go straight into a JSON payload.
"""

import logging
from decimal import ROUND_HALF_UP, Context, Decimal
from typing import Any

from pydantic import BaseModel

from invoice_ingest.extraction.schema import Invoice, coerce_number

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal(100)

# Larger magnitudes are OCR garbage and are treated like missing numbers.
MAX_MAGNITUDE = Decimal("1e12")
_CENTS_CONTEXT = Context(prec=60, rounding=ROUND_HALF_UP)

# Rates used to split a combined GST+PST figure (an estimate, see apportion_tax)
GST_RATE = Decimal("0.05")
PST_FALLBACK_RATE = Decimal("0.07")


class ReconciledLine(BaseModel):
    """Self-consistent line values.

    Attributes:
        quantity: Quantity, always > 0
        unit_price: Unit price rounded to cents
        discount: Implied discount percentage in [0, 100]
        amount: Line subtotal after discount
        tax: Line tax rounded to cents
    """

    quantity: float
    unit_price: float
    discount: float
    amount: float
    tax: float


class TaxEntry(BaseModel):
    """One labelled tax component (field names are the webhook's)."""

    tax_type: str
    amount: float


class ReconciledInvoice(BaseModel):
    """Invoice-level totals derived from reconciled lines."""

    lines: list[ReconciledLine]
    subtotal: float
    taxes: list[TaxEntry]
    tax_total: float
    total: float


def to_decimal(value: Any) -> Decimal | None:
    """Coerce to a finite Decimal no larger than MAX_MAGNITUDE, or None."""
    if isinstance(value, Decimal):
        number = value if value.is_finite() else None
    else:
        coerced = coerce_number(value)
        number = None if coerced is None else Decimal(str(coerced))

    if number is not None and abs(number) > MAX_MAGNITUDE:
        logger.warning(f"Ignoring out-of-range amount: {value!r}")
        return None
    return number


def round_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, context=_CENTS_CONTEXT)


def reconcile_line_item(
    quantity: Any = None,
    unit_price: Any = None,
    amount: Any = None,
    tax: Any = None,
) -> ReconciledLine:
    """Derive quantity, unit price, discount and subtotal for one line.

    The observed amount wins when the derived subtotal is already within a
    cent of it; otherwise the derived subtotal is used.

    Args:
        quantity: Extracted quantity (non-positive or missing becomes 1)
        unit_price: Extracted unit price (non-positive or missing is derived
            from amount / quantity)
        amount: Extracted line amount (missing becomes 0)
        tax: Extracted line tax (missing becomes 0)

    Returns:
        ReconciledLine
    """
    qty = to_decimal(quantity)
    if qty is None or qty <= 0:
        qty = Decimal(1)

    raw_amount = to_decimal(amount)
    if raw_amount is None:
        raw_amount = Decimal(0)

    given_unit = to_decimal(unit_price)
    derived_unit = given_unit if given_unit is not None and given_unit > 0 else raw_amount / qty
    unit = round_cents(derived_unit)

    gross_total = round_cents(unit * qty)
    desired_subtotal = round_cents(raw_amount)

    discount = Decimal(0)
    if gross_total > 0 and abs(gross_total - desired_subtotal) >= CENT:
        discount_pct = (1 - desired_subtotal / gross_total) * HUNDRED
        discount = round_cents(min(HUNDRED, max(Decimal(0), discount_pct)))

    adjusted_subtotal = round_cents(gross_total * (1 - discount / HUNDRED))
    if abs(adjusted_subtotal - desired_subtotal) <= CENT:
        subtotal = desired_subtotal
    else:
        subtotal = adjusted_subtotal

    line_tax = to_decimal(tax)

    return ReconciledLine(
        quantity=float(qty),
        unit_price=float(unit),
        discount=float(discount),
        amount=float(subtotal),
        tax=float(round_cents(line_tax)) if line_tax is not None else 0.0,
    )


def _clamp(value: Decimal, upper: Decimal) -> Decimal:
    return max(Decimal(0), min(value, upper))


def apportion_tax(subtotal: Any, tax_amount: Any, tax_type: str | None) -> list[TaxEntry]:
    """Split one combined tax amount into labelled components.

    A label naming both GST and PST cannot be split exactly from a single
    figure. GST is estimated at 5% of the subtotal and PST takes the rest,
    or 7% of the subtotal when the rest would be negative. Both estimates are
    capped to [0, subtotal]; such a breakdown need not sum to the input.

    Args:
        subtotal: Invoice subtotal
        tax_amount: Combined tax amount
        tax_type: Free-text label such as "GST", "GST/PST", "VAT"

    Returns:
        Tax entries with positive amounts only
    """
    sub = round_cents(to_decimal(subtotal) or Decimal(0))
    tax = round_cents(to_decimal(tax_amount) or Decimal(0))
    if tax <= 0:
        return []

    label = (tax_type or "").strip()
    upper = label.upper()

    if "GST" in upper and "PST" in upper:
        gst = _clamp(round_cents(sub * GST_RATE), sub)
        pst = round_cents(tax - gst)
        if pst < 0:
            pst = round_cents(sub * PST_FALLBACK_RATE)
        pst = _clamp(pst, sub)
        components = [("GST", gst), ("PST", pst)]
    elif "GST" in upper:
        components = [("GST", tax)]
    elif "PST" in upper:
        components = [("PST", tax)]
    elif label:
        components = [(label, tax)]
    else:
        components = [("Tax", tax)]

    return [TaxEntry(tax_type=name, amount=float(value)) for name, value in components if value > 0]


def reconcile_invoice(invoice: Invoice) -> ReconciledInvoice:
    """Reconcile every line of an invoice and derive its totals.

    Subtotal is the sum of reconciled line amounts. The tax total is the sum
    of apportioned entries, or the extracted tax amount when nothing was
    apportioned. Total is subtotal plus tax total.

    Args:
        invoice: Extracted invoice

    Returns:
        ReconciledInvoice
    """
    lines = [
        reconcile_line_item(item.quantity, item.unit_price, item.amount, item.tax)
        for item in invoice.line_items
    ]

    subtotal = round_cents(sum((Decimal(str(line.amount)) for line in lines), Decimal(0)))
    taxes = apportion_tax(subtotal, invoice.tax_amount, invoice.tax_type)

    if taxes:
        tax_total = round_cents(sum((Decimal(str(t.amount)) for t in taxes), Decimal(0)))
    else:
        tax_total = round_cents(to_decimal(invoice.tax_amount) or Decimal(0))

    total = round_cents(subtotal + tax_total)

    extracted_total = to_decimal(invoice.total)
    if extracted_total is not None and abs(round_cents(extracted_total) - total) > CENT:
        logger.info(
            f"Invoice {invoice.invoice_number or invoice.id}: reconciled total {total} "
            f"differs from extracted total {extracted_total}"
        )

    return ReconciledInvoice(
        lines=lines,
        subtotal=float(subtotal),
        taxes=taxes,
        tax_total=float(tax_total),
        total=float(total),
    )
