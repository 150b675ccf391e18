"""Invoice data models for documents returned by the OCR/extraction service.

Wire format is camelCase JSON (``invoiceNumber``, ``lineItems``, ``pageNumbers``);
Python attributes are snake_case. Models are frozen: an extracted invoice is a
value object, and later stages derive new values with ``model_copy(update=...)``.
"""

import math
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

_CURRENCY_CHARS = str.maketrans("", "", "$€£, ")


def coerce_number(value: Any) -> float | None:
    """Loosely coerce an OCR numeric field to a finite float.

    Accepts numbers and numeric strings such as ``"$1,234.50"``.
    Anything else (null, NaN, infinity, free text) becomes None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        number = float(value)
    elif isinstance(value, str):
        cleaned = value.translate(_CURRENCY_CHARS)
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def coerce_page(value: Any) -> int | None:
    """Coerce a page reference to an int, rejecting non-integral values."""
    number = coerce_number(value)
    if number is None or not number.is_integer():
        return None
    return int(number)


def _text_or_none(value: Any) -> str | None:
    if value is None or isinstance(value, dict | list):
        return None
    return str(value)


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class Vendor(_CamelModel):
    """Invoice issuer."""

    name: str | None = None
    address: str | None = None
    tax_id: str | None = None
    email: str | None = None
    phone: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str | None:
        return _text_or_none(value)


class Customer(_CamelModel):
    """Invoice recipient."""

    name: str | None = None
    address: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str | None:
        return _text_or_none(value)


class LineItem(_CamelModel):
    """One billable row as extracted; numbers are not yet reconciled."""

    description: str = ""
    part_number: str | None = None
    quantity: float | None = None
    unit_price: float | None = None
    amount: float | None = None
    tax: float | None = None

    @field_validator("quantity", "unit_price", "amount", "tax", mode="before")
    @classmethod
    def _loose_number(cls, value: Any) -> float | None:
        return coerce_number(value)

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, value: Any) -> str:
        return _text_or_none(value) or ""

    @field_validator("part_number", mode="before")
    @classmethod
    def _part(cls, value: Any) -> str | None:
        return _text_or_none(value)


class Invoice(_CamelModel):
    """Structured invoice extracted from a source document.

    Dates stay free-form strings here; they are normalized when the
    accounting payload is built.
    """

    id: str | None = None
    invoice_number: str = ""
    customer_po_number: str | None = None
    invoice_date: str | None = None
    due_date: str | None = None

    vendor: Vendor = Field(default_factory=Vendor)
    customer: Customer = Field(default_factory=Customer)
    line_items: list[LineItem] = Field(default_factory=list)

    # Financial details
    subtotal: float | None = None
    tax_amount: float | None = None
    tax_type: str | None = None
    total: float | None = None
    currency: str | None = None
    payment_terms: str | None = None

    # Source page attribution (1-indexed)
    page_number: int | None = None
    page_numbers: list[int] | None = None

    # Lifecycle
    status: Literal["extracted", "synced"] = "extracted"
    extracted_at: str | None = None
    synced_at: str | None = None
    batch_id: str | None = None
    task_id: str | None = None

    @field_validator("invoice_number", mode="before")
    @classmethod
    def _number_text(cls, value: Any) -> str:
        return _text_or_none(value) or ""

    @field_validator(
        "id",
        "customer_po_number",
        "invoice_date",
        "due_date",
        "tax_type",
        "currency",
        "payment_terms",
        "batch_id",
        "task_id",
        mode="before",
    )
    @classmethod
    def _optional_text(cls, value: Any) -> str | None:
        return _text_or_none(value)

    @field_validator("vendor", "customer", mode="before")
    @classmethod
    def _party(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("line_items", mode="before")
    @classmethod
    def _items(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict | LineItem)]

    @field_validator("subtotal", "tax_amount", "total", mode="before")
    @classmethod
    def _loose_number(cls, value: Any) -> float | None:
        return coerce_number(value)

    @field_validator("page_number", mode="before")
    @classmethod
    def _page(cls, value: Any) -> int | None:
        return coerce_page(value)

    @field_validator("page_numbers", mode="before")
    @classmethod
    def _pages(cls, value: Any) -> list[int] | None:
        if not isinstance(value, list):
            return None
        pages = [page for page in (coerce_page(item) for item in value) if page is not None]
        return pages or None


class OCRResponse(_CamelModel):
    """Document-level extraction result: one or more invoices."""

    document_type: Literal["single", "multiple"]
    invoice_count: int = 0
    invoices: list[Invoice] = Field(default_factory=list)
    task_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _document_type(cls, data: Any) -> Any:
        # A repaired response can carry a cut-off label such as "mult".
        if isinstance(data, dict):
            key = "documentType" if "documentType" in data else "document_type"
            if data.get(key) not in ("single", "multiple"):
                invoices = data.get("invoices")
                count = len(invoices) if isinstance(invoices, list) else 0
                data = {**data, key: "multiple" if count > 1 else "single"}
        return data

    @field_validator("invoice_count", mode="before")
    @classmethod
    def _count(cls, value: Any) -> int:
        return coerce_page(value) or 0
