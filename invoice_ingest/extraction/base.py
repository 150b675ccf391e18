"""Abstract base class for invoice extraction providers.

A provider sends a whole document (PDF or image) to a vision-capable LLM and
returns every invoice it finds as an OCRResponse.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel

from invoice_ingest.extraction.schema import OCRResponse
from invoice_ingest.shared.config import Settings

SUPPORTED_MIME_TYPES = frozenset({"application/pdf", "image/png", "image/jpeg"})

EXTRACTION_PROMPT = """Extract invoice data from this document.

Extract ALL invoices found in the document, regardless of count.

Pay special attention to:
- Customer PO Number (also called Purchase Order Number, PO #, Reference Number, or Customer Reference)
- Part Numbers for each line item (also called Item Number, SKU, Product Code, Part #, or Item Code)

Return a JSON response with this EXACT structure:
{
  "documentType": "single" or "multiple",
  "invoiceCount": number (total count found),
  "invoices": [
    {
      "invoiceNumber": "string",
      "customerPoNumber": "string" or null,
      "invoiceDate": "string (KEEP the exact date format shown on the invoice)",
      "dueDate": "string" or null (KEEP the exact date format shown on the invoice),
      "vendor": {"name": "string", "address": "string", "taxId": "string" or null,
                 "email": "string" or null, "phone": "string" or null},
      "customer": {"name": "string", "address": "string"},
      "lineItems": [
        {"description": "string", "partNumber": "string" or null, "quantity": number,
         "unitPrice": number, "amount": number, "tax": number}
      ],
      "subtotal": number,
      "taxAmount": number,
      "taxType": "string" or null (e.g. "GST", "PST", "GST/PST", "VAT"),
      "total": number,
      "currency": "string",
      "paymentTerms": "string" or null,
      "pageNumber": number (first page of the invoice, 1-based),
      "pageNumbers": [number] (every page the invoice spans, 1-based)
    }
  ]
}

For fields that are not present, use null. Extract ALL invoices found in the document."""


class ExtractionResult(BaseModel):
    """Result of extraction operation.

    Attributes:
        response: Parsed OCR response or None if extraction failed
        success: Whether operation succeeded
        error: Error message if operation failed
        provider: Name of provider that performed extraction (e.g., 'gemini')
    """

    response: OCRResponse | None
    success: bool
    error: str | None = None
    provider: str


class ExtractionProvider(ABC):
    """Abstract base class for invoice extraction providers.

    Example implementations:
    - GeminiExtractionProvider: Gemini generateContent REST API
    - OpenAIExtractionProvider: OpenAI chat completions
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @abstractmethod
    def extract_invoices(self, document: bytes, mime_type: str) -> ExtractionResult:
        """Extract all invoices from a document.

        Args:
            document: Raw PDF or image bytes
            mime_type: One of SUPPORTED_MIME_TYPES

        Returns:
            ExtractionResult with the OCR response or error
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is configured (e.g., API key present)."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier for logging/metrics."""

    def _failure(self, error: str) -> ExtractionResult:
        return ExtractionResult(response=None, success=False, error=error, provider=self.provider_name)
