"""OpenAI-based extraction provider for invoice documents.

Sends the document to a vision-capable chat model in JSON mode. Images are
passed as data URLs, PDFs as inline file inputs.

Includes retry logic with exponential backoff for transient API errors.
"""

import base64
import logging
import os
from typing import Any

from openai import (
    APIConnectionError,
    APIError,
    APITimeoutError,
    InternalServerError,
    OpenAI,
    RateLimitError,
)
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from invoice_ingest.extraction.base import (
    EXTRACTION_PROMPT,
    SUPPORTED_MIME_TYPES,
    ExtractionProvider,
    ExtractionResult,
)
from invoice_ingest.extraction.json_repair import (
    InvalidOCRResponseError,
    TruncatedResponseError,
    parse_ocr_response,
)
from invoice_ingest.shared.config import Settings

logger = logging.getLogger(__name__)


class OpenAIExtractionProvider(ExtractionProvider):
    """OpenAI-based extraction provider (default gpt-4o-mini).

    Requires OPENAI_API_KEY environment variable.
    """

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self._client: OpenAI | None = None

    @property
    def provider_name(self) -> str:
        return "openai"

    def is_available(self) -> bool:
        """Check if OpenAI API key is configured.

        Returns:
            True if OPENAI_API_KEY environment variable is set
        """
        return os.getenv("OPENAI_API_KEY") is not None

    def extract_invoices(self, document: bytes, mime_type: str) -> ExtractionResult:
        """Extract all invoices from a document using OpenAI.

        Args:
            document: Raw PDF or image bytes
            mime_type: Document MIME type

        Returns:
            ExtractionResult with the OCR response or error, provider='openai'
        """
        if not self.is_available():
            return self._failure("OPENAI_API_KEY environment variable not set")
        if not document:
            return self._failure("Empty document provided")
        if mime_type not in SUPPORTED_MIME_TYPES:
            return self._failure(f"Unsupported document type: {mime_type}")

        api_key = os.getenv("OPENAI_API_KEY")
        if self._client is None or self._client.api_key != api_key:
            self._client = OpenAI(api_key=api_key, timeout=self.settings.extraction_timeout_seconds)

        try:
            completion = self._call_openai_with_retry(self._build_messages(document, mime_type))
            choice = completion.choices[0]
            if choice.finish_reason == "length":
                logger.warning("OpenAI response hit the token limit; attempting repair")

            content = choice.message.content
            if not content:
                return self._failure("Empty content in API response")

            response = parse_ocr_response(content)
        except APIError as e:
            logger.error(f"OpenAI API error: {e}")
            return self._failure(f"OpenAI API error: {e}")
        except (TruncatedResponseError, InvalidOCRResponseError) as e:
            logger.warning(f"Unusable OpenAI response: {e}")
            return self._failure(str(e))

        logger.info(f"OpenAI extracted {len(response.invoices)} invoice(s)")
        return ExtractionResult(response=response, success=True, provider=self.provider_name)

    @staticmethod
    def _document_part(document: bytes, mime_type: str) -> dict[str, Any]:
        data_url = f"data:{mime_type};base64,{base64.b64encode(document).decode('ascii')}"
        if mime_type == "application/pdf":
            return {"type": "file", "file": {"filename": "invoice.pdf", "file_data": data_url}}
        return {"type": "image_url", "image_url": {"url": data_url}}

    def _build_messages(self, document: bytes, mime_type: str) -> list[dict[str, Any]]:
        return [
            {
                "role": "system",
                "content": "You are an invoice data extraction assistant. Respond with JSON only.",
            },
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": EXTRACTION_PROMPT},
                    self._document_part(document, mime_type),
                ],
            },
        ]

    @retry(
        retry=retry_if_exception_type(
            (APIConnectionError, APITimeoutError, RateLimitError, InternalServerError)
        ),
        wait=wait_exponential_jitter(initial=1, max=60),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _call_openai_with_retry(self, messages: list[dict[str, Any]]) -> Any:
        """Call OpenAI API with retry logic for transient errors.

        Raises:
            APIError: After all retry attempts are exhausted
        """
        if self._client is None:
            raise RuntimeError("OpenAI client not initialized")

        return self._client.chat.completions.create(  # type: ignore[call-overload]
            model=self.settings.openai_model,
            messages=messages,
            response_format={"type": "json_object"},
            temperature=0,
        )
