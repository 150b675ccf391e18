"""Gemini-based extraction provider using the Generative Language REST API.

The document is sent inline (base64) together with the extraction prompt and
the model is asked for a JSON response. Long multi-invoice documents can hit
the output token limit, so the reply goes through parse_ocr_response, which
repairs truncated JSON.

See: https://ai.google.dev/api/generate-content
"""

import base64
import logging
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception,
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

STATUS_MESSAGES = {
    400: "Bad Request: Invalid request format or parameters",
    401: "Unauthorized: Invalid API key. Please check APP_GEMINI_API_KEY",
    403: "Forbidden: API key lacks required permissions",
    429: "Rate Limit Exceeded: Too many requests. Please wait and try again",
    500: "Gemini API Internal Server Error: Service is having issues",
    503: "Service Unavailable: Gemini API is temporarily down or overloaded",
}

RETRYABLE_STATUS = frozenset({429, 500, 503})


class GeminiAPIError(Exception):
    """Error response (or unusable reply) from the Gemini API."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @classmethod
    def from_response(cls, response: httpx.Response) -> "GeminiAPIError":
        status = response.status_code
        message = STATUS_MESSAGES.get(status, f"API request failed with status {status}")
        try:
            error = response.json().get("error", {})
        except (ValueError, AttributeError):
            error = None
        if isinstance(error, dict) and error.get("message"):
            message = f"{message}: {error['message']}"
        return cls(message, status)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, GeminiAPIError):
        return exc.status_code in RETRYABLE_STATUS
    return isinstance(exc, httpx.TransportError)


class GeminiExtractionProvider(ExtractionProvider):
    """Extraction provider for Gemini vision models (default gemini-2.5-flash)."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        """Initialize Gemini extraction provider.

        Args:
            settings: Application settings
            client: Optional preconfigured httpx client (tests inject one)
        """
        super().__init__(settings)
        self._base_url = settings.gemini_base_url.rstrip("/")
        self._model = settings.gemini_model
        self._client = client or httpx.Client(timeout=settings.extraction_timeout_seconds)

    @property
    def provider_name(self) -> str:
        return "gemini"

    def is_available(self) -> bool:
        return bool(self.settings.gemini_api_key)

    def extract_invoices(self, document: bytes, mime_type: str) -> ExtractionResult:
        """Extract all invoices from a PDF or image using Gemini.

        Args:
            document: Raw document bytes
            mime_type: Document MIME type

        Returns:
            ExtractionResult with the OCR response or error
        """
        if not self.is_available():
            return self._failure("Gemini API key not configured. Set APP_GEMINI_API_KEY.")
        if not document:
            return self._failure("Empty document provided")
        if mime_type not in SUPPORTED_MIME_TYPES:
            return self._failure(f"Unsupported document type: {mime_type}")

        try:
            text = self._generate_with_retry(self._build_request(document, mime_type))
            response = parse_ocr_response(text)
        except GeminiAPIError as e:
            logger.error(f"Gemini API error: {e}")
            return self._failure(str(e))
        except httpx.HTTPError as e:
            logger.error(f"Gemini request failed: {e}")
            return self._failure(f"Gemini request failed: {e}")
        except (TruncatedResponseError, InvalidOCRResponseError) as e:
            logger.warning(f"Unusable Gemini response: {e}")
            return self._failure(str(e))

        logger.info(f"Gemini extracted {len(response.invoices)} invoice(s)")
        return ExtractionResult(response=response, success=True, provider=self.provider_name)

    def _build_request(self, document: bytes, mime_type: str) -> dict[str, Any]:
        return {
            "contents": [
                {
                    "parts": [
                        {"text": EXTRACTION_PROMPT},
                        {
                            "inline_data": {
                                "mime_type": mime_type,
                                "data": base64.b64encode(document).decode("ascii"),
                            }
                        },
                    ]
                }
            ],
            "generationConfig": {
                "temperature": 0.1,
                "response_mime_type": "application/json",
            },
        }

    @retry(
        retry=retry_if_exception(_is_transient),
        wait=wait_exponential_jitter(initial=1, max=30),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _generate_with_retry(self, body: dict[str, Any]) -> str:
        """Call generateContent and return the first candidate's text.

        Raises:
            GeminiAPIError: On non-2xx status or a response without text
            httpx.TransportError: After all retry attempts exhausted
        """
        response = self._client.post(
            f"{self._base_url}/models/{self._model}:generateContent",
            params={"key": self.settings.gemini_api_key},
            json=body,
        )

        if not response.is_success:
            raise GeminiAPIError.from_response(response)

        try:
            text = response.json()["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise GeminiAPIError("Invalid response structure from Gemini API") from e

        if not isinstance(text, str) or not text:
            raise GeminiAPIError("Invalid response structure from Gemini API")
        return text

