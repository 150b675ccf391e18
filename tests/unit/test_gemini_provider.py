"""Unit tests for the Gemini extraction provider.

The httpx client is injected as a MagicMock returning canned responses.
"""

import base64
import json
from typing import Any
from unittest.mock import MagicMock, patch

import httpx
import pytest

from invoice_ingest.extraction.gemini_provider import (
    GeminiAPIError,
    GeminiExtractionProvider,
)
from invoice_ingest.shared.config import Settings

OCR_JSON = {
    "documentType": "multiple",
    "invoiceCount": 2,
    "invoices": [
        {"invoiceNumber": "A-1", "total": 10, "pageNumbers": [1]},
        {"invoiceNumber": "A-2", "total": 20, "pageNumbers": [2, 3]},
    ],
}


def gemini_reply(text: str, status: int = 200) -> httpx.Response:
    return httpx.Response(
        status, json={"candidates": [{"content": {"parts": [{"text": text}]}}]}
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, gemini_api_key="test-key")


@pytest.fixture
def http_client() -> MagicMock:
    return MagicMock(spec=httpx.Client)


@pytest.fixture
def provider(settings: Settings, http_client: MagicMock) -> GeminiExtractionProvider:
    return GeminiExtractionProvider(settings, client=http_client)


class TestGeminiExtractionProvider:
    """Request building and response handling."""

    def test_provider_name_and_availability(self, provider: GeminiExtractionProvider) -> None:
        assert provider.provider_name == "gemini"
        assert provider.is_available() is True

    def test_unavailable_without_key(self, http_client: MagicMock) -> None:
        provider = GeminiExtractionProvider(Settings(_env_file=None), client=http_client)

        result = provider.extract_invoices(b"%PDF", "application/pdf")

        assert provider.is_available() is False
        assert result.success is False
        assert "APP_GEMINI_API_KEY" in str(result.error)
        http_client.post.assert_not_called()

    def test_successful_extraction(
        self, provider: GeminiExtractionProvider, http_client: MagicMock
    ) -> None:
        http_client.post.return_value = gemini_reply(json.dumps(OCR_JSON))

        result = provider.extract_invoices(b"%PDF-1.7 data", "application/pdf")

        assert result.success is True
        assert result.provider == "gemini"
        assert result.response is not None
        assert [inv.invoice_number for inv in result.response.invoices] == ["A-1", "A-2"]
        assert result.response.invoices[1].page_numbers == [2, 3]

    def test_request_shape(
        self, provider: GeminiExtractionProvider, http_client: MagicMock
    ) -> None:
        http_client.post.return_value = gemini_reply(json.dumps(OCR_JSON))

        provider.extract_invoices(b"png-bytes", "image/png")

        args, kwargs = http_client.post.call_args
        assert args[0].endswith("/models/gemini-2.5-flash:generateContent")
        assert kwargs["params"] == {"key": "test-key"}
        body: dict[str, Any] = kwargs["json"]
        parts = body["contents"][0]["parts"]
        assert "Extract ALL invoices" in parts[0]["text"]
        assert parts[1]["inline_data"] == {
            "mime_type": "image/png",
            "data": base64.b64encode(b"png-bytes").decode("ascii"),
        }
        assert body["generationConfig"]["response_mime_type"] == "application/json"

    def test_truncated_reply_is_salvaged(
        self, provider: GeminiExtractionProvider, http_client: MagicMock
    ) -> None:
        text = json.dumps(OCR_JSON)
        http_client.post.return_value = gemini_reply(text[: text.index('"total": 20') + 10])

        result = provider.extract_invoices(b"%PDF", "application/pdf")

        assert result.success is True
        assert result.response is not None
        assert [inv.invoice_number for inv in result.response.invoices] == ["A-1", "A-2"]

    def test_unauthorized_is_not_retried(
        self, provider: GeminiExtractionProvider, http_client: MagicMock
    ) -> None:
        http_client.post.return_value = httpx.Response(
            401, json={"error": {"message": "API key not valid"}}
        )

        result = provider.extract_invoices(b"%PDF", "application/pdf")

        assert result.success is False
        assert "Unauthorized" in str(result.error)
        assert "API key not valid" in str(result.error)
        assert http_client.post.call_count == 1

    def test_service_unavailable_is_retried(
        self, provider: GeminiExtractionProvider, http_client: MagicMock
    ) -> None:
        http_client.post.side_effect = [
            httpx.Response(503, text="overloaded"),
            gemini_reply(json.dumps(OCR_JSON)),
        ]

        with patch("time.sleep"):
            result = provider.extract_invoices(b"%PDF", "application/pdf")

        assert result.success is True
        assert http_client.post.call_count == 2

    def test_transport_error_after_retries(
        self, provider: GeminiExtractionProvider, http_client: MagicMock
    ) -> None:
        http_client.post.side_effect = httpx.ConnectError("unreachable")

        with patch("time.sleep"):
            result = provider.extract_invoices(b"%PDF", "application/pdf")

        assert result.success is False
        assert "Gemini request failed" in str(result.error)
        assert http_client.post.call_count == 3

    def test_invalid_response_structure(
        self, provider: GeminiExtractionProvider, http_client: MagicMock
    ) -> None:
        http_client.post.return_value = httpx.Response(200, json={"candidates": []})

        result = provider.extract_invoices(b"%PDF", "application/pdf")

        assert result.success is False
        assert result.error == "Invalid response structure from Gemini API"

    def test_non_invoice_json(
        self, provider: GeminiExtractionProvider, http_client: MagicMock
    ) -> None:
        http_client.post.return_value = gemini_reply('{"answer": 42}')

        result = provider.extract_invoices(b"%PDF", "application/pdf")

        assert result.success is False
        assert "documentType" in str(result.error)

    @pytest.mark.parametrize(
        ("document", "mime_type", "message"),
        [
            (b"", "application/pdf", "Empty document provided"),
            (b"GIF89a", "image/gif", "Unsupported document type: image/gif"),
        ],
    )
    def test_input_validation(
        self,
        provider: GeminiExtractionProvider,
        http_client: MagicMock,
        document: bytes,
        mime_type: str,
        message: str,
    ) -> None:
        result = provider.extract_invoices(document, mime_type)

        assert result.success is False
        assert result.error == message
        http_client.post.assert_not_called()


class TestGeminiAPIError:
    def test_unknown_status_message(self) -> None:
        error = GeminiAPIError.from_response(httpx.Response(418, text="teapot"))

        assert error.status_code == 418
        assert str(error) == "API request failed with status 418"

    def test_non_dict_body(self) -> None:
        error = GeminiAPIError.from_response(httpx.Response(429, json=["slow down"]))

        assert error.status_code == 429
        assert str(error).startswith("Rate Limit Exceeded")
