"""Client for the Odoo bill-creation webhook.

Rejections and transport failures are reported through WebhookResult rather
than raised, so the caller can still return the built payload to the user.
"""

import json
import logging
from typing import Any

import httpx
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from invoice_ingest.shared.config import Settings

logger = logging.getLogger(__name__)


class WebhookResult(BaseModel):
    """Result of a webhook push.

    Attributes:
        success: Whether Odoo accepted the payload (2xx)
        status_code: HTTP status, if a response was received
        response: Parsed response body on success
        error: Parsed error body or error message on failure
        error_type: Exception class name for transport failures
    """

    success: bool
    status_code: int | None = None
    response: Any = None
    error: Any = None
    error_type: str | None = None


class OdooWebhookClient:
    """Posts invoice payloads to the configured Odoo webhook."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        """Initialize webhook client.

        Args:
            settings: Application settings with odoo_* configuration
            client: Optional preconfigured httpx client (tests inject one)
        """
        self.settings = settings
        self._client = client or httpx.Client(timeout=settings.webhook_timeout_seconds)

    def is_configured(self) -> bool:
        return bool(self.settings.odoo_webhook_url)

    def push(self, payload: dict[str, Any]) -> WebhookResult:
        """Send a payload to Odoo.

        Args:
            payload: ``{"invoices": [...]}`` body

        Returns:
            WebhookResult describing acceptance or failure
        """
        if not self.is_configured():
            return WebhookResult(success=False, error="Odoo webhook URL is not configured")

        invoice_count = len(payload.get("invoices", []))
        logger.info(f"Sending {invoice_count} invoice(s) to Odoo webhook")

        try:
            response = self._post_with_retry(payload)
        except httpx.HTTPError as e:
            logger.error(f"Odoo webhook request failed: {e}")
            return WebhookResult(success=False, error=str(e), error_type=type(e).__name__)

        if not response.is_success:
            body = self._parse_body(response.text, fallback_raw=False)
            logger.error(
                f"Odoo webhook rejected request: {response.status_code} {response.text[:500]}"
            )
            return WebhookResult(success=False, status_code=response.status_code, error=body)

        logger.info(f"Odoo webhook accepted request ({response.status_code})")
        return WebhookResult(
            success=True,
            status_code=response.status_code,
            response=self._parse_body(response.text, fallback_raw=True),
        )

    # Retry only requests that never reached Odoo.
    @retry(
        retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
        wait=wait_exponential_jitter(initial=1, max=10),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _post_with_retry(self, payload: dict[str, Any]) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if self.settings.odoo_api_key:
            headers["X-API-Key"] = self.settings.odoo_api_key

        return self._client.post(
            self.settings.odoo_webhook_url,
            content=json.dumps(payload),
            headers=headers,
        )

    @staticmethod
    def _parse_body(text: str, fallback_raw: bool) -> Any:
        try:
            return json.loads(text)
        except ValueError:
            return {"rawResponse": text} if fallback_raw else text
