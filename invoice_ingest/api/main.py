"""FastAPI application for invoice ingestion.

Flow:
1. POST /api/v1/ocr extracts every invoice from an uploaded PDF/image
2. The client reviews the invoices (or polls /api/v1/invoices/pending)
3. POST /api/v1/push-to-odoo splits the PDF per invoice, stores each part
   and sends reconciled invoice data to the Odoo webhook
4. Odoo fetches the attachments by URL (object storage, or
   /api/v1/attachments/{filename} when storage is disabled)

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

from fastapi import FastAPI, File, Form, HTTPException, Query, Request, Response, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ValidationError

from invoice_ingest.accounting.payload import (
    Attachment,
    attachment_filename,
    build_invoice_payload,
    generate_task_id,
)
from invoice_ingest.accounting.webhook import OdooWebhookClient, WebhookResult
from invoice_ingest.api import metrics
from invoice_ingest.extraction.base import SUPPORTED_MIME_TYPES
from invoice_ingest.extraction.factory import create_extraction_service
from invoice_ingest.extraction.schema import Invoice, OCRResponse
from invoice_ingest.pdf.splitter import PdfSplitError, build_selections, split_pdf_by_invoices
from invoice_ingest.shared.config import get_settings
from invoice_ingest.storage.cache import AttachmentCache, PendingInvoiceQueue
from invoice_ingest.storage.service import StorageService

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Invoice Ingest",
    description="Invoice extraction and Odoo bill creation API",
    version=settings.service_version,
)

extraction_service = create_extraction_service(settings)
storage_service = StorageService(settings)
webhook_client = OdooWebhookClient(settings)

app.state.attachment_cache = AttachmentCache(settings.attachment_ttl_seconds)
app.state.pending_queue = PendingInvoiceQueue(settings.pending_queue_max)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request count and duration by method and endpoint."""
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    # Attachment filenames would explode label cardinality
    endpoint = request.url.path
    if endpoint.startswith("/api/v1/attachments/"):
        endpoint = "/api/v1/attachments/{filename}"

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint,
    ).observe(duration)

    return response


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    extraction_provider: str
    storage_available: bool


class PendingInvoicesResponse(BaseModel):
    """Invoices drained from the pending queue."""

    count: int
    remaining: int
    invoices: list[Invoice]


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Liveness check endpoint."""
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint.

    Ready when the extraction provider is configured. Storage is optional
    (the attachment cache is used without it) and only reported.
    """
    return ReadinessResponse(
        ready=extraction_service.is_available(),
        extraction_provider=extraction_service.provider_name,
        storage_available=storage_service.is_available(),
    )


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint."""
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.post(
    "/api/v1/ocr",
    response_model=OCRResponse,
    response_model_by_alias=True,
    tags=["Extraction"],
)
async def extract_document(
    request: Request,
    file: UploadFile = File(..., description="Invoice document (PDF, PNG or JPEG)"),  # noqa: B008
) -> OCRResponse:
    """Extract every invoice contained in an uploaded document.

    ## Usage

    ```bash
    curl -X POST "http://localhost:8000/api/v1/ocr" -F "file=@invoices.pdf"
    ```

    Each returned invoice gets a fresh `id`, `status="extracted"`, an
    `extractedAt` timestamp and the request's `taskId`. The invoices are
    also queued for GET /api/v1/invoices/pending.

    ## Error Handling

    - Returns 400 if the file is empty, too large or of an unsupported type
    - Returns 502 if the extraction provider fails or its reply is unusable

    Raises:
        HTTPException: If the file is invalid or extraction fails
    """
    if not file.content_type or file.content_type not in SUPPORTED_MIME_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid file type: {file.content_type}. Only PDF, PNG and JPEG are supported.",
        )

    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File too large: {len(content)} bytes (max {settings.max_upload_bytes})",
        )

    metrics.document_upload_size_bytes.observe(len(content))

    extraction_start = time.time()
    result = await run_in_threadpool(extraction_service.extract_invoices, content, file.content_type)
    metrics.extraction_processing_duration_seconds.observe(time.time() - extraction_start)

    if not result.success or result.response is None:
        metrics.extraction_requests_total.labels(provider=result.provider, status="failed").inc()
        metrics.documents_uploaded_total.labels(status="failed").inc()
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"OCR Processing Failed: {result.error}",
        )

    metrics.extraction_requests_total.labels(provider=result.provider, status="success").inc()
    metrics.documents_uploaded_total.labels(status="success").inc()

    task_id = generate_task_id()
    extracted_at = datetime.now(timezone.utc).isoformat()
    invoices = [
        invoice.model_copy(
            update={
                "id": str(uuid.uuid4()),
                "status": "extracted",
                "extracted_at": extracted_at,
                "task_id": task_id,
            }
        )
        for invoice in result.response.invoices
    ]

    metrics.invoices_extracted_total.inc(len(invoices))
    request.app.state.pending_queue.enqueue(invoices)
    logger.info(f"Task {task_id}: extracted {len(invoices)} invoice(s) from {file.filename}")

    return result.response.model_copy(update={"invoices": invoices, "task_id": task_id})


@app.get("/api/v1/invoices/pending", response_model=PendingInvoicesResponse, tags=["Extraction"])
def pending_invoices(
    request: Request,
    max_items: int = Query(50, ge=1, le=200, alias="max"),
) -> PendingInvoicesResponse:
    """Drain up to `max` extracted invoices, oldest first."""
    queue: PendingInvoiceQueue = request.app.state.pending_queue
    invoices = queue.drain(max_items)
    return PendingInvoicesResponse(count=len(invoices), remaining=queue.size(), invoices=invoices)


def _parse_invoices(raw: str) -> list[Invoice]:
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invoices field is not valid JSON: {e}"
        ) from e

    if not isinstance(data, list) or not data:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or empty invoices array"
        )

    try:
        return [Invoice.model_validate(item) for item in data]
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid invoice data: {e}"
        ) from e


def _store_attachment(cache: AttachmentCache, filename: str, data: bytes) -> tuple[str, str]:
    """Store one split PDF and return (url, backend)."""
    if storage_service.is_available():
        result = storage_service.upload_bytes(data, storage_service.object_key(filename))
        if result.success and result.url:
            return result.url, "storage"
        # Storage failure doesn't fail the push; Odoo can still fetch from us
        logger.warning(f"Storage upload failed for {filename}, using attachment cache: {result.error}")

    cache.put(filename, data)
    base = settings.public_base_url.rstrip("/")
    return f"{base}/api/v1/attachments/{quote(filename)}", "cache"


def _odoo_response(result: WebhookResult) -> Any:
    if result.success:
        return result.response
    body: dict[str, Any] = {"error": result.error}
    if result.status_code is not None:
        body["status"] = result.status_code
    if result.error_type:
        body["errorType"] = result.error_type
    return body


@app.post("/api/v1/push-to-odoo", tags=["Accounting"])
async def push_to_odoo(
    request: Request,
    invoices: str | None = Form(None, description="JSON array of invoices"),  # noqa: B008
    pdf: UploadFile | None = File(None, description="Original PDF"),  # noqa: B008
) -> dict[str, Any]:
    """Send invoices with per-invoice PDF attachments to the Odoo webhook.

    The original PDF is split by each invoice's page attribution. Line items
    are reconciled, taxes apportioned and dates normalized before sending.
    Odoo rejecting the payload is reported in the response body
    (`odooSucceeded: false`), not as an HTTP error.

    ## Error Handling

    - Returns 400 if invoices or PDF are missing or invalid
    - Returns 422 if the PDF cannot be read
    - Returns 500 if the Odoo webhook URL is not configured

    Raises:
        HTTPException: On invalid input or missing configuration
    """
    if not invoices:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="No invoices data provided"
        )
    parsed = _parse_invoices(invoices)

    if pdf is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No PDF file provided")
    source = await pdf.read()
    if not source:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty PDF file")

    if not webhook_client.is_configured():
        logger.error("Odoo webhook is not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Odoo webhook is not configured. Set APP_ODOO_WEBHOOK_URL.",
        )

    task_id = generate_task_id()
    logger.info(f"Task {task_id}: pushing {len(parsed)} invoice(s) to Odoo")

    selections = build_selections(parsed, lambda _: generate_task_id())
    try:
        split = split_pdf_by_invoices(source, selections)
    except PdfSplitError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    cache: AttachmentCache = request.app.state.attachment_cache
    payload_invoices: list[dict[str, Any]] = []
    attachment_info: list[dict[str, Any]] = []

    for index, (invoice, selection) in enumerate(zip(parsed, selections, strict=True)):
        data = split.get(selection.key, source)
        filename = attachment_filename(invoice, index, selection.key)
        url, backend = _store_attachment(cache, filename, data)
        metrics.attachments_stored_total.labels(backend=backend).inc()

        attachment_info.append(
            {
                "invoiceId": selection.key,
                "invoiceNumber": invoice.invoice_number or f"INV-{index + 1}",
                "filename": filename,
                "size": f"{round(len(data) / 1024)} KB",
                "url": url,
                "backend": backend,
            }
        )
        payload_invoices.append(
            build_invoice_payload(invoice, Attachment(filename=filename, url=url), settings, index)
        )

    payload = {"invoices": payload_invoices}
    result = await run_in_threadpool(webhook_client.push, payload)

    metrics.odoo_webhook_requests_total.labels(status="success" if result.success else "failed").inc()
    if result.success:
        metrics.invoices_pushed_total.inc(len(payload_invoices))
        synced_at = datetime.now(timezone.utc).isoformat()
        parsed = [
            invoice.model_copy(update={"status": "synced", "synced_at": synced_at})
            for invoice in parsed
        ]

    response: dict[str, Any] = {
        "success": True,
        "taskId": task_id,
        "message": "Data sent to Odoo" if result.success else "Data sent to Odoo but may have failed",
        "invoiceCount": len(parsed),
        "invoices": [invoice.model_dump(mode="json", by_alias=True) for invoice in parsed],
        "payload": payload,
        "odooResponse": _odoo_response(result),
        "odooSucceeded": result.success,
        "attachmentInfo": attachment_info,
        "configuration": {
            "webhookConfigured": webhook_client.is_configured(),
            "apiKeyConfigured": bool(settings.odoo_api_key),
            "storageConfigured": storage_service.is_available(),
        },
    }
    if not storage_service.is_available():
        response["warning"] = (
            "Object storage not configured. Attachments are served from the in-process "
            f"cache for {settings.attachment_ttl_seconds} seconds."
        )
    return response


@app.get("/api/v1/attachments/{filename}", tags=["Accounting"])
def get_attachment(request: Request, filename: str) -> Response:
    """Serve a split invoice PDF (used by Odoo to fetch attachments).

    Raises:
        HTTPException: 404 if the attachment is unknown or expired
    """
    headers = {
        "Content-Disposition": f'inline; filename="{filename}"',
        "Cache-Control": "public, max-age=3600",
    }

    cache: AttachmentCache = request.app.state.attachment_cache
    cached = cache.get(filename)
    if cached is not None:
        return Response(content=cached.data, media_type=cached.content_type, headers=headers)

    if storage_service.is_available():
        data = storage_service.get_object(storage_service.object_key(filename))
        if data is not None:
            return Response(content=data, media_type="application/pdf", headers=headers)

    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attachment not found")
