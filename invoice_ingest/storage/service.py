"""S3-compatible object storage for invoice attachments using MinIO.

Split invoice PDFs are uploaded under a configurable prefix and referenced
from the accounting payload by URL, so Odoo can fetch them itself. The
bucket is expected to allow anonymous reads on that prefix.

Based on MinIO Python SDK:
https://min.io/docs/minio/linux/developers/python/API.html
"""

import io
import logging
from urllib.parse import quote

from minio import Minio
from minio.error import S3Error
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from invoice_ingest.shared.config import Settings

logger = logging.getLogger(__name__)


class StorageResult(BaseModel):
    """Outcome of an attachment upload.

    Attributes:
        success: Whether the object was written
        object_name: Key the attachment was written under
        url: Public URL Odoo downloads the attachment from
        size: Uploaded size in bytes
        error: Reason the upload failed
    """

    success: bool
    object_name: str
    url: str | None = None
    size: int | None = None
    error: str | None = None


class StorageService:
    """Attachment PDFs in one MinIO/S3 bucket."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._client: Minio | None = None
        self._bucket_ready = False

    @property
    def bucket(self) -> str:
        return self.settings.storage_bucket

    def is_available(self) -> bool:
        """Storage is used only when enabled and both credentials are set."""
        return (
            self.settings.storage_enabled
            and bool(self.settings.storage_access_key)
            and bool(self.settings.storage_secret_key)
        )

    def _minio(self) -> Minio:
        """Create the MinIO client on first use.

        Raises:
            ValueError: If a storage credential is missing
        """
        if self._client is not None:
            return self._client

        for name in ("access_key", "secret_key"):
            if not getattr(self.settings, f"storage_{name}"):
                raise ValueError(
                    f"Storage {name.replace('_', ' ')} not configured. "
                    f"Set APP_STORAGE_{name.upper()}."
                )

        self._client = Minio(
            self.settings.storage_endpoint,
            access_key=self.settings.storage_access_key,
            secret_key=self.settings.storage_secret_key,
            secure=self.settings.storage_secure,
        )
        logger.info(f"Connected attachment storage at {self.settings.storage_endpoint}")
        return self._client

    def object_key(self, filename: str) -> str:
        """Object name for an attachment filename (adds the configured prefix)."""
        return f"{self.settings.storage_prefix}{filename}"

    def get_public_url(self, object_name: str) -> str:
        """URL under which the object is publicly readable.

        Uses storage_public_base_url when configured (the whole key is
        URL-encoded), otherwise a path-style URL on the storage endpoint.
        """
        base = self.settings.storage_public_base_url.rstrip("/")
        if base:
            return f"{base}/{quote(object_name, safe='')}"

        scheme = "https" if self.settings.storage_secure else "http"
        return f"{scheme}://{self.settings.storage_endpoint}/{self.bucket}/{quote(object_name)}"

    @retry(
        retry=retry_if_exception_type(S3Error),
        wait=wait_exponential_jitter(initial=1, max=10),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _write(self, object_name: str, data: bytes, content_type: str) -> None:
        client = self._minio()
        if not self._bucket_ready:
            if not client.bucket_exists(self.bucket):
                client.make_bucket(self.bucket)
                logger.info(f"Created attachment bucket {self.bucket}")
            self._bucket_ready = True

        client.put_object(
            self.bucket,
            object_name,
            io.BytesIO(data),
            length=len(data),
            content_type=content_type,
        )

    def upload_bytes(
        self, data: bytes, object_name: str, content_type: str = "application/pdf"
    ) -> StorageResult:
        """Write an attachment and return its public URL.

        S3 errors are retried; failures are reported in the result, not raised.
        """
        try:
            self._write(object_name, data, content_type)
        except S3Error as e:
            logger.error(f"Attachment upload failed for {object_name}: {e}")
            return StorageResult(
                success=False, object_name=object_name, error=f"S3 error: {e.code} - {e.message}"
            )
        except Exception as e:
            logger.error(f"Attachment upload failed for {object_name}: {e}")
            return StorageResult(success=False, object_name=object_name, error=str(e))

        logger.info(f"Stored {object_name} in {self.bucket} ({len(data)} bytes)")
        return StorageResult(
            success=True,
            object_name=object_name,
            url=self.get_public_url(object_name),
            size=len(data),
        )

    def get_object(self, object_name: str) -> bytes | None:
        """Read an attachment back; None when it is missing or unreadable."""
        try:
            response = self._minio().get_object(self.bucket, object_name)
        except S3Error as e:
            if e.code != "NoSuchKey":
                logger.error(f"Attachment read failed for {object_name}: {e}")
            return None
        except Exception as e:
            logger.error(f"Attachment read failed for {object_name}: {e}")
            return None

        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()
