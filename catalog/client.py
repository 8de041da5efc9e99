"""
HTTP client for the remote catalog store.

This module provides functionality to:
- Upload a processed image and receive primary and thumbnail URLs
- Create catalog records
- Check server health

The store speaks JSON over HTTP; error replies carry an "error" field.
"""

import logging
import time
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from intake.config import IntakeConfig
from intake.errors import PersistenceError
from intake.models import CatalogRecord, StoredAsset, UploadOptions

logger = logging.getLogger(__name__)

# Safe to resend after a lost reply
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})


# ────────────────────────────────────────────────────────────────────────────────
# Exceptions
# ────────────────────────────────────────────────────────────────────────────────

class CatalogError(PersistenceError):
    """Base exception for catalog store errors."""
    pass


class CatalogAuthError(CatalogError):
    """Authentication failure - API token missing, invalid or expired."""
    pass


class CatalogUploadError(CatalogError):
    """Image upload failed."""
    pass


class CatalogRateLimitError(CatalogError):
    """Rate limit exceeded."""
    pass


# ────────────────────────────────────────────────────────────────────────────────
# Client Implementation
# ────────────────────────────────────────────────────────────────────────────────

class CatalogClient:
    """
    Client for the catalog store REST API.

    Usage:
        with CatalogClient("https://shop.example.com/api", token="...") as client:
            stored = client.upload_image(image_bytes, UploadOptions())
            client.create_record(record)
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        max_retries: int = 3,
        timeout: int = 60,
        backoff_base: float = 0.5,
    ):
        """
        Initialize catalog client.

        Args:
            base_url: API root, e.g. "http://localhost:3000/api".
            token: Bearer token for the staff API, if the store requires one.
            max_retries: Maximum number of attempts for failed requests.
            timeout: Request timeout in seconds.
            backoff_base: Seconds to wait after the first failed attempt,
                          doubled after each further failure.
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.max_retries = max(1, max_retries)
        self.timeout = timeout
        self.backoff_base = backoff_base

        # Setup requests session with connection pooling
        self._session = requests.Session()
        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=backoff_base,
            status_forcelist=[502, 503, 504],
        )
        adapter = HTTPAdapter(
            pool_connections=2,
            pool_maxsize=4,
            max_retries=retry_strategy,
        )
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

    @classmethod
    def from_config(cls, config: IntakeConfig) -> "CatalogClient":
        return cls(
            base_url=config.catalog_url,
            token=config.catalog_token,
            max_retries=config.catalog_max_retries,
            timeout=config.catalog_timeout,
        )

    def _get_headers(self) -> dict[str, str]:
        """Get request headers with authentication."""
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _make_request(
        self,
        method: str,
        endpoint: str,
        **kwargs,
    ) -> Any:
        """
        Make an HTTP request with retry logic and decode the JSON reply.

        Reads are retried on any transport failure or 5xx reply. Writes are
        only retried when the connection could not be established, so a
        record is never created twice.

        Args:
            method: HTTP method (GET, POST, ...)
            endpoint: Path below the API root
            **kwargs: Additional arguments passed to requests

        Returns:
            Decoded JSON body.

        Raises:
            CatalogAuthError: If authentication fails
            CatalogRateLimitError: If rate limited
            CatalogError: For other errors
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        kwargs.setdefault("headers", self._get_headers())
        kwargs.setdefault("timeout", self.timeout)

        last_error = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self._session.request(method, url, **kwargs)

                if response.status_code in (401, 403):
                    raise CatalogAuthError(
                        f"Catalog store refused credentials ({response.status_code})"
                    )

                if response.status_code == 429:
                    retry_after = response.headers.get("Retry-After", "60")
                    raise CatalogRateLimitError(
                        f"Rate limited. Retry after {retry_after} seconds."
                    )

                if 400 <= response.status_code < 500:
                    raise CatalogError(
                        f"{_error_message(response)} ({response.status_code})"
                    )

                response.raise_for_status()
                return _decode_json(response)

            except CatalogError:
                raise

            except requests.exceptions.RequestException as e:
                # A write may have reached the store; only resend if it never connected
                if method not in IDEMPOTENT_METHODS and not isinstance(
                    e, requests.exceptions.ConnectionError
                ):
                    raise CatalogError(
                        f"{method} {endpoint} failed and was not retried: {e}"
                    ) from e

                last_error = e
                logger.warning(
                    f"Catalog request {method} {endpoint} attempt "
                    f"{attempt}/{self.max_retries} failed: {e}"
                )
                if attempt < self.max_retries:
                    sleep_time = self.backoff_base * 2 ** (attempt - 1)
                    logger.debug(f"Sleeping {sleep_time}s before retry")
                    time.sleep(sleep_time)

        raise CatalogError(
            f"Request failed after {self.max_retries} attempts: {last_error}"
        )

    def is_healthy(self) -> bool:
        """
        Check whether the store answers its health endpoint.

        Returns:
            True if the store reports itself healthy, False otherwise.
        """
        try:
            data = self._make_request("GET", "/health")
        except CatalogError as e:
            logger.warning(f"Catalog health check failed: {e}")
            return False
        return bool(data.get("healthy", True)) if isinstance(data, dict) else True

    def upload_image(
        self,
        data: bytes,
        options: UploadOptions,
        filename: str = "image.jpg",
        mime_type: str = "image/jpeg",
    ) -> StoredAsset:
        """
        Upload image bytes to the store's media endpoint.

        The store renders the primary image at the requested width, quality
        and format, and generates a thumbnail.

        Args:
            data: Encoded image bytes.
            options: Rendering options for the stored image.
            filename: Filename reported to the store.
            mime_type: Mime type of the uploaded bytes.

        Returns:
            StoredAsset with primary and thumbnail URLs.

        Raises:
            CatalogUploadError: If the store accepted the upload but
                returned no image URL.
            CatalogError: If the upload request fails.
        """
        result = self._make_request(
            "POST",
            "/media",
            files={"file": (filename, data, mime_type)},
            data={
                "width": str(options.target_width),
                "quality": str(options.quality),
                "format": options.output_format,
            },
            timeout=self.timeout * 2,  # Longer timeout for uploads
        )

        if not isinstance(result, dict):
            raise CatalogUploadError("Upload reply was not a JSON object")

        primary = result.get("primary") or result.get("primaryUrl")
        if not primary:
            raise CatalogUploadError(f"Upload of {filename} returned no image URL")
        thumbnail = result.get("thumbnail") or result.get("thumbnailUrl") or primary

        logger.info(f"Uploaded {filename} to catalog store")
        return StoredAsset(primary_url=primary, thumbnail_url=thumbnail)

    def create_record(self, record: CatalogRecord) -> dict[str, Any]:
        """
        Create a catalog record.

        Args:
            record: Finished catalog record.

        Returns:
            The record as stored, including its id.

        Raises:
            CatalogError: If the store rejects the record.
        """
        result = self._make_request(
            "POST",
            "/products",
            json=record.to_dict(),
        )
        if not isinstance(result, dict):
            raise CatalogError("Create reply was not a JSON object")

        logger.debug(f"Created catalog record {result.get('id')} ({record.title})")
        return result

    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()
        logger.debug("Catalog session closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def _decode_json(response: requests.Response) -> Any:
    content_type = response.headers.get("Content-Type", "")
    if "application/json" not in content_type:
        raise CatalogError(
            f"Server returned unexpected response: {response.text[:50]}..."
        )
    try:
        return response.json()
    except ValueError as e:
        raise CatalogError(f"Server returned malformed JSON: {e}") from e


def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return f"Server Error: {response.text[:50]}"
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return "Server Error"
