"""
Catalog store integration for Jewel Intake.

Provides the client used to upload images and create catalog records on the
remote store.
"""

from catalog.client import (
    CatalogClient,
    CatalogError,
    CatalogAuthError,
    CatalogUploadError,
    CatalogRateLimitError,
)

__all__ = [
    "CatalogClient",
    "CatalogError",
    "CatalogAuthError",
    "CatalogUploadError",
    "CatalogRateLimitError",
]
