"""
Media intake pipeline for Jewel Intake.

This package provides the asynchronous pipeline for:
- Queueing newly captured or selected jewelry images
- Resizing and encoding them for transmission
- Extracting catalog metadata with an AI model (optional)
- Interactive watermark removal and enhancement
- Committing finished records to the catalog store
"""

from intake.config import IntakeConfig, load_config
from intake.models import (
    CatalogRecord,
    ClassificationHints,
    EncodedImage,
    ItemState,
    ItemStatus,
    QueueItem,
    SourceAsset,
)
from intake.preprocessor import MediaPreprocessor
from intake.enrichment import EnrichmentClient
from intake.queue_manager import QueueManager
from intake.cleanup import CleanupTrigger, TransformMode
from intake.scanner import AssetScanner

__all__ = [
    "IntakeConfig",
    "load_config",
    "CatalogRecord",
    "ClassificationHints",
    "EncodedImage",
    "ItemState",
    "ItemStatus",
    "QueueItem",
    "SourceAsset",
    "MediaPreprocessor",
    "EnrichmentClient",
    "QueueManager",
    "CleanupTrigger",
    "TransformMode",
    "AssetScanner",
]
