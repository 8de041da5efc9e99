"""
Interactive cleanup and enhancement of queued images.

Operator-initiated, single-item transforms that run outside the drain
order: watermark/text removal and visual enhancement. The transformed image
replaces the item's working image and the item becomes pending again.
"""

import asyncio
import logging
from enum import Enum
from typing import Protocol

from intake.errors import ImageDecodeError, IntakeError
from intake.models import EncodedImage, SourceAsset
from intake.preprocessor import MediaPreprocessor
from intake.queue_manager import QueueManager

logger = logging.getLogger(__name__)


class TransformMode(Enum):
    """Kind of interactive transform."""
    CLEANUP = "cleanup"
    ENHANCE = "enhance"


class ImageTransformer(Protocol):
    """The part of the enrichment client used for pixel transforms."""

    async def remove_watermark(
        self, image: EncodedImage, prompt: str | None = None
    ) -> EncodedImage: ...

    async def enhance(
        self, image: EncodedImage, prompt: str | None = None
    ) -> EncodedImage: ...


class CleanupTrigger:
    """
    Applies AI image transforms to single queued items on request.

    A transform may run while the drain loop is busy with another item.
    While it runs the item shows as analyzing; on failure it becomes error
    with a reason and keeps its previous working image.
    """

    def __init__(
        self,
        queue: QueueManager,
        transformer: ImageTransformer,
        preprocessor: MediaPreprocessor | None = None
    ):
        """
        Initialize the trigger.

        Args:
            queue: Queue holding the items to transform.
            transformer: AI client performing the transforms.
            preprocessor: Preprocessor applied before sending an image to the
                          AI model. Defaults to the queue's preprocessor.
        """
        self.queue = queue
        self.transformer = transformer
        self.preprocessor = preprocessor or queue.preprocessor

    async def remove_watermark(self, item_id: str, prompt: str | None = None) -> bool:
        """Remove watermarks from a pending item. Returns True on success."""
        return await self.apply(item_id, TransformMode.CLEANUP, prompt)

    async def enhance(self, item_id: str, prompt: str | None = None) -> bool:
        """Enhance a pending item. Returns True on success."""
        return await self.apply(item_id, TransformMode.ENHANCE, prompt)

    async def apply(
        self,
        item_id: str,
        mode: TransformMode,
        prompt: str | None = None
    ) -> bool:
        """
        Transform one pending item.

        Args:
            item_id: Id of a pending queue item.
            mode: Cleanup or enhancement.
            prompt: Instruction overriding the configured prompt.

        Returns:
            True if the item's working image was replaced, False if the
            transform failed and the item was marked error.

        Raises:
            KeyError: If no item has this id.
            ItemStateError: If the item is not pending.
        """
        item = self.queue.begin_transform(item_id)
        logger.info(f"Starting {mode.value} for {item.filename}")

        try:
            transformed = await self._transform(item.working_bytes, mode, prompt)
        except ImageDecodeError as e:
            reason = f"Could not read image: {e}"
        except IntakeError as e:
            reason = f"{_label(mode)} failed: {e}"
        except Exception as e:
            logger.exception(f"Unexpected error during {mode.value} of {item.filename}")
            reason = f"{_label(mode)} failed: {e}"
        else:
            self.queue.finish_transform(item_id, transformed)
            logger.info(f"Finished {mode.value} for {item.filename}")
            return True

        logger.error(f"{item.filename}: {reason}")
        self.queue.fail_transform(item_id, reason)
        return False

    async def transform_asset(
        self,
        asset: SourceAsset,
        mode: TransformMode,
        prompt: str | None = None
    ) -> EncodedImage:
        """
        Transform an image that is not queued (single-image pre-submission).

        Raises:
            ImageDecodeError: If the asset cannot be decoded.
            EnrichmentError: If the AI transform fails.
        """
        logger.info(f"Starting {mode.value} for {asset.filename} (not queued)")
        return await self._transform(asset.data, mode, prompt)

    async def _transform(
        self,
        data: bytes,
        mode: TransformMode,
        prompt: str | None
    ) -> EncodedImage:
        image = await asyncio.to_thread(self.preprocessor.process, data)
        if mode is TransformMode.CLEANUP:
            return await self.transformer.remove_watermark(image, prompt)
        return await self.transformer.enhance(image, prompt)


def _label(mode: TransformMode) -> str:
    return "Cleanup" if mode is TransformMode.CLEANUP else "Enhancement"
