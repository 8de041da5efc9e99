"""
Intake queue and drain loop.

Coordinates the pipeline stages for every queued image:
1. Preprocessing (resize/encode)
2. AI metadata extraction (optional, falls back to filename-derived values)
3. Upload to the catalog store
4. Catalog record creation

A single worker task drains the queue in FIFO order, so at most one item
is in flight at a time. All state lives on one asyncio event loop; blocking
work (Pillow, HTTP) runs in worker threads so enqueue, removal and reads
stay responsive while an item is in flight.
"""

import asyncio
import copy
import logging
import uuid
from typing import Callable, Iterable, Protocol

from intake.config import IntakeConfig
from intake.errors import (
    EmptyEnrichmentResult,
    ImageDecodeError,
    ItemStateError,
    PersistenceError,
)
from intake.exif import CaptureInfo, read_capture_info
from intake.fallback import resolve_fields
from intake.models import (
    CatalogRecord,
    ClassificationHints,
    EncodedImage,
    EnrichedFields,
    EnrichmentResult,
    ItemState,
    ItemStatus,
    QueueItem,
    SourceAsset,
    StoredAsset,
    UploadOptions,
)
from intake.preprocessor import MediaPreprocessor

logger = logging.getLogger(__name__)

QueueListener = Callable[[tuple[QueueItem, ...]], None]


class CatalogStore(Protocol):
    """The part of the catalog store the pipeline writes to."""

    def upload_image(
        self,
        data: bytes,
        options: UploadOptions,
        filename: str = ...,
        mime_type: str = ...,
    ) -> StoredAsset: ...

    def create_record(self, record: CatalogRecord) -> dict: ...


class MetadataEnricher(Protocol):
    """The part of the enrichment client the drain loop uses."""

    async def extract_metadata(
        self, image: EncodedImage, prompt: str | None = None
    ) -> EnrichmentResult: ...


class QueueManager:
    """
    Ordered collection of intake items with a single-concurrency drain loop.

    Usage:
        async with QueueManager(store, config=config) as queue:
            queue.enqueue(assets, ClassificationHints(category="Ring"))
            await queue.join()

    Items are never deleted by the pipeline; failed items stay visible
    with their reason until the caller removes them.
    """

    def __init__(
        self,
        store: CatalogStore,
        config: IntakeConfig | None = None,
        preprocessor: MediaPreprocessor | None = None,
        enricher: MetadataEnricher | None = None,
        use_ai: bool | None = None
    ):
        """
        Initialize the queue manager.

        Args:
            store: Catalog store receiving uploads and records.
            config: Pipeline settings. Defaults to IntakeConfig().
            preprocessor: Image preprocessor. Built from config if None.
            enricher: AI metadata source. Required when use_ai is True.
            use_ai: Whether to run AI metadata extraction. Defaults to
                    config.use_ai.
        """
        self.config = config or IntakeConfig()
        self.store = store
        self.preprocessor = preprocessor or MediaPreprocessor(
            max_width=self.config.max_width,
            quality=self.config.quality,
            output_format=self.config.output_format,
        )
        self.enricher = enricher
        self._use_ai = False
        self.use_ai = self.config.use_ai if use_ai is None else use_ai

        self._items: dict[str, QueueItem] = {}
        self._listeners: list[QueueListener] = []
        self._current: str | None = None
        self._transforms: set[str] = set()
        # Created by start(); a running manager belongs to one event loop
        self._wakeup: asyncio.Event | None = None
        self._idle: asyncio.Event | None = None
        self._worker: asyncio.Task | None = None
        self._closing = False

    @property
    def use_ai(self) -> bool:
        return self._use_ai

    @use_ai.setter
    def use_ai(self, value: bool) -> None:
        if value and self.enricher is None:
            raise ValueError("AI enrichment requires an enricher")
        self._use_ai = bool(value)

    # ────────────────────────────────────────────────────────────────────────
    # Caller surface
    # ────────────────────────────────────────────────────────────────────────

    def enqueue(
        self,
        assets: Iterable[SourceAsset],
        hints: ClassificationHints | None = None
    ) -> list[str]:
        """
        Queue assets for processing.

        Returns immediately; the drain loop picks the items up in order.

        Args:
            assets: Raw images to process.
            hints: Classification applied to every item of the batch.

        Returns:
            Ids of the new items, in enqueue order.

        Raises:
            ValueError: If an asset is missing. Nothing is queued then.
                Assets with unreadable or empty data are queued and fail
                during processing.
        """
        assets = list(assets)
        if any(asset is None for asset in assets):
            raise ValueError("Cannot enqueue a missing asset")

        hints = hints or ClassificationHints()
        new_ids = []
        for asset in assets:
            item = QueueItem(id=uuid.uuid4().hex, asset=asset, hints=hints)
            self._items[item.id] = item
            new_ids.append(item.id)

        if new_ids:
            logger.info(f"Queued {len(new_ids)} image(s), {self.pending_count} pending")
            self._notify()
            self._wake()
        return new_ids

    def remove(self, item_id: str) -> bool:
        """
        Remove an item regardless of its status.

        An in-flight step is never interrupted; its outcome is simply no
        longer visible in the queue.

        Returns:
            True if the item was present.
        """
        item = self._items.pop(item_id, None)
        if item is None:
            return False

        if item_id == self._current:
            logger.warning(f"Removed {item.filename} while in flight; the current step will finish")
        else:
            logger.debug(f"Removed {item.filename} ({item.status.value})")
        self._notify()
        return True

    def clear_completed(self) -> int:
        """
        Remove every complete item. Items in any other status, including
        error, are kept.

        Returns:
            Number of items removed.
        """
        completed = [i for i, item in self._items.items() if item.status is ItemStatus.COMPLETE]
        for item_id in completed:
            del self._items[item_id]

        if completed:
            logger.debug(f"Cleared {len(completed)} completed item(s)")
            self._notify()
        return len(completed)

    @property
    def items(self) -> tuple[QueueItem, ...]:
        """Snapshot of all items in enqueue order."""
        return tuple(copy.copy(item) for item in self._items.values())

    def get(self, item_id: str) -> QueueItem | None:
        item = self._items.get(item_id)
        return copy.copy(item) if item is not None else None

    @property
    def is_processing(self) -> bool:
        """True while the drain loop has an item in flight."""
        return self._current is not None

    @property
    def pending_count(self) -> int:
        return sum(1 for item in self._items.values() if item.status is ItemStatus.PENDING)

    def subscribe(self, listener: QueueListener) -> Callable[[], None]:
        """
        Register a listener called with a fresh snapshot after every change.

        The listener is called once immediately with the current snapshot.

        Returns:
            Function that unregisters the listener.
        """
        self._listeners.append(listener)
        listener(self.items)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def summary(self) -> str:
        """Generate summary string."""
        counts = {status: 0 for status in ItemStatus}
        for item in self._items.values():
            counts[item.status] += 1

        lines = [
            "=" * 50,
            "Intake Queue Summary",
            "=" * 50,
            f"Total items: {len(self._items)}",
        ]
        lines.extend(f"{status.value.capitalize()}: {counts[status]}" for status in ItemStatus)

        failed = [item for item in self._items.values() if item.status is ItemStatus.ERROR]
        if failed:
            lines.append("")
            lines.append("Failed images:")
            for item in failed:
                lines.append(f"  - {item.filename}: {item.error}")

        return "\n".join(lines)

    # ────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ────────────────────────────────────────────────────────────────────────

    def start(self) -> None:
        """
        Start the drain loop on the running event loop. Idempotent.

        Raises:
            RuntimeError: If called outside a running event loop.
        """
        if self._worker is not None and not self._worker.done():
            return
        loop = asyncio.get_running_loop()
        self._closing = False
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._worker = loop.create_task(self._drain_loop(), name="intake-drain")

    async def join(self) -> None:
        """
        Wait until nothing is pending and nothing is in flight.

        Running interactive transforms count as in flight: an item they
        return to pending is drained before join() returns.
        """
        if self._worker is None:
            raise RuntimeError("Queue manager is not started")
        await self._idle.wait()

    async def close(self) -> None:
        """
        Let the in-flight item and any running transforms finish, then stop
        the drain loop. Items still pending stay queued for the next start().
        """
        if self._worker is None:
            return
        self._closing = True
        self._wakeup.set()
        await self._worker
        self._worker = None

    async def __aenter__(self) -> "QueueManager":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.close()
        return False

    # ────────────────────────────────────────────────────────────────────────
    # Interactive transforms
    # ────────────────────────────────────────────────────────────────────────

    def begin_transform(self, item_id: str) -> QueueItem:
        """
        Mark a pending item busy for an interactive cleanup/enhancement.

        The drain loop skips the item until finish_transform() returns it
        to pending.

        Returns:
            Snapshot of the item.

        Raises:
            KeyError: If no item has this id.
            ItemStateError: If the item is not pending.
        """
        item = self._items.get(item_id)
        if item is None:
            raise KeyError(item_id)
        if item.status is not ItemStatus.PENDING:
            raise ItemStateError(
                f"{item.filename} is {item.status.value}; only pending items can be transformed"
            )

        self._transforms.add(item_id)
        if self._idle is not None:
            self._idle.clear()
        self._set_state(item, ItemState.analyzing())
        return copy.copy(item)

    def finish_transform(self, item_id: str, image: EncodedImage) -> None:
        """Replace the item's working image and make it pending again."""
        self._transforms.discard(item_id)
        item = self._items.get(item_id)
        if item is None:
            logger.info(f"Item {item_id} was removed during its transform; result dropped")
        else:
            item.image = image
            self._set_state(item, ItemState.pending())
        self._wake()

    def fail_transform(self, item_id: str, reason: str) -> None:
        """Mark the item failed, leaving its working image untouched."""
        self._transforms.discard(item_id)
        item = self._items.get(item_id)
        if item is not None:
            self._set_state(item, ItemState.error(reason))
        self._wake()

    # ────────────────────────────────────────────────────────────────────────
    # Drain loop
    # ────────────────────────────────────────────────────────────────────────

    def _wake(self) -> None:
        if self._worker is None:
            return
        self._idle.clear()
        self._wakeup.set()

    def _next_pending(self) -> QueueItem | None:
        for item in self._items.values():
            if item.status is ItemStatus.PENDING:
                return item
        return None

    async def _drain_loop(self) -> None:
        logger.debug("Drain loop started")
        try:
            while True:
                item = None if self._closing else self._next_pending()
                if item is None:
                    if not self._transforms:
                        if self._closing:
                            break
                        self._idle.set()
                    # A finished transform wakes the loop again
                    self._wakeup.clear()
                    await self._wakeup.wait()
                    continue
                await self._process(item)
        finally:
            self._current = None
            self._idle.set()
            logger.debug("Drain loop stopped")

    async def _process(self, item: QueueItem) -> None:
        """Drive one item from pending to complete or error."""
        self._current = item.id
        try:
            self._set_state(item, ItemState.analyzing())

            logger.debug(f"Preprocessing: {item.filename}")
            image = await asyncio.to_thread(self.preprocessor.process, item.working_bytes)
            capture = await asyncio.to_thread(read_capture_info, item.asset.data)

            result = await self._enrich(item, image)
            fields = resolve_fields(
                item.filename,
                item.hints,
                result,
                default_category=self.config.default_category,
                placeholder_description=self.config.placeholder_description,
            )
            item.enriched = fields
            self._set_state(item, ItemState.saving())

            logger.debug(f"Uploading: {item.filename}")
            stored = await asyncio.to_thread(
                self.store.upload_image,
                image.data,
                self.config.upload,
                filename=f"{item.id}.{image.extension}",
                mime_type=image.mime_type,
            )
            record = self._build_record(item, fields, stored, capture)
            created = await asyncio.to_thread(self.store.create_record, record)

            item.stored = stored
            item.record_id = str(created.get("id")) if created and created.get("id") else None
            self._set_state(item, ItemState.complete())
            logger.info(f"Processed: {item.filename} ({fields.title!r}, {fields.category})")

        except ImageDecodeError as e:
            self._fail(item, f"Could not read image: {e}")
        except PersistenceError as e:
            self._fail(item, f"Upload failed: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error processing {item.filename}")
            self._fail(item, f"Processing failed: {e}")
        finally:
            self._current = None

    async def _enrich(self, item: QueueItem, image: EncodedImage) -> EnrichmentResult | None:
        """Run AI metadata extraction; any failure means fallback values."""
        if not self.use_ai:
            return None

        logger.debug(f"Extracting metadata: {item.filename}")
        try:
            return await self.enricher.extract_metadata(image)
        except EmptyEnrichmentResult:
            logger.info(f"AI returned no metadata for {item.filename}; using fallback values")
        except Exception as e:
            logger.warning(f"AI enrichment failed for {item.filename}: {e}; using fallback values")
        return None

    def _build_record(
        self,
        item: QueueItem,
        fields: EnrichedFields,
        stored: StoredAsset,
        capture: CaptureInfo
    ) -> CatalogRecord:
        hints = item.hints
        return CatalogRecord(
            title=fields.title,
            category=fields.category,
            subcategory=fields.subcategory,
            weight=fields.weight,
            description=fields.description,
            tags=list(fields.tags),
            images=[stored.primary_url],
            thumbnails=[stored.thumbnail_url],
            supplier=hints.supplier or self.config.default_supplier,
            uploaded_by=self.config.contributor,
            date_taken=capture.date_taken.date() if capture.date_taken else None,
            meta={
                "cameraModel": hints.device or capture.camera_model or "Unknown",
                "deviceManufacturer": hints.manufacturer or capture.camera_make or "Unknown",
                "originalFilename": item.filename,
                "aiEnriched": fields.ai_enriched,
                "overrides": hints.overrides(),
            },
        )

    def _fail(self, item: QueueItem, reason: str) -> None:
        logger.error(f"Failed to process {item.filename}: {reason}")
        self._set_state(item, ItemState.error(reason))

    def _set_state(self, item: QueueItem, state: ItemState) -> None:
        item.state = state
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.items
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Queue listener failed")
