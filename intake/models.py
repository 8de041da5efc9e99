"""
Data model for the intake pipeline.

Queue items:
    - id: Opaque uuid, fixed for the item's lifetime
    - asset: Raw source bytes and filename
    - hints: Caller-supplied classification (supplier, category, device)
    - image: Working image after an interactive cleanup/enhancement
    - stored: Remote image references once uploaded
    - state: pending | analyzing | saving | complete | error(reason)
    - enriched: Title, description, tags, weight, category once analysed

Catalog records are the durable output handed to the catalog store.
"""

import base64
import binascii
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any


class ItemStatus(Enum):
    """Processing status of a queue item."""
    PENDING = "pending"
    ANALYZING = "analyzing"
    SAVING = "saving"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class ItemState:
    """
    Status of a queue item, with the failure reason for the error variant.

    The reason is present if and only if the status is ERROR, so a
    complete item carrying an error message cannot be constructed.
    """
    status: ItemStatus
    reason: str | None = None

    def __post_init__(self):
        if self.status is ItemStatus.ERROR:
            if not self.reason:
                raise ValueError("Error state requires a reason")
        elif self.reason is not None:
            raise ValueError(f"{self.status.value} state cannot carry a reason")

    @classmethod
    def pending(cls) -> "ItemState":
        return cls(ItemStatus.PENDING)

    @classmethod
    def analyzing(cls) -> "ItemState":
        return cls(ItemStatus.ANALYZING)

    @classmethod
    def saving(cls) -> "ItemState":
        return cls(ItemStatus.SAVING)

    @classmethod
    def complete(cls) -> "ItemState":
        return cls(ItemStatus.COMPLETE)

    @classmethod
    def error(cls, reason: str) -> "ItemState":
        return cls(ItemStatus.ERROR, reason)

    @property
    def is_terminal(self) -> bool:
        return self.status in (ItemStatus.COMPLETE, ItemStatus.ERROR)

    def __str__(self) -> str:
        if self.reason:
            return f"{self.status.value}: {self.reason}"
        return self.status.value


@dataclass(frozen=True)
class ClassificationHints:
    """Operator-supplied classification applied to every item of a batch."""
    supplier: str | None = None
    category: str | None = None
    subcategory: str | None = None
    device: str | None = None
    manufacturer: str | None = None

    def overrides(self) -> list[str]:
        """Names of the hints the operator actually filled in."""
        return [
            name for name in ("supplier", "category", "subcategory", "device", "manufacturer")
            if getattr(self, name)
        ]


@dataclass(frozen=True)
class SourceAsset:
    """A raw captured or selected image."""
    filename: str
    data: bytes

    @classmethod
    def from_path(cls, path: str | Path) -> "SourceAsset":
        path = Path(path)
        return cls(filename=path.name, data=path.read_bytes())


DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<payload>.*)$", re.DOTALL)

MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


@dataclass(frozen=True)
class EncodedImage:
    """Encoded image bytes together with their mime type."""
    mime_type: str
    data: bytes
    width: int | None = None
    height: int | None = None

    @property
    def extension(self) -> str:
        return MIME_EXTENSIONS.get(self.mime_type, "jpg")

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_url(self) -> str:
        """Self-describing ``data:`` URL form of the image."""
        return f"data:{self.mime_type};base64,{self.to_base64()}"

    @classmethod
    def from_data_url(cls, url: str) -> "EncodedImage":
        """
        Parse a ``data:<mime>;base64,<payload>`` URL.

        Raises:
            ValueError: If the URL is not a base64 data URL.
        """
        match = DATA_URL_PATTERN.match(url)
        if not match:
            raise ValueError("Not a base64 data URL")
        try:
            data = base64.b64decode(match.group("payload"), validate=True)
        except binascii.Error as e:
            raise ValueError(f"Invalid base64 payload: {e}") from e
        return cls(mime_type=match.group("mime"), data=data)


@dataclass(frozen=True)
class UploadOptions:
    """How the catalog store should render the uploaded image."""
    target_width: int = 1600
    quality: float = 0.9
    output_format: str = "image/webp"


@dataclass(frozen=True)
class StoredAsset:
    """Remote references returned by the catalog store for an upload."""
    primary_url: str
    thumbnail_url: str


@dataclass
class EnrichmentResult:
    """Structured metadata extracted by the AI model. Any field may be empty."""
    title: str = ""
    category: str = ""
    subcategory: str = ""
    weight: float = 0.0
    description: str = ""
    tags: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not any((
            self.title, self.category, self.subcategory,
            self.weight, self.description, self.tags,
        ))


@dataclass(frozen=True)
class EnrichedFields:
    """Final descriptive fields of an item after the fallback policy."""
    title: str
    category: str
    subcategory: str | None
    weight: float
    description: str
    tags: tuple[str, ...]
    ai_enriched: bool = False


@dataclass
class QueueItem:
    """One unit of intake work."""
    id: str
    asset: SourceAsset
    hints: ClassificationHints = field(default_factory=ClassificationHints)
    state: ItemState = field(default_factory=ItemState.pending)
    image: EncodedImage | None = None
    stored: StoredAsset | None = None
    enriched: EnrichedFields | None = None
    record_id: str | None = None
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def status(self) -> ItemStatus:
        return self.state.status

    @property
    def error(self) -> str | None:
        return self.state.reason

    @property
    def filename(self) -> str:
        return self.asset.filename

    @property
    def working_bytes(self) -> bytes:
        """Bytes the pipeline works on: the replaced image, else the raw asset."""
        if self.image is not None:
            return self.image.data
        return self.asset.data

    @property
    def preview_url(self) -> str:
        """
        Where a UI finds the current preview.

        Remote URL once uploaded, a data URL after a cleanup/enhancement,
        otherwise an in-memory reference to the raw asset.
        """
        if self.stored is not None:
            return self.stored.primary_url
        if self.image is not None:
            return self.image.to_data_url()
        return f"memory://{self.id}/{self.asset.filename}"


@dataclass
class CatalogRecord:
    """A finished catalog entry, ready for the catalog store."""
    title: str
    category: str
    weight: float
    description: str
    tags: list[str]
    images: list[str]
    thumbnails: list[str]
    supplier: str
    uploaded_by: str
    subcategory: str | None = None
    is_hidden: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    date_taken: date | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON shape accepted by the catalog store."""
        data: dict[str, Any] = {
            "title": self.title,
            "category": self.category,
            "weight": self.weight,
            "description": self.description,
            "tags": list(self.tags),
            "images": list(self.images),
            "thumbnails": list(self.thumbnails),
            "supplier": self.supplier,
            "uploadedBy": self.uploaded_by,
            "isHidden": self.is_hidden,
            "createdAt": self.created_at.isoformat(),
            "dateTaken": (self.date_taken or self.created_at.date()).isoformat(),
            "meta": dict(self.meta),
        }
        if self.subcategory:
            data["subCategory"] = self.subcategory
        return data
