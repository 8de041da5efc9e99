"""Shared pytest fixtures: generated images and fakes for the AI and the store."""

from __future__ import annotations

import asyncio
import io
from typing import Callable

import pytest
from PIL import Image

from intake.errors import PersistenceError
from intake.models import (
    CatalogRecord,
    EncodedImage,
    EnrichmentResult,
    SourceAsset,
    StoredAsset,
    UploadOptions,
)


def encode_image(
    width: int = 64,
    height: int = 48,
    color: tuple = (200, 170, 40),
    fmt: str = "JPEG",
    mode: str = "RGB",
    exif: bytes | None = None,
) -> bytes:
    img = Image.new(mode, (width, height), color)
    buffer = io.BytesIO()
    kwargs = {"format": fmt}
    if exif is not None:
        kwargs["exif"] = exif
    img.save(buffer, **kwargs)
    return buffer.getvalue()


@pytest.fixture
def make_image() -> Callable[..., bytes]:
    return encode_image


@pytest.fixture
def make_asset() -> Callable[..., SourceAsset]:
    def _make(filename: str = "gold_ring.jpg", **kwargs) -> SourceAsset:
        return SourceAsset(filename=filename, data=encode_image(**kwargs))

    return _make


class FakeStore:
    """In-memory catalog store recording uploads and records."""

    def __init__(self) -> None:
        self.uploads: list[tuple[bytes, UploadOptions, str, str]] = []
        self.records: list[CatalogRecord] = []
        self.upload_error: Exception | None = None
        self.create_error: Exception | None = None

    def upload_image(
        self,
        data: bytes,
        options: UploadOptions,
        filename: str = "image.jpg",
        mime_type: str = "image/jpeg",
    ) -> StoredAsset:
        if self.upload_error is not None:
            raise self.upload_error
        self.uploads.append((data, options, filename, mime_type))
        index = len(self.uploads)
        return StoredAsset(
            primary_url=f"/api/uploads/{index}.jpg",
            thumbnail_url=f"/api/uploads/{index}_thumb.jpg",
        )

    def create_record(self, record: CatalogRecord) -> dict:
        if self.create_error is not None:
            raise self.create_error
        self.records.append(record)
        return {"id": f"prod-{len(self.records)}", **record.to_dict()}


class FakeEnricher:
    """Stand-in for EnrichmentClient with controllable replies and gates."""

    def __init__(self) -> None:
        self.result: EnrichmentResult = EnrichmentResult()
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.started: asyncio.Event | None = None
        self.analysed: list[EncodedImage] = []

        self.transform_result: EncodedImage = EncodedImage(
            "image/jpeg", encode_image(32, 32, (255, 255, 255)), 32, 32
        )
        self.transform_error: Exception | None = None
        self.transform_gate: asyncio.Event | None = None
        self.transform_calls: list[tuple[str, str | None]] = []

    async def extract_metadata(self, image: EncodedImage, prompt: str | None = None) -> EnrichmentResult:
        self.analysed.append(image)
        if self.started is not None:
            self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result

    async def remove_watermark(self, image: EncodedImage, prompt: str | None = None) -> EncodedImage:
        return await self._transform("cleanup", prompt)

    async def enhance(self, image: EncodedImage, prompt: str | None = None) -> EncodedImage:
        return await self._transform("enhance", prompt)

    async def _transform(self, kind: str, prompt: str | None) -> EncodedImage:
        self.transform_calls.append((kind, prompt))
        if self.transform_gate is not None:
            await self.transform_gate.wait()
        if self.transform_error is not None:
            raise self.transform_error
        return self.transform_result


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def enricher() -> FakeEnricher:
    return FakeEnricher()


@pytest.fixture
def persistence_error() -> PersistenceError:
    return PersistenceError("Title required (400)")
