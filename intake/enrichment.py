"""
AI enrichment client for the intake pipeline.

Wraps the OpenAI API to provide:
- Structured metadata extraction (title, category, weight, tags...)
- Visual cleanup (watermark and text removal)
- Visual enhancement (lighting and quality)
- Retries with exponential backoff
- Typed failures: transport errors vs. replies with nothing usable
"""

import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, TypeVar

import openai
from openai import AsyncOpenAI

from intake.config import (
    DEFAULT_ANALYSIS_PROMPT,
    DEFAULT_ENHANCEMENT_PROMPT,
    DEFAULT_WATERMARK_PROMPT,
    IntakeConfig,
)
from intake.errors import EmptyEnrichmentResult, EnrichmentTransportError
from intake.models import EncodedImage, EnrichmentResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Transient failures worth another attempt
RETRYABLE_ERRORS = (
    openai.APIConnectionError,  # includes APITimeoutError
    openai.RateLimitError,
    openai.InternalServerError,
)

WEIGHT_PATTERN = re.compile(r"-?\d+(?:[.,]\d+)?")


class EnrichmentClient:
    """
    AI-powered metadata extraction and image transformation.

    Usage:
        client = EnrichmentClient.from_config(load_config())
        result = await client.extract_metadata(image)
        cleaned = await client.remove_watermark(image)
    """

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        api_key: str | None = None,
        analysis_model: str = "gpt-4o-mini",
        image_model: str = "gpt-image-1",
        analysis_prompt: str = DEFAULT_ANALYSIS_PROMPT,
        watermark_prompt: str = DEFAULT_WATERMARK_PROMPT,
        enhancement_prompt: str = DEFAULT_ENHANCEMENT_PROMPT,
        timeout: float = 60.0,
        max_retries: int = 3,
        backoff_base: float = 2.0,
        detail: str = "high"
    ):
        """
        Initialize the enrichment client.

        Args:
            client: Preconfigured AsyncOpenAI client. If None, one is created
                    from api_key (or the OPENAI_API_KEY env var).
            api_key: OpenAI API key.
            analysis_model: Vision model used for metadata extraction.
            image_model: Image model used for cleanup and enhancement.
            analysis_prompt: Default instruction for metadata extraction.
            watermark_prompt: Default instruction for cleanup.
            enhancement_prompt: Default instruction for enhancement.
            timeout: Per-request timeout in seconds.
            max_retries: Maximum attempts for transient failures.
            backoff_base: Base of the exponential backoff in seconds.
            detail: Image detail level for analysis ("low", "high", "auto").
        """
        # Retries are handled here, not inside the SDK
        self.client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.analysis_model = analysis_model
        self.image_model = image_model
        self.analysis_prompt = analysis_prompt
        self.watermark_prompt = watermark_prompt
        self.enhancement_prompt = enhancement_prompt
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self.detail = detail

    @classmethod
    def from_config(cls, config: IntakeConfig) -> "EnrichmentClient":
        return cls(
            api_key=config.openai_api_key,
            analysis_model=config.analysis_model,
            image_model=config.image_model,
            analysis_prompt=config.analysis_prompt,
            watermark_prompt=config.watermark_prompt,
            enhancement_prompt=config.enhancement_prompt,
            timeout=config.ai_timeout,
            max_retries=config.ai_max_retries,
        )

    async def extract_metadata(
        self,
        image: EncodedImage,
        prompt: str | None = None
    ) -> EnrichmentResult:
        """
        Extract structured catalog metadata from an image.

        Args:
            image: Preprocessed image.
            prompt: Instruction overriding the configured analysis prompt.

        Returns:
            EnrichmentResult with at least one populated field.

        Raises:
            EnrichmentTransportError: If the API call fails.
            EmptyEnrichmentResult: If the reply holds no usable metadata.
        """
        async def call():
            return await self.client.chat.completions.create(
                model=self.analysis_model,
                temperature=0.2,
                response_format={"type": "json_object"},
                messages=[
                    {
                        "role": "system",
                        "content": (
                            "You are a jewelry cataloguing assistant. "
                            "Always answer with a single JSON object."
                        ),
                    },
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt or self.analysis_prompt},
                            {
                                "type": "image_url",
                                "image_url": {"url": image.to_data_url(), "detail": self.detail},
                            },
                        ],
                    },
                ],
            )

        response = await self._with_retries("metadata extraction", call)

        raw = response.choices[0].message.content if response.choices else None
        result = parse_metadata(raw)
        if result.is_empty():
            raise EmptyEnrichmentResult("Model returned no usable metadata")

        logger.debug(f"Extracted metadata: {result.title!r} ({len(result.tags)} tags)")
        return result

    async def remove_watermark(
        self,
        image: EncodedImage,
        prompt: str | None = None
    ) -> EncodedImage:
        """
        Remove watermarks and overlaid text from an image.

        Raises:
            EnrichmentTransportError: If the API call fails.
            EmptyEnrichmentResult: If the model returned no image.
        """
        return await self._edit_image("cleanup", image, prompt or self.watermark_prompt)

    async def enhance(
        self,
        image: EncodedImage,
        prompt: str | None = None
    ) -> EncodedImage:
        """
        Improve lighting and quality of an image.

        Raises:
            EnrichmentTransportError: If the API call fails.
            EmptyEnrichmentResult: If the model returned no image.
        """
        return await self._edit_image("enhancement", image, prompt or self.enhancement_prompt)

    async def _edit_image(self, label: str, image: EncodedImage, prompt: str) -> EncodedImage:
        async def call():
            return await self.client.images.edit(
                model=self.image_model,
                image=(f"image.{image.extension}", image.data, image.mime_type),
                prompt=prompt,
            )

        response = await self._with_retries(label, call)

        b64_data = response.data[0].b64_json if response.data else None
        if not b64_data:
            raise EmptyEnrichmentResult(f"Model returned no image for {label}")

        try:
            result = EncodedImage.from_data_url(f"data:image/png;base64,{b64_data}")
        except ValueError as e:
            raise EmptyEnrichmentResult(f"Model returned an unreadable image: {e}") from e

        return EncodedImage(sniff_mime_type(result.data), result.data)

    async def _with_retries(self, label: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run an API call, retrying transient failures with exponential backoff."""
        last_error: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            try:
                return await call()

            except RETRYABLE_ERRORS as e:
                last_error = e
                logger.warning(
                    f"AI {label} attempt {attempt}/{self.max_retries} failed: {e}"
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(self.backoff_base ** attempt)

            except openai.APIError as e:
                raise EnrichmentTransportError(f"AI {label} rejected: {e}") from e

        raise EnrichmentTransportError(
            f"AI {label} failed after {self.max_retries} attempts: {last_error}"
        ) from last_error


def parse_metadata(raw: str | None) -> EnrichmentResult:
    """
    Parse the model's JSON reply into an EnrichmentResult.

    Tolerates prose around the JSON object, alternate key spellings,
    weights given as strings with units and tags given as a comma list.
    Unparseable replies yield an empty result.
    """
    data = _load_json_object(raw or "")
    if not data:
        return EnrichmentResult()

    return EnrichmentResult(
        title=_clean_text(data.get("title")),
        category=_clean_text(data.get("category")),
        subcategory=_clean_text(
            data.get("subCategory") or data.get("subcategory") or data.get("sub_category")
        ),
        weight=parse_weight(data.get("weight")),
        description=_clean_text(data.get("description")),
        tags=parse_tags(data.get("tags")),
    )


def parse_weight(value: Any) -> float:
    """Parse a weight estimate; anything unusable or negative becomes 0."""
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = WEIGHT_PATTERN.search(str(value))
        if not match:
            return 0.0
        number = float(match.group(0).replace(",", "."))
    return number if number > 0 else 0.0


def parse_tags(value: Any) -> list[str]:
    """Normalize tags to unique, lowercase, non-empty strings in reply order."""
    if value is None:
        return []
    if isinstance(value, str):
        candidates = value.split(",")
    elif isinstance(value, (list, tuple)):
        candidates = [str(v) for v in value if v is not None]
    else:
        return []

    tags: list[str] = []
    for candidate in candidates:
        tag = candidate.strip().lower()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def sniff_mime_type(data: bytes) -> str:
    """Guess an image mime type from its leading bytes."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/png"


def _load_json_object(raw: str) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        # Fall back to the outermost {...} block
        start, end = raw.find("{"), raw.rfind("}")
        if start == -1 or end <= start:
            logger.debug("AI reply contained no JSON object")
            return {}
        try:
            data = json.loads(raw[start:end + 1])
        except json.JSONDecodeError:
            logger.debug("AI reply contained malformed JSON")
            return {}
    return data if isinstance(data, dict) else {}


def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()
