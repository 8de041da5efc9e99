"""
Configuration for the intake pipeline.

Settings are read from environment variables, with a .env file loaded
first via python-dotenv. Every setting has a default so the pipeline runs
without AI and against a local catalog server out of the box.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from intake.models import UploadOptions

logger = logging.getLogger(__name__)

SUPPORTED_OUTPUT_FORMATS = {"image/jpeg", "image/webp", "image/png"}

DEFAULT_ANALYSIS_PROMPT = (
    "Analyze this luxury jewelry piece. Reply with a JSON object with the keys "
    "title, category, subCategory, weight (estimated grams, number), "
    "description and tags (list of short lowercase keywords)."
)
DEFAULT_WATERMARK_PROMPT = (
    "Remove all text, logos and watermarks from this jewelry photo. "
    "Keep the jewelry itself exactly as it is."
)
DEFAULT_ENHANCEMENT_PROMPT = (
    "Apply luxury jewelry photo enhancement: balance exposure, "
    "sharpen facets, clean background."
)


@dataclass
class IntakeConfig:
    """Runtime settings for preprocessing, enrichment and persistence."""
    # Preprocessing
    max_width: int = 1600
    quality: float = 0.85
    output_format: str = "image/jpeg"

    # Enrichment
    use_ai: bool = False
    openai_api_key: str | None = None
    analysis_model: str = "gpt-4o-mini"
    image_model: str = "gpt-image-1"
    analysis_prompt: str = DEFAULT_ANALYSIS_PROMPT
    watermark_prompt: str = DEFAULT_WATERMARK_PROMPT
    enhancement_prompt: str = DEFAULT_ENHANCEMENT_PROMPT
    ai_timeout: float = 60.0
    ai_max_retries: int = 3

    # Fallbacks
    default_category: str = "Other"
    default_supplier: str = "Unknown"
    placeholder_description: str = "Batch upload."
    contributor: str = "Batch System"

    # Catalog store
    catalog_url: str = "http://localhost:3000/api"
    catalog_token: str | None = None
    catalog_timeout: int = 60
    catalog_max_retries: int = 3
    upload: UploadOptions = field(default_factory=UploadOptions)

    def __post_init__(self):
        if self.max_width < 1:
            raise ValueError(f"max_width must be positive, got {self.max_width}")
        if not 0 < self.quality <= 1:
            raise ValueError(f"quality must be in (0, 1], got {self.quality}")
        if self.output_format not in SUPPORTED_OUTPUT_FORMATS:
            raise ValueError(
                f"Unsupported output format: {self.output_format}. "
                f"Supported: {sorted(SUPPORTED_OUTPUT_FORMATS)}"
            )


def _env_str(name: str, default: str | None) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = _env_str(name, None)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _env_float(name: str, default: float) -> float:
    value = _env_str(name, None)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = _env_str(name, None)
    if value is None:
        return default
    lowered = value.lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def load_config(env_file: str | Path | None = None) -> IntakeConfig:
    """
    Build the configuration from environment variables.

    Args:
        env_file: Optional path to a .env file. If None, python-dotenv
                  searches for a .env file from the working directory.

    Returns:
        Populated IntakeConfig.

    Raises:
        ValueError: If a variable holds an invalid value.
    """
    load_dotenv(env_file)

    upload = UploadOptions(
        target_width=_env_int("INTAKE_UPLOAD_WIDTH", 1600),
        quality=_env_float("INTAKE_UPLOAD_QUALITY", 0.9),
        output_format=_env_str("INTAKE_UPLOAD_FORMAT", "image/webp"),
    )

    config = IntakeConfig(
        max_width=_env_int("INTAKE_MAX_WIDTH", 1600),
        quality=_env_float("INTAKE_QUALITY", 0.85),
        output_format=_env_str("INTAKE_OUTPUT_FORMAT", "image/jpeg"),
        use_ai=_env_bool("INTAKE_USE_AI", False),
        openai_api_key=_env_str("OPENAI_API_KEY", None),
        analysis_model=_env_str("INTAKE_ANALYSIS_MODEL", "gpt-4o-mini"),
        image_model=_env_str("INTAKE_IMAGE_MODEL", "gpt-image-1"),
        analysis_prompt=_env_str("INTAKE_ANALYSIS_PROMPT", DEFAULT_ANALYSIS_PROMPT),
        watermark_prompt=_env_str("INTAKE_WATERMARK_PROMPT", DEFAULT_WATERMARK_PROMPT),
        enhancement_prompt=_env_str("INTAKE_ENHANCEMENT_PROMPT", DEFAULT_ENHANCEMENT_PROMPT),
        ai_timeout=_env_float("INTAKE_AI_TIMEOUT", 60.0),
        ai_max_retries=_env_int("INTAKE_AI_MAX_RETRIES", 3),
        default_category=_env_str("INTAKE_DEFAULT_CATEGORY", "Other"),
        default_supplier=_env_str("INTAKE_DEFAULT_SUPPLIER", "Unknown"),
        placeholder_description=_env_str("INTAKE_PLACEHOLDER_DESCRIPTION", "Batch upload."),
        contributor=_env_str("INTAKE_CONTRIBUTOR", "Batch System"),
        catalog_url=_env_str("CATALOG_API_URL", "http://localhost:3000/api"),
        catalog_token=_env_str("CATALOG_API_TOKEN", None),
        catalog_timeout=_env_int("CATALOG_TIMEOUT", 60),
        catalog_max_retries=_env_int("CATALOG_MAX_RETRIES", 3),
        upload=upload,
    )

    logger.debug(
        f"Loaded config (max_width={config.max_width}, quality={config.quality}, "
        f"use_ai={config.use_ai}, catalog_url={config.catalog_url})"
    )
    return config
