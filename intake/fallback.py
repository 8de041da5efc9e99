"""
Fallback policy for item metadata.

Combines operator hints, AI output and configured defaults into the final
descriptive fields of an item:
- category/subcategory: operator hint, then AI, then the default category
- title: AI, then the cleaned filename
- weight: AI, then 0
- description: AI, then the placeholder text
- tags: AI, then none
"""

import re

from intake.models import ClassificationHints, EnrichedFields, EnrichmentResult

EXTENSION_PATTERN = re.compile(r"\.[^/.]+$")
SEPARATOR_PATTERN = re.compile(r"[-_]")


def title_from_filename(filename: str) -> str:
    """
    Derive a title from a filename.

    The extension is stripped and dashes/underscores become spaces,
    e.g. ``gold_ring-22k.jpg`` -> ``gold ring 22k``.
    """
    title = SEPARATOR_PATTERN.sub(" ", EXTENSION_PATTERN.sub("", filename))
    return title if title.strip() else "Untitled"


def resolve_fields(
    filename: str,
    hints: ClassificationHints,
    result: EnrichmentResult | None,
    default_category: str = "Other",
    placeholder_description: str = "Batch upload."
) -> EnrichedFields:
    """
    Apply the fallback policy.

    Args:
        filename: Original filename of the asset.
        hints: Operator-supplied classification.
        result: AI output, or None when enrichment was disabled or failed.
        default_category: Category used when neither hint nor AI has one.
        placeholder_description: Description used when the AI gave none.

    Returns:
        EnrichedFields ready to be written into a catalog record.
    """
    ai = result or EnrichmentResult()

    return EnrichedFields(
        title=ai.title or title_from_filename(filename),
        category=hints.category or ai.category or default_category,
        subcategory=hints.subcategory or ai.subcategory or None,
        weight=ai.weight or 0.0,
        description=ai.description or placeholder_description,
        tags=tuple(ai.tags),
        ai_enriched=result is not None and not result.is_empty(),
    )
