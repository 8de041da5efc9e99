"""
Exception taxonomy for the intake pipeline.

Decode and persistence failures are terminal for a queue item. Enrichment
failures are only fatal for interactive transforms; during automatic
metadata extraction the pipeline falls back to filename-derived values.
"""


class IntakeError(Exception):
    """Base exception for intake pipeline errors."""
    pass


class ImageDecodeError(IntakeError):
    """The preprocessor could not parse the asset as an image."""
    pass


class EnrichmentError(IntakeError):
    """Base exception for AI enrichment failures."""
    pass


class EnrichmentTransportError(EnrichmentError):
    """The AI call failed on the network, timed out or was rejected."""
    pass


class EmptyEnrichmentResult(EnrichmentError):
    """The AI call succeeded but returned nothing usable."""
    pass


class PersistenceError(IntakeError):
    """The catalog store rejected an upload or a record write."""
    pass


class ItemStateError(IntakeError):
    """An operation was requested on an item in the wrong state."""
    pass
