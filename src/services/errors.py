"""Error kinds raised by the study services."""


class ExtractionError(ValueError):
    """Raised when an uploaded document cannot be split into page chunks."""


class QueryError(ValueError):
    """Raised when a model call fails or returns unusable output."""
