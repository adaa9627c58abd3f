"""Exception taxonomy for the card advisor pipeline.

Only ``DataUnavailable`` and ``EmbeddingError`` are allowed to reach the
caller, and only from the retrieval path. ``GenerationError`` is caught by
every stage that has a fallback value, and ``MalformedOutput`` never leaves
the synthesizer.
"""


class CardAdvisorError(Exception):
    """Base exception for card advisor errors."""

    pass


class DataUnavailable(CardAdvisorError):
    """Raised when the card source is unreachable or yields no usable cards."""

    pass


class EmbeddingError(CardAdvisorError):
    """Raised when the embedding service fails or returns unusable vectors."""

    pass


class GenerationError(CardAdvisorError):
    """Raised when the text-generation service call fails."""

    pass


class MalformedOutput(CardAdvisorError):
    """Raised when generator output is not the promised structured data.

    Attributes:
        raw_text: The offending generator output, kept for diagnostics.
    """

    def __init__(self, message: str, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text
