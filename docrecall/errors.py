"""Exception taxonomy for the caching engine.

Only ``GenerationFailed`` is meant to reach the caller of
``RagOrchestrator.process``; everything else is a cache-layer problem that
the orchestrator recovers from.
"""


class DocRecallError(Exception):
    """Base class for docrecall errors."""


class StorageUnavailable(DocRecallError):
    """The document store could not be read or written."""


class EmbeddingUnavailable(DocRecallError):
    """The embedding capability failed, timed out or returned malformed data."""


class GenerationFailed(DocRecallError):
    """The generation capability failed; nothing was persisted."""


class DimensionMismatch(DocRecallError, ValueError):
    """A vector's length disagrees with the store's dimensionality."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Expected embedding of dimension {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class DuplicateHash(DocRecallError):
    """A record with the same content hash already exists."""

    def __init__(self, content_hash: str):
        super().__init__(f"Document with hash {content_hash} already stored")
        self.content_hash = content_hash
