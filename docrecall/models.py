"""Data models for the docrecall caching engine."""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

import numpy as np


def compute_content_hash(data: bytes) -> str:
    """SHA-256 hex digest of raw file bytes."""
    return hashlib.sha256(data).hexdigest()


@dataclass
class UploadedFile:
    """An uploaded file as handed over by the request layer."""
    data: bytes
    filename: str
    mime_type: str = "application/octet-stream"

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


@dataclass
class DocumentRecord:
    """A persisted document with its generated result and, when the text allowed one, its embedding."""
    content_hash: str
    extracted_text: str
    result: str
    embedding: Optional[np.ndarray] = field(repr=False, compare=False)
    source_filename: str = ""
    mime_type: str = ""
    size_bytes: int = 0
    embedding_model: str = ""
    similar_to_id: Optional[int] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class SimilarityResult:
    """A single ranked hit from a similarity search."""
    document_id: int
    filename: str
    result: str
    created_at: datetime
    similarity_score: float


class MatchSource(str, Enum):
    EXACT_MATCH = "exact_match"
    SIMILAR_MATCH = "similar_match"
    GENERATED = "generated"


@dataclass
class MatchedDocument:
    id: int
    filename: str
    score: float


@dataclass
class ProcessResult:
    """What ``RagOrchestrator.process`` hands back to the request layer."""
    result: str
    source: MatchSource
    matched_document: Optional[MatchedDocument] = None
    document_id: Optional[int] = None
    degraded_reason: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def from_cache(self) -> bool:
        return self.source is not MatchSource.GENERATED


# ============ Decision outcomes ============
# The orchestrator reduces every upload to exactly one of these variants.

@dataclass
class ExactMatch:
    record: DocumentRecord


@dataclass
class SimilarMatch:
    best: SimilarityResult
    embedding: np.ndarray = field(repr=False)


@dataclass
class NoMatch:
    embedding: Optional[np.ndarray] = field(repr=False)
    best_score: Optional[float] = None


@dataclass
class DegradedFallback:
    reason: str


Outcome = Union[ExactMatch, SimilarMatch, NoMatch, DegradedFallback]
