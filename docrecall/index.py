"""Vector similarity backends.

The linear scan below is the only backend shipped. Anything implementing
``SimilarityBackend`` (an ANN index, for instance) can replace it without
touching the orchestrator.
"""

import math
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence, Union

import numpy as np

from .errors import DimensionMismatch
from .logging_utils import get_logger
from .models import DocumentRecord, SimilarityResult

logger = get_logger(__name__)

VectorLike = Union[Sequence[float], np.ndarray]


def as_vector(values: VectorLike, dim: Optional[int] = None) -> np.ndarray:
    """
    Coerce a sequence of numbers into a 1-D float32 vector.

    Raises:
        ValueError: if the values are not a flat numeric, finite sequence
        DimensionMismatch: if ``dim`` is given and the length differs
    """
    try:
        raw = np.asarray(values)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Embedding is not numeric: {exc}") from exc
    # Strings, booleans and mixed objects are rejected, not cast.
    if raw.dtype.kind not in "iuf":
        raise ValueError(f"Embedding is not numeric: dtype {raw.dtype}")
    vector = raw.astype(np.float32)

    if vector.ndim != 1 or vector.size == 0:
        raise ValueError(f"Embedding must be a non-empty flat vector, got shape {vector.shape}")
    if not np.all(np.isfinite(vector)):
        raise ValueError("Embedding contains NaN or infinite values")
    if dim is not None and vector.size != dim:
        raise DimensionMismatch(dim, int(vector.size))
    return vector


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """
    Cosine similarity of two equal-length vectors.

    Returns 0.0 when either vector has zero magnitude, and never NaN.
    The result is clamped into [-1, 1] to absorb float rounding.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise DimensionMismatch(a.size, b.size)

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    score = float(np.dot(a, b) / (norm_a * norm_b))
    if math.isnan(score):
        return 0.0
    return max(-1.0, min(1.0, score))


def _rank_key(result: SimilarityResult):
    # Higher score first; on exact ties the newer record wins, then the higher id.
    return (result.similarity_score, result.created_at, result.document_id)


class SimilarityBackend(ABC):
    """Ranks stored records against a query vector."""

    @abstractmethod
    def find_similar(
        self,
        query: np.ndarray,
        candidates: Iterable[DocumentRecord],
        threshold: float,
        limit: int,
    ) -> List[SimilarityResult]:
        """Return at most ``limit`` results scoring >= ``threshold``, best first."""


class LinearScanBackend(SimilarityBackend):
    """Brute-force cosine scan over every candidate."""

    def __init__(self, early_exit_score: float = 0.95):
        self.early_exit_score = early_exit_score

    def find_similar(
        self,
        query: np.ndarray,
        candidates: Iterable[DocumentRecord],
        threshold: float,
        limit: int,
    ) -> List[SimilarityResult]:
        if limit < 1:
            return []

        query = np.asarray(query, dtype=np.float32)
        matches: List[SimilarityResult] = []
        scanned = 0
        skipped = 0

        for record in candidates:
            if record.embedding is None or record.embedding.shape != query.shape:
                skipped += 1
                logger.debug(
                    "Skipping document %s: dimension %s does not match query dimension %s",
                    record.id,
                    None if record.embedding is None else record.embedding.size,
                    query.size,
                )
                continue

            scanned += 1
            score = cosine_similarity(query, record.embedding)
            if score < threshold:
                continue

            matches.append(SimilarityResult(
                document_id=record.id,
                filename=record.source_filename,
                result=record.result,
                created_at=record.created_at,
                similarity_score=score,
            ))

            if score > self.early_exit_score:
                logger.info("Found very high similarity (%.4f), stopping search early", score)
                break

        matches.sort(key=_rank_key, reverse=True)
        logger.debug(
            "Scanned %d candidates (%d skipped), %d above threshold %.3f",
            scanned, skipped, len(matches), threshold,
        )
        return matches[:limit]
