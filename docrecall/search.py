"""Similarity search over the document store."""

from typing import List, Optional

import numpy as np

from .embeddings import BaseEmbeddingProvider
from .index import LinearScanBackend, SimilarityBackend
from .logging_utils import get_logger
from .models import SimilarityResult
from .storage import DocumentStore

logger = get_logger(__name__)


class SearchEngine:
    """Joins the document store with a similarity backend."""

    def __init__(
        self,
        embedder: BaseEmbeddingProvider,
        store: DocumentStore,
        backend: Optional[SimilarityBackend] = None,
        min_text_chars: int = 20,
    ):
        self.embedder = embedder
        self.store = store
        self.backend = backend or LinearScanBackend()
        self.min_text_chars = min_text_chars

    def find_similar(
        self,
        query_vector: np.ndarray,
        threshold: float,
        limit: int,
    ) -> List[SimilarityResult]:
        """
        Rank stored documents against a vector.

        Returns at most ``limit`` results, each scoring >= ``threshold``,
        highest score first. Stored vectors of another dimensionality are
        skipped. Raises ``StorageUnavailable`` if the store cannot be read.
        """
        candidates = self.store.list_candidates()
        if not candidates:
            logger.info("No documents in store for similarity comparison")
            return []
        return self.backend.find_similar(query_vector, candidates, threshold, limit)

    def search(self, query_text: str, threshold: float, limit: int) -> List[SimilarityResult]:
        """
        Embed ``query_text`` and rank stored documents against it.

        Raises:
            ValueError: text is shorter than the minimum useful length
            EmbeddingUnavailable: the embedding call failed
            StorageUnavailable: the store could not be read
        """
        text = (query_text or "").strip()
        if len(text) < self.min_text_chars:
            raise ValueError(
                f"Not enough text for a similarity search "
                f"({len(text)} < {self.min_text_chars} characters)"
            )

        query_vector = self.embedder.embed_text(text, self.store.embedding_dim)
        results = self.find_similar(query_vector, threshold, limit)
        logger.info("Search returned %d results above %.3f", len(results), threshold)
        return results
