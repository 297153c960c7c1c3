"""Embedding generation with caching and multiple provider support."""

import hashlib
import os
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import requests
from openai import APIConnectionError, APITimeoutError, OpenAI, RateLimitError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import DimensionMismatch, EmbeddingUnavailable
from .index import as_vector
from .logging_utils import get_logger

logger = get_logger(__name__)


class EmbeddingCache:
    """Thread-safe LRU cache for embeddings to avoid redundant API calls."""

    def __init__(self, maxsize: int = 1000):
        self._cache: "OrderedDict[str, List[float]]" = OrderedDict()
        self._maxsize = maxsize
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _hash_text(self, text: str, model: str) -> str:
        """Create a hash key for text + model combination."""
        return hashlib.sha256(f"{model}:{text}".encode()).hexdigest()[:16]

    def get(self, text: str, model: str) -> Optional[List[float]]:
        """Get cached embedding if exists."""
        key = self._hash_text(text, model)
        with self._lock:
            if key in self._cache:
                self._hits += 1
                self._cache.move_to_end(key)
                return self._cache[key]
            self._misses += 1
            return None

    def set(self, text: str, model: str, embedding: List[float]) -> None:
        """Cache an embedding."""
        key = self._hash_text(text, model)
        with self._lock:
            self._cache[key] = embedding
            self._cache.move_to_end(key)
            while len(self._cache) > self._maxsize:
                self._cache.popitem(last=False)

    def discard(self, text: str, model: str) -> None:
        """Drop one entry, e.g. after it turned out to be malformed."""
        with self._lock:
            self._cache.pop(self._hash_text(text, model), None)

    def stats(self) -> Dict[str, float]:
        """Return cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total > 0 else 0,
                "size": len(self._cache),
                "maxsize": self._maxsize,
            }

    def clear(self) -> None:
        """Clear the cache."""
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0


# Global cache instance
_embedding_cache = EmbeddingCache(maxsize=1000)


def get_cache() -> EmbeddingCache:
    """Get the global embedding cache."""
    return _embedding_cache


class BaseEmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    def __init__(self, model: str, use_cache: bool = True, timeout: float = 60.0):
        self.model = model
        self.use_cache = use_cache
        self.timeout = timeout

    @abstractmethod
    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for a batch of texts (provider-specific)."""
        pass

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return embedding dimension for this model."""
        pass

    def embed(self, texts: Union[str, List[str]]) -> List[List[float]]:
        """
        Generate embeddings with caching.

        Args:
            texts: Single text or list of texts

        Returns:
            List of embedding vectors
        """
        if isinstance(texts, str):
            texts = [texts]

        if not self.use_cache:
            return self._embed_batch(texts)

        cache = get_cache()
        results: List[Optional[List[float]]] = [None] * len(texts)
        texts_to_embed: List[Tuple[int, str]] = []

        for i, text in enumerate(texts):
            cached = cache.get(text, self.model)
            if cached is not None:
                results[i] = cached
            else:
                texts_to_embed.append((i, text))

        if texts_to_embed:
            indices, uncached_texts = zip(*texts_to_embed)
            new_embeddings = self._embed_batch(list(uncached_texts))
            if len(new_embeddings) != len(uncached_texts):
                raise ValueError(
                    f"Provider returned {len(new_embeddings)} embeddings for {len(uncached_texts)} texts"
                )

            for idx, text, embedding in zip(indices, uncached_texts, new_embeddings):
                cache.set(text, self.model, embedding)
                results[idx] = embedding

        return results  # type: ignore

    def embed_text(self, text: str, expected_dim: Optional[int] = None) -> np.ndarray:
        """
        Embed one text and validate the vector.

        Any provider failure (network, timeout, retries exhausted) and any
        malformed response (wrong shape, non-numeric, wrong dimension) is
        reported as ``EmbeddingUnavailable``.
        """
        if not text or not text.strip():
            raise EmbeddingUnavailable("Cannot embed empty text")

        try:
            raw = self.embed(text)[0]
        except Exception as exc:
            logger.warning("Embedding call to %s failed: %s", self.model, exc)
            raise EmbeddingUnavailable(f"Failed to generate embedding: {exc}") from exc

        try:
            vector = as_vector(raw, expected_dim)
        except (ValueError, DimensionMismatch) as exc:
            get_cache().discard(text, self.model)
            logger.warning("Malformed embedding from %s: %s", self.model, exc)
            raise EmbeddingUnavailable(f"Malformed embedding: {exc}") from exc

        logger.debug("Generated embedding with %d dimensions", vector.size)
        return vector


class EmbeddingProvider(BaseEmbeddingProvider):
    """
    OpenAI embeddings.

    The ``text-embedding-3`` models can return shortened vectors; pass
    ``dimensions`` to match an existing store instead of re-embedding it.
    Connection errors, timeouts and rate limits are retried; anything else
    fails at once.
    """

    NATIVE_DIMENSIONS = {
        "text-embedding-3-large": 3072,
        "text-embedding-3-small": 1536,
        "text-embedding-ada-002": 1536,
    }

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        openai_api_key: Optional[str] = None,
        dimensions: Optional[int] = None,
        use_cache: bool = True,
        timeout: float = 60.0,
    ):
        super().__init__(model, use_cache, timeout)
        api_key = openai_api_key or os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OPENAI_API_KEY is not set and no openai_api_key was given")
        if dimensions is not None and model == "text-embedding-ada-002":
            raise ValueError("text-embedding-ada-002 does not support shortened embeddings")
        self.dimensions = dimensions
        self.client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    @property
    def dimension(self) -> int:
        if self.dimensions is not None:
            return self.dimensions
        return self.NATIVE_DIMENSIONS.get(self.model, 1536)

    @retry(
        retry=retry_if_exception_type((APIConnectionError, APITimeoutError, RateLimitError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        options = {"dimensions": self.dimensions} if self.dimensions is not None else {}
        response = self.client.embeddings.create(model=self.model, input=texts, **options)
        by_position = {item.index: item.embedding for item in response.data}
        return [by_position[i] for i in range(len(texts))]


class OllamaEmbedding(BaseEmbeddingProvider):
    """
    Ollama embedding provider (self-hosted, HTTP).

    Example:
        >>> embedder = OllamaEmbedding("nomic-embed-text", host="http://localhost:11434")
        >>> vector = embedder.embed_text("Quarterly results show 12% growth.")
    """

    MODEL_DIMENSIONS = {
        "nomic-embed-text": 768,
        "mxbai-embed-large": 1024,
        "all-minilm": 384,
    }

    def __init__(
        self,
        model: str = "nomic-embed-text",
        host: Optional[str] = None,
        use_cache: bool = True,
        timeout: float = 60.0,
    ):
        super().__init__(model, use_cache, timeout)
        self.host = (host or os.environ.get("OLLAMA_HOST", "http://ollama:11434")).rstrip("/")

    @property
    def dimension(self) -> int:
        return self.MODEL_DIMENSIONS.get(self.model, 768)

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        """One request per text; the embeddings endpoint takes a single prompt."""
        embeddings = []
        for text in texts:
            response = requests.post(
                f"{self.host}/api/embeddings",
                json={"model": self.model, "prompt": text},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
            embedding = data.get("embedding")
            if not isinstance(embedding, list):
                raise ValueError("Invalid embedding response from Ollama")
            embeddings.append(embedding)
        return embeddings


class HuggingFaceEmbedding(BaseEmbeddingProvider):
    """
    Local sentence-transformers model, loaded on first use.

    Needs the ``huggingface`` extra. Vectors come back L2-normalized, so the
    cosine scan sees the same geometry the model was trained for.
    """

    def __init__(
        self,
        model: str = "all-MiniLM-L6-v2",
        hf_token: Optional[str] = None,
        device: Optional[str] = None,
        batch_size: int = 32,
        use_cache: bool = True,
        timeout: float = 60.0,
    ):
        super().__init__(model, use_cache, timeout)
        self.hf_token = hf_token or os.environ.get("HF_TOKEN")
        self.device = device
        self.batch_size = batch_size
        self._encoder = None

    @property
    def encoder(self):
        if self._encoder is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as exc:
                raise ImportError(
                    "HuggingFace embeddings need sentence-transformers: "
                    "pip install 'docrecall[huggingface]'"
                ) from exc
            logger.info("Loading sentence-transformers model %s", self.model)
            self._encoder = SentenceTransformer(self.model, device=self.device, token=self.hf_token)
        return self._encoder

    @property
    def dimension(self) -> int:
        return int(self.encoder.get_sentence_embedding_dimension())

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        vectors = self.encoder.encode(
            texts,
            batch_size=self.batch_size,
            convert_to_numpy=True,
            normalize_embeddings=True,
        )
        return vectors.tolist()


class HashingEmbedding(BaseEmbeddingProvider):
    """
    Deterministic hashed bag of character trigrams and words.

    No network and no model download. Useful offline and in tests; the
    vectors only capture surface overlap between texts.
    """

    def __init__(self, model: str = "hashing", dim: int = 384, use_cache: bool = False, timeout: float = 60.0):
        super().__init__(model, use_cache, timeout)
        self._dim = dim

    @property
    def dimension(self) -> int:
        return self._dim

    def _bucket(self, token: str) -> int:
        digest = hashlib.md5(token.encode("utf-8")).digest()
        return int.from_bytes(digest[:4], "little") % self._dim

    def _embed_one(self, text: str) -> List[float]:
        vec = np.zeros(self._dim, dtype=np.float32)
        text = text.lower().strip()
        for i in range(len(text) - 2):
            vec[self._bucket(text[i:i + 3])] += 1.0
        for word in text.split():
            vec[self._bucket(word)] += 2.0  # words weigh more than trigrams
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec = vec / norm
        return vec.tolist()

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        return [self._embed_one(t) for t in texts]


# ============ Provider Factory ============

def create_embedding_provider(
    provider: str = "ollama",
    model: Optional[str] = None,
    **kwargs
) -> BaseEmbeddingProvider:
    """
    Factory function to create embedding providers.

    Args:
        provider: 'ollama', 'openai', 'huggingface' or 'hashing'
        model: Model name (uses provider default if not specified)
        **kwargs: Additional provider-specific arguments

    Example:
        >>> embedder = create_embedding_provider("ollama", "nomic-embed-text", host="http://localhost:11434")
        >>> embedder = create_embedding_provider("hashing", dim=768)
    """
    provider = provider.lower()

    if provider == "ollama":
        return OllamaEmbedding(model or "nomic-embed-text", **kwargs)

    elif provider in ("openai", "openai-embedding"):
        return EmbeddingProvider(model or "text-embedding-3-small", **kwargs)

    elif provider in ("huggingface", "hf", "sentence-transformers"):
        return HuggingFaceEmbedding(model or "all-MiniLM-L6-v2", **kwargs)

    elif provider in ("hashing", "hash"):
        return HashingEmbedding(model or "hashing", **kwargs)

    else:
        raise ValueError(
            f"Unknown provider: {provider}. "
            f"Supported: 'ollama', 'openai', 'huggingface', 'hashing'"
        )
