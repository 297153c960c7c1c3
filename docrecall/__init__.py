"""
docrecall: a retrieval-augmented cache for document summaries

Before asking a language model to summarize a PDF or describe an image,
docrecall checks whether it has already seen the same file, or a document
close enough to it, and reuses the stored result:

- Exact match on the SHA-256 hash of the uploaded bytes
- Similar match on cosine similarity of text embeddings (linear scan)
- Otherwise generate, then store the result with its embedding

Key Features:
- SQLite document store with a unique content-hash index
- Embedding providers (Ollama, OpenAI, HuggingFace, local hashing)
- LRU cache for embedding queries
- Retry logic for embedding API calls
- Long-text summarization with sentence-aware chunking and merge
- Graceful degradation: cache-layer failures never fail a request
- REST API (FastAPI) and command-line interface
"""

from .config import DocRecallConfig
from .errors import (
    DocRecallError,
    DimensionMismatch,
    DuplicateHash,
    EmbeddingUnavailable,
    GenerationFailed,
    StorageUnavailable,
)
from .models import (
    DocumentRecord,
    MatchSource,
    ProcessResult,
    SimilarityResult,
    UploadedFile,
    compute_content_hash,
)
from .chunking import chunk_text
from .embeddings import (
    BaseEmbeddingProvider,
    EmbeddingProvider,
    HashingEmbedding,
    HuggingFaceEmbedding,
    OllamaEmbedding,
    create_embedding_provider,
    get_cache,
)
from .index import LinearScanBackend, SimilarityBackend, cosine_similarity
from .storage import DocumentStore
from .search import SearchEngine
from .generation import BaseGenerator, OllamaGenerator, OpenAIGenerator, create_generator
from .summarizer import Summarizer
from .orchestrator import RagOrchestrator, create_orchestrator

__version__ = "1.0.0"
__all__ = [
    # Core
    "DocRecallConfig",
    "RagOrchestrator",
    "create_orchestrator",
    # Models
    "DocumentRecord",
    "MatchSource",
    "ProcessResult",
    "SimilarityResult",
    "UploadedFile",
    "compute_content_hash",
    # Errors
    "DocRecallError",
    "DimensionMismatch",
    "DuplicateHash",
    "EmbeddingUnavailable",
    "GenerationFailed",
    "StorageUnavailable",
    # Embeddings
    "BaseEmbeddingProvider",
    "EmbeddingProvider",
    "HashingEmbedding",
    "HuggingFaceEmbedding",
    "OllamaEmbedding",
    "create_embedding_provider",
    "get_cache",
    # Components
    "DocumentStore",
    "SearchEngine",
    "LinearScanBackend",
    "SimilarityBackend",
    "cosine_similarity",
    "chunk_text",
    # Generation
    "BaseGenerator",
    "OllamaGenerator",
    "OpenAIGenerator",
    "create_generator",
    "Summarizer",
]
