"""Configuration models for the docrecall caching engine."""

import os
from dataclasses import dataclass
from typing import Mapping, Optional


_TRUE_VALUES = ("1", "true", "yes", "y", "on")


@dataclass
class DocRecallConfig:
    """Configuration for the docrecall engine.

    Built once and handed to the orchestrator; nothing below reads the
    process environment after construction.
    """

    # RAG switch and similarity policy
    enabled: bool = True
    similarity_threshold: float = 0.85
    max_similar_documents: int = 5
    early_exit_score: float = 0.95  # stop scanning once a candidate beats this
    min_text_chars: int = 20        # shorter text gets no embedding
    annotate_similar_results: bool = False

    # Embedding settings
    embedding_provider: str = "ollama"
    embedding_model: str = "nomic-embed-text"
    embedding_dim: Optional[int] = None  # None: take the provider's dimension
    embedding_timeout: float = 60.0

    # Generation settings
    generation_provider: str = "ollama"
    ollama_host: str = "http://ollama:11434"
    text_model: str = "llama3.2:1b"
    image_model: str = "llava:7b"
    image_fallback_model: Optional[str] = "moondream"
    generation_timeout: float = 180.0
    temperature: float = 0.2
    language: str = "English"
    pdf_instruction: str = ""
    image_instruction: str = ""

    # Long-text summarization
    summary_chunk_chars: int = 2500
    summary_max_chunks: int = 6

    # Search endpoint defaults (looser than the reuse threshold)
    search_threshold: float = 0.5
    search_limit: int = 10

    # Housekeeping
    similarity_cache_hours: int = 24

    # Storage
    db_path: str = "docrecall.db"

    def __post_init__(self):
        if not -1.0 <= self.similarity_threshold <= 1.0:
            raise ValueError(
                f"similarity_threshold must be within [-1, 1], got {self.similarity_threshold}"
            )
        if not -1.0 <= self.search_threshold <= 1.0:
            raise ValueError(
                f"search_threshold must be within [-1, 1], got {self.search_threshold}"
            )
        if self.max_similar_documents < 1:
            raise ValueError("max_similar_documents must be at least 1")
        if self.embedding_dim is not None and self.embedding_dim < 1:
            raise ValueError("embedding_dim must be positive")
        if self.summary_chunk_chars < 1 or self.summary_max_chunks < 1:
            raise ValueError("summary_chunk_chars and summary_max_chunks must be positive")
        if self.embedding_timeout <= 0 or self.generation_timeout <= 0:
            raise ValueError("timeouts must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "DocRecallConfig":
        """Build a config from environment variables.

        Unset variables keep the dataclass defaults. Pass ``environ`` to read
        from a mapping other than ``os.environ``.
        """
        env = os.environ if environ is None else environ
        kwargs = {}

        def put(key: str, field_name: str, cast=str) -> None:
            value = env.get(key)
            if value is None or value == "":
                return
            if cast is bool:
                kwargs[field_name] = value.strip().lower() in _TRUE_VALUES
            else:
                kwargs[field_name] = cast(value)

        put("RAG_ENABLED", "enabled", bool)
        put("SIMILARITY_THRESHOLD", "similarity_threshold", float)
        put("MAX_SIMILAR_DOCUMENTS", "max_similar_documents", int)
        put("EARLY_EXIT_SCORE", "early_exit_score", float)
        put("MIN_TEXT_CHARS", "min_text_chars", int)
        put("ANNOTATE_SIMILAR_RESULTS", "annotate_similar_results", bool)
        put("EMBEDDING_PROVIDER", "embedding_provider")
        put("EMBEDDING_MODEL", "embedding_model")
        put("EMBEDDING_DIM", "embedding_dim", int)
        put("EMBEDDING_TIMEOUT", "embedding_timeout", float)
        put("GENERATION_PROVIDER", "generation_provider")
        put("OLLAMA_HOST", "ollama_host")
        put("MODEL_PDF", "text_model")
        put("MODEL_IMG", "image_model")
        put("IMG_FALLBACK_MODEL", "image_fallback_model")
        put("GENERATION_TIMEOUT", "generation_timeout", float)
        put("SUMMARY_LANGUAGE", "language")
        put("PROMPT_PDF", "pdf_instruction")
        put("PROMPT_IMG", "image_instruction")
        put("SUMMARY_CHUNK_CHARS", "summary_chunk_chars", int)
        put("SUMMARY_MAX_CHUNKS", "summary_max_chunks", int)
        put("SIMILARITY_CACHE_HOURS", "similarity_cache_hours", int)
        put("DOCRECALL_DB_PATH", "db_path")

        return cls(**kwargs)
