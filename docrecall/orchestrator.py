"""Generate-or-reuse orchestrator: the heart of the caching engine."""

import hashlib
from dataclasses import replace
from typing import Any, Dict, List, Optional

from .config import DocRecallConfig
from .embeddings import BaseEmbeddingProvider, create_embedding_provider
from .errors import (
    DimensionMismatch,
    DuplicateHash,
    EmbeddingUnavailable,
    GenerationFailed,
    StorageUnavailable,
)
from .generation import BaseGenerator, create_generator
from .index import LinearScanBackend, SimilarityBackend
from .logging_utils import get_logger
from .models import (
    DegradedFallback,
    DocumentRecord,
    ExactMatch,
    MatchedDocument,
    MatchSource,
    NoMatch,
    Outcome,
    ProcessResult,
    SimilarityResult,
    SimilarMatch,
    UploadedFile,
    compute_content_hash,
)
from .search import SearchEngine
from .storage import DocumentStore
from .summarizer import Summarizer

logger = get_logger(__name__)


class RagOrchestrator:
    """
    Decides, per upload, whether to reuse a stored result or generate a new one.

    Every upload resolves to one of four outcomes:

    - ``ExactMatch``: the file's hash is stored; its result is returned as-is.
    - ``SimilarMatch``: a stored document's embedding is close enough; its
      result is returned and a new record for this file points at it.
    - ``NoMatch``: nothing close enough, or too little text to compare; a new
      result is generated and stored. Without an embedding the record only
      serves later exact matches.
    - ``DegradedFallback``: the cache layer is disabled or failing; a new
      result is generated and nothing is stored.

    Cache-layer failures never reach the caller. Only ``GenerationFailed``
    does, and in that case nothing is persisted.
    """

    def __init__(
        self,
        config: DocRecallConfig,
        embedder: BaseEmbeddingProvider,
        summarizer: Summarizer,
        store: Optional[DocumentStore] = None,
        backend: Optional[SimilarityBackend] = None,
    ):
        self.config = config
        self.embedder = embedder
        self.summarizer = summarizer
        self.store = store
        self.search_engine: Optional[SearchEngine] = None
        if store is not None:
            self.search_engine = SearchEngine(
                embedder,
                store,
                backend or LinearScanBackend(config.early_exit_score),
                min_text_chars=config.min_text_chars,
            )
        self.last_error: Optional[str] = None

    # ============ Entry points ============

    def process(
        self,
        upload: UploadedFile,
        extracted_text: str = "",
        instruction: Optional[str] = None,
    ) -> ProcessResult:
        """
        Return a result for ``upload``, reusing stored results where possible.

        Args:
            upload: Raw file bytes and metadata
            extracted_text: Normalized text of the file, possibly empty
            instruction: Optional extra instruction for the generation prompt

        Raises:
            GenerationFailed: generation was needed and failed
        """
        content_hash = compute_content_hash(upload.data)
        text = (extracted_text or "").strip()
        logger.info(
            "Processing %s (%d bytes, %s) hash=%s",
            upload.filename, upload.size_bytes, upload.mime_type, content_hash[:12],
        )

        outcome = self._decide(content_hash, text)
        logger.info("Outcome for %s: %s", upload.filename, type(outcome).__name__)
        return self._handle(outcome, upload, content_hash, text, instruction)

    def search(
        self,
        query_text: str,
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> List[SimilarityResult]:
        """
        Exploratory similarity search, independent of the reuse decision.

        Raises:
            ValueError: text too short to embed
            EmbeddingUnavailable: embedding failed
            StorageUnavailable: store missing or unreadable
        """
        if self.search_engine is None:
            raise StorageUnavailable("Document store is not available")
        return self.search_engine.search(
            query_text,
            self.config.search_threshold if threshold is None else threshold,
            self.config.search_limit if limit is None else limit,
        )

    def status(self) -> Dict[str, Any]:
        """Read-only snapshot of the engine's state. Never raises."""
        info: Dict[str, Any] = {
            "enabled": self.config.enabled,
            "embedding_model": self.embedder.model,
            "embedding_dim": self.config.embedding_dim or self.embedder.dimension,
            "similarity_threshold": self.config.similarity_threshold,
            "max_similar_documents": self.config.max_similar_documents,
            "document_count": 0,
            "average_similarity": 0.0,
            "similarity_cache_entries": 0,
            "last_error": self.last_error,
            "storage_error": None,
        }
        if self.store is None:
            info["storage_error"] = "Document store is not available"
            return info

        try:
            info["document_count"] = self.store.count()
            stats = self.store.similarity_stats(self.config.similarity_cache_hours)
            info["average_similarity"] = stats["average_similarity"]
            info["similarity_cache_entries"] = stats["entries"]
        except StorageUnavailable as exc:
            info["storage_error"] = str(exc)
        return info

    def purge_similarity_cache(self, max_age_hours: Optional[int] = None) -> int:
        """Expire old similarity cache entries. Document records are never touched."""
        if self.store is None:
            raise StorageUnavailable("Document store is not available")
        hours = self.config.similarity_cache_hours if max_age_hours is None else max_age_hours
        return self.store.purge_similarity_cache(hours)

    def close(self) -> None:
        if self.store is not None:
            self.store.close()

    # ============ Decision ============

    def _decide(self, content_hash: str, text: str) -> Outcome:
        if not self.config.enabled:
            return DegradedFallback("RAG disabled")
        if self.store is None or self.search_engine is None:
            return DegradedFallback("document store unavailable")

        try:
            existing = self.store.lookup_by_hash(content_hash)
        except StorageUnavailable as exc:
            self._note_error(exc)
            return DegradedFallback("hash lookup failed")
        if existing is not None:
            return ExactMatch(existing)

        if len(text) < self.config.min_text_chars:
            logger.info("Only %d characters of text, storing by hash alone", len(text))
            return NoMatch(embedding=None)

        try:
            embedding = self.embedder.embed_text(text, self.store.embedding_dim)
        except EmbeddingUnavailable as exc:
            self._note_error(exc)
            return DegradedFallback("embedding unavailable")

        try:
            similar = self.search_engine.find_similar(
                embedding,
                self.config.similarity_threshold,
                self.config.max_similar_documents,
            )
        except StorageUnavailable as exc:
            self._note_error(exc)
            return DegradedFallback("similarity search failed")

        self._record_scores(embedding, similar)

        if similar and similar[0].similarity_score >= self.config.similarity_threshold:
            return SimilarMatch(best=similar[0], embedding=embedding)
        return NoMatch(embedding=embedding, best_score=similar[0].similarity_score if similar else None)

    def _handle(
        self,
        outcome: Outcome,
        upload: UploadedFile,
        content_hash: str,
        text: str,
        instruction: Optional[str],
    ) -> ProcessResult:
        if isinstance(outcome, ExactMatch):
            return self._exact_result(outcome.record)

        if isinstance(outcome, SimilarMatch):
            best = outcome.best
            logger.info(
                "High similarity %.4f with document %s (%s), reusing its result",
                best.similarity_score, best.document_id, best.filename,
            )
            stored_result = best.result
            if self.config.annotate_similar_results:
                stored_result = f"[Similar to: {best.filename}]\n\n{best.result}"
            record = self._new_record(upload, content_hash, text, stored_result, outcome.embedding)
            record.similar_to_id = best.document_id
            result = ProcessResult(
                result=best.result,
                source=MatchSource.SIMILAR_MATCH,
                matched_document=MatchedDocument(best.document_id, best.filename, best.similarity_score),
            )
            return self._persist(record, result)

        if isinstance(outcome, NoMatch):
            if outcome.best_score is not None:
                logger.info("Best similarity %.4f below threshold, generating", outcome.best_score)
            generated = self._generate(upload, text, instruction)
            record = self._new_record(upload, content_hash, text, generated, outcome.embedding)
            return self._persist(record, ProcessResult(result=generated, source=MatchSource.GENERATED))

        if isinstance(outcome, DegradedFallback):
            logger.warning("Degraded fallback for %s: %s", upload.filename, outcome.reason)
            generated = self._generate(upload, text, instruction)
            return ProcessResult(
                result=generated,
                source=MatchSource.GENERATED,
                degraded_reason=outcome.reason,
            )

        raise TypeError(f"Unhandled outcome: {outcome!r}")

    # ============ Helpers ============

    def _generate(self, upload: UploadedFile, text: str, instruction: Optional[str]) -> str:
        try:
            if upload.is_image:
                return self.summarizer.describe_image(upload.data, instruction)
            return self.summarizer.summarize(text, instruction)
        except GenerationFailed:
            logger.error("Generation failed for %s", upload.filename)
            raise

    def _new_record(self, upload, content_hash, text, result, embedding) -> DocumentRecord:
        return DocumentRecord(
            content_hash=content_hash,
            extracted_text=text,
            result=result,
            embedding=embedding,
            source_filename=upload.filename,
            mime_type=upload.mime_type,
            size_bytes=upload.size_bytes,
            embedding_model=self.embedder.model if embedding is not None else "",
        )

    def _exact_result(self, record: DocumentRecord) -> ProcessResult:
        logger.info("Exact document found (id=%s, created %s)", record.id, record.created_at)
        return ProcessResult(
            result=record.result,
            source=MatchSource.EXACT_MATCH,
            matched_document=MatchedDocument(record.id, record.source_filename, 1.0),
            document_id=record.id,
        )

    def _persist(self, record: DocumentRecord, result: ProcessResult) -> ProcessResult:
        """Insert the record; storage problems become warnings on the result."""
        try:
            stored = self.store.insert(record)
        except DuplicateHash:
            # A concurrent upload of the same bytes won the insert; serve its result.
            logger.info("Hash %s was stored concurrently, resolving as exact match", record.content_hash[:12])
            try:
                winner = self.store.lookup_by_hash(record.content_hash)
            except StorageUnavailable as exc:
                self._note_error(exc)
                winner = None
            if winner is not None:
                return self._exact_result(winner)
            result.warnings.append("Duplicate hash reported but the stored document could not be read")
            return result
        except (StorageUnavailable, DimensionMismatch) as exc:
            self._note_error(exc)
            result.warnings.append(f"Result not stored: {exc}")
            return result

        logger.info("Document stored with id %s", stored.id)
        result.document_id = stored.id
        return result

    def _record_scores(self, embedding, similar: List[SimilarityResult]) -> None:
        if not similar:
            return
        query_hash = hashlib.sha256(embedding.tobytes()).hexdigest()
        try:
            self.store.record_similarities(
                query_hash, similar, retention_hours=self.config.similarity_cache_hours
            )
        except StorageUnavailable as exc:
            self._note_error(exc)

    def _note_error(self, exc: Exception) -> None:
        logger.warning("Cache layer error: %s", exc)
        self.last_error = str(exc)


def _resolve_embedding_dim(config: DocRecallConfig, embedder: BaseEmbeddingProvider) -> DocRecallConfig:
    """Take the provider's dimension when none is configured; report a conflict."""
    provider_dim = embedder.dimension
    if config.embedding_dim is None:
        logger.info("Using embedding dimension %d from %s", provider_dim, embedder.model)
        return replace(config, embedding_dim=provider_dim)
    if config.embedding_dim != provider_dim:
        logger.error(
            "Configured embedding dimension %d differs from %d for %s; "
            "vectors of the wrong size are rejected and uploads will not be cached",
            config.embedding_dim, provider_dim, embedder.model,
        )
    return config


def create_orchestrator(
    config: Optional[DocRecallConfig] = None,
    *,
    embedder: Optional[BaseEmbeddingProvider] = None,
    generator: Optional[BaseGenerator] = None,
    store: Optional[DocumentStore] = None,
) -> RagOrchestrator:
    """
    Create an orchestrator from a config, building whatever is not passed in.

    With no ``embedding_dim`` configured, the provider's dimension is used.
    A store that cannot be opened is logged and left out; the orchestrator
    then serves every upload through the degraded fallback.

    Example:
        >>> orchestrator = create_orchestrator(DocRecallConfig.from_env())
        >>> outcome = orchestrator.process(UploadedFile(data, "report.pdf", "application/pdf"), text)
    """
    config = config or DocRecallConfig.from_env()

    if embedder is None:
        embedder_kwargs: Dict[str, Any] = {"timeout": config.embedding_timeout}
        if config.embedding_provider == "ollama":
            embedder_kwargs["host"] = config.ollama_host
        elif config.embedding_provider in ("hashing", "hash") and config.embedding_dim is not None:
            embedder_kwargs["dim"] = config.embedding_dim
        elif config.embedding_provider in ("openai", "openai-embedding") and config.embedding_dim is not None:
            embedder_kwargs["dimensions"] = config.embedding_dim
        embedder = create_embedding_provider(
            config.embedding_provider, config.embedding_model, **embedder_kwargs
        )

    config = _resolve_embedding_dim(config, embedder)

    if generator is None:
        generator = create_generator(
            config.generation_provider,
            text_model=config.text_model,
            image_model=config.image_model,
            host=config.ollama_host,
            timeout=config.generation_timeout,
            temperature=config.temperature,
            image_fallback_model=config.image_fallback_model,
        )

    if store is None:
        try:
            store = DocumentStore(config.db_path, config.embedding_dim)
        except (StorageUnavailable, OSError) as exc:
            logger.error("Document store unavailable, running without cache: %s", exc)
            store = None

    summarizer = Summarizer(
        generator,
        language=config.language,
        pdf_instruction=config.pdf_instruction,
        image_instruction=config.image_instruction,
        chunk_chars=config.summary_chunk_chars,
        max_chunks=config.summary_max_chunks,
    )
    return RagOrchestrator(config, embedder, summarizer, store=store)
