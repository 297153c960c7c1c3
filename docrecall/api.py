"""FastAPI REST API wrapper for the docrecall caching engine."""

from typing import Any, Dict, List, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, Form, HTTPException, Response, UploadFile
from pydantic import BaseModel, Field

from .config import DocRecallConfig
from .embeddings import get_cache
from .errors import EmbeddingUnavailable, GenerationFailed, StorageUnavailable
from .extraction import extract_text, is_supported, ocr_warning
from .logging_utils import configure_logging, get_logger
from .models import MatchSource, UploadedFile
from .orchestrator import RagOrchestrator, create_orchestrator

logger = get_logger(__name__)

ACTIONS = ("summarize", "describe")


# ============ Request/Response Models ============

class MatchedDocumentInfo(BaseModel):
    """Stored document whose result was reused."""
    id: Optional[int]
    filename: str
    score: float


class AnalyzeResponse(BaseModel):
    """Response from /analyze."""
    result: str
    source: str
    from_cache: bool
    matched_document: Optional[MatchedDocumentInfo] = None
    document_id: Optional[int] = None
    degraded_reason: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class SearchRequest(BaseModel):
    """Request body for similarity search."""
    query: str = Field(..., description="Text to compare against stored documents")
    threshold: Optional[float] = Field(
        default=None, ge=-1.0, le=1.0, description="Minimum cosine similarity"
    )
    limit: Optional[int] = Field(default=None, ge=1, le=100, description="Number of results")


class SearchResultItem(BaseModel):
    """Single similarity hit."""
    document_id: int
    filename: str
    result: str
    created_at: str
    similarity_score: float


class SearchResponse(BaseModel):
    """Response from similarity search."""
    results: List[SearchResultItem]
    query: str
    count: int


class StatusResponse(BaseModel):
    """Engine status."""
    enabled: bool
    embedding_model: str
    embedding_dim: int
    similarity_threshold: float
    max_similar_documents: int
    document_count: int
    average_similarity: float
    similarity_cache_entries: int
    last_error: Optional[str] = None
    storage_error: Optional[str] = None
    cache_stats: Dict[str, Any]


class PurgeResponse(BaseModel):
    """Response from similarity cache purge."""
    deleted: int
    max_age_hours: int


# ============ App Factory ============

def create_app(
    config: Optional[DocRecallConfig] = None,
    orchestrator: Optional[RagOrchestrator] = None,
) -> FastAPI:
    """
    Create a FastAPI app wrapping a RagOrchestrator.

    Args:
        config: Engine configuration, read from the environment when omitted
        orchestrator: Prebuilt orchestrator; when given it is used as-is and
            left open on shutdown

    Returns:
        FastAPI app instance
    """

    engine: Optional[RagOrchestrator] = orchestrator

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal engine
        owned = engine is None
        if owned:
            configure_logging()
            engine = create_orchestrator(config or DocRecallConfig.from_env())
        yield
        if owned and engine is not None:
            engine.close()
            engine = None

    app = FastAPI(
        title="docrecall API",
        description="Reuses stored summaries for identical or near-identical documents",
        version="1.0.0",
        lifespan=lifespan,
    )

    def get_engine() -> RagOrchestrator:
        if engine is None:
            raise HTTPException(status_code=503, detail="Engine not initialized")
        return engine

    # ============ Endpoints ============

    @app.post("/analyze", response_model=AnalyzeResponse, tags=["Analysis"])
    def analyze(
        response: Response,
        file: UploadFile = File(...),
        action: Optional[str] = Form(default=None),
        instruction: Optional[str] = Form(default=None),
    ):
        """
        Summarize a PDF/text file or describe an image.

        ``action`` is optional; when given it must be ``summarize`` for
        documents and ``describe`` for images.

        Identical files are answered from the store; near-identical documents
        reuse the closest stored result. The outcome is reported in the
        ``X-RAG-*`` response headers.
        """
        orchestrator = get_engine()

        mime_type = file.content_type or "application/octet-stream"
        if not is_supported(mime_type):
            logger.info("Rejected upload %s with type %s", file.filename, mime_type)
            raise HTTPException(status_code=400, detail=f"Unsupported file type: {mime_type}")
        if action is not None and action not in ACTIONS:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid action: {action}. Must be one of {', '.join(ACTIONS)}",
            )

        is_image = mime_type.startswith("image/")
        if action is not None and action != ("describe" if is_image else "summarize"):
            raise HTTPException(
                status_code=400,
                detail=f"Action {action} does not apply to {mime_type} files",
            )

        data = file.file.read()
        if not data:
            raise HTTPException(status_code=400, detail="Empty file")

        upload = UploadedFile(data=data, filename=file.filename or "upload", mime_type=mime_type)
        text = "" if upload.is_image else extract_text(data, mime_type)

        try:
            outcome = orchestrator.process(upload, text, instruction=instruction or None)
        except GenerationFailed as exc:
            logger.error("Analyze failed for %s: %s", upload.filename, exc)
            raise HTTPException(status_code=502, detail=f"Generation failed: {exc}")

        scan_warning = ocr_warning(text, data, mime_type)
        if scan_warning:
            outcome.warnings.append(scan_warning)

        matched = outcome.matched_document
        response.headers["X-RAG-Source"] = outcome.source.value
        response.headers["X-RAG-Exact-Match"] = str(outcome.source is MatchSource.EXACT_MATCH).lower()
        if matched is not None:
            response.headers["X-RAG-Similarity-Score"] = f"{matched.score:.4f}"
            response.headers["X-RAG-Reference-Document"] = matched.filename

        return AnalyzeResponse(
            result=outcome.result,
            source=outcome.source.value,
            from_cache=outcome.from_cache,
            matched_document=(
                MatchedDocumentInfo(id=matched.id, filename=matched.filename, score=matched.score)
                if matched is not None else None
            ),
            document_id=outcome.document_id,
            degraded_reason=outcome.degraded_reason,
            warnings=outcome.warnings,
        )

    @app.get("/rag/status", response_model=StatusResponse, tags=["RAG"])
    def rag_status():
        """Document count, average recent similarity and configuration."""
        info = get_engine().status()
        info["cache_stats"] = get_cache().stats()
        return StatusResponse(**info)

    @app.post("/rag/search", response_model=SearchResponse, tags=["RAG"])
    def rag_search(request: SearchRequest):
        """Find stored documents similar to a piece of text."""
        orchestrator = get_engine()
        try:
            results = orchestrator.search(request.query, request.threshold, request.limit)
        except (EmbeddingUnavailable, StorageUnavailable) as exc:
            raise HTTPException(status_code=503, detail=str(exc))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

        return SearchResponse(
            results=[
                SearchResultItem(
                    document_id=r.document_id,
                    filename=r.filename,
                    result=r.result,
                    created_at=r.created_at.isoformat(),
                    similarity_score=r.similarity_score,
                )
                for r in results
            ],
            query=request.query,
            count=len(results),
        )

    @app.post("/rag/purge-cache", response_model=PurgeResponse, tags=["RAG"])
    def purge_cache(max_age_hours: Optional[int] = None):
        """Expire old similarity cache entries. Stored documents are kept."""
        orchestrator = get_engine()
        hours = orchestrator.config.similarity_cache_hours if max_age_hours is None else max_age_hours
        try:
            deleted = orchestrator.purge_similarity_cache(hours)
        except StorageUnavailable as exc:
            raise HTTPException(status_code=503, detail=str(exc))
        return PurgeResponse(deleted=deleted, max_age_hours=hours)

    @app.post("/cache/clear", tags=["Cache"])
    def clear_cache():
        """Clear the in-process embedding cache."""
        cache = get_cache()
        stats_before = cache.stats()
        cache.clear()
        return {"cleared": True, "entries_cleared": stats_before["size"]}

    @app.get("/health", tags=["Health"])
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "docrecall"}

    return app


# Default app for `uvicorn docrecall.api:app`
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
