"""CLI for the docrecall caching engine."""

import argparse
import json
import mimetypes
import os
import sys
from dataclasses import replace

from . import __version__

# Set USER_AGENT to suppress langchain warning
if not os.environ.get("USER_AGENT"):
    os.environ["USER_AGENT"] = f"docrecall/{__version__}"


def _load_config(args: argparse.Namespace):
    from .config import DocRecallConfig

    config = DocRecallConfig.from_env()
    if args.db:
        config = replace(config, db_path=args.db)
    return config


def serve(args: argparse.Namespace) -> None:
    """Start the REST API server."""
    import uvicorn
    from .api import create_app

    config = _load_config(args)
    app = create_app(config)

    print(f"Starting docrecall API server on http://{args.host}:{args.port}")
    print(f"  Database: {config.db_path}")
    print(f"  Embeddings: {config.embedding_provider}/{config.embedding_model}")
    print(f"  Docs: http://{args.host}:{args.port}/docs\n")

    uvicorn.run(app, host=args.host, port=args.port)


def process(args: argparse.Namespace) -> None:
    """Summarize or describe a local file, reusing stored results."""
    from .errors import GenerationFailed
    from .extraction import extract_text, is_supported, ocr_warning
    from .models import UploadedFile
    from .orchestrator import create_orchestrator

    path = args.file
    if not os.path.isfile(path):
        print(f"Error: File not found: {path}")
        sys.exit(1)

    mime_type = args.mime_type or mimetypes.guess_type(path)[0] or "application/octet-stream"
    if not is_supported(mime_type):
        print(f"Error: Unsupported file type: {mime_type}")
        sys.exit(1)

    with open(path, "rb") as f:
        data = f.read()

    upload = UploadedFile(data=data, filename=os.path.basename(path), mime_type=mime_type)
    text = "" if upload.is_image else extract_text(data, mime_type)

    orchestrator = create_orchestrator(_load_config(args))
    try:
        outcome = orchestrator.process(upload, text, instruction=args.instruction)
    except GenerationFailed as exc:
        print(f"Error: Generation failed: {exc}")
        sys.exit(2)
    finally:
        orchestrator.close()

    scan_warning = ocr_warning(text, data, mime_type)
    if scan_warning:
        outcome.warnings.append(scan_warning)

    matched = outcome.matched_document
    print(json.dumps({
        "source": outcome.source.value,
        "from_cache": outcome.from_cache,
        "matched_document": (
            {"id": matched.id, "filename": matched.filename, "score": round(matched.score, 4)}
            if matched else None
        ),
        "document_id": outcome.document_id,
        "degraded_reason": outcome.degraded_reason,
        "warnings": outcome.warnings,
    }, indent=2))
    print()
    print(outcome.result)


def search(args: argparse.Namespace) -> None:
    """Search stored documents by similarity to a piece of text."""
    from .errors import EmbeddingUnavailable, StorageUnavailable
    from .orchestrator import create_orchestrator

    orchestrator = create_orchestrator(_load_config(args))
    try:
        results = orchestrator.search(" ".join(args.text), args.threshold, args.limit)
    except (ValueError, EmbeddingUnavailable, StorageUnavailable) as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    finally:
        orchestrator.close()

    if not results:
        print("No similar documents found.")
        return
    for i, r in enumerate(results, 1):
        print(f"{i}. [{r.similarity_score:.3f}] #{r.document_id} {r.filename} ({r.created_at:%Y-%m-%d %H:%M})")
        print(f"   {r.result[:100]}...")


def status(args: argparse.Namespace) -> None:
    """Show engine status."""
    from .orchestrator import create_orchestrator

    orchestrator = create_orchestrator(_load_config(args))
    info = orchestrator.status()
    orchestrator.close()
    print(json.dumps(info, indent=2))


def purge_cache(args: argparse.Namespace) -> None:
    """Expire old similarity cache entries."""
    from .errors import StorageUnavailable
    from .orchestrator import create_orchestrator

    orchestrator = create_orchestrator(_load_config(args))
    try:
        deleted = orchestrator.purge_similarity_cache(args.max_age_hours)
    except StorageUnavailable as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    finally:
        orchestrator.close()
    print(f"Deleted {deleted} similarity cache entries")


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="docrecall",
        description="docrecall - reuse document summaries for identical or similar files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  docrecall serve                   Start REST API server
  docrecall process report.pdf      Summarize a file (or reuse a stored summary)
  docrecall search "quarterly revenue figures"
  docrecall status                  Show engine status

Environment variables:
  OLLAMA_HOST           Ollama server (default: http://ollama:11434)
  EMBEDDING_PROVIDER    ollama, openai, huggingface or hashing
  SIMILARITY_THRESHOLD  Minimum cosine similarity for reuse (default: 0.85)
  RAG_ENABLED           Set to false to always generate
  OPENAI_API_KEY        Required for OpenAI embeddings or generation
"""
    )

    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--db", type=str, help="Database path (default: docrecall.db)"
    )
    parser.add_argument(
        "--log-level", type=str, default=None, help="Log level (default: INFO)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Start REST API server")
    serve_parser.add_argument(
        "--host", type=str, default="127.0.0.1", help="Host to bind (default: 127.0.0.1)"
    )
    serve_parser.add_argument(
        "--port", type=int, default=8000, help="Port to bind (default: 8000)"
    )
    serve_parser.set_defaults(func=serve)

    # Process command
    process_parser = subparsers.add_parser("process", help="Summarize or describe a file")
    process_parser.add_argument("file", help="Path to a PDF, text or image file")
    process_parser.add_argument(
        "--mime-type", type=str, default=None, help="Override the guessed MIME type"
    )
    process_parser.add_argument(
        "--instruction", type=str, default=None, help="Extra instruction for the prompt"
    )
    process_parser.set_defaults(func=process)

    # Search command
    search_parser = subparsers.add_parser("search", help="Find similar stored documents")
    search_parser.add_argument("text", nargs="+", help="Query text")
    search_parser.add_argument(
        "--threshold", type=float, default=None, help="Minimum similarity (default: 0.5)"
    )
    search_parser.add_argument(
        "--limit", type=int, default=None, help="Maximum results (default: 10)"
    )
    search_parser.set_defaults(func=search)

    # Status command
    status_parser = subparsers.add_parser("status", help="Show engine status")
    status_parser.set_defaults(func=status)

    # Purge command
    purge_parser = subparsers.add_parser("purge-cache", help="Expire old similarity cache entries")
    purge_parser.add_argument(
        "--max-age-hours", type=int, default=None, help="Age limit in hours (default: 24)"
    )
    purge_parser.set_defaults(func=purge_cache)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    from .logging_utils import configure_logging
    configure_logging(args.log_level)

    args.func(args)


if __name__ == "__main__":
    main()
