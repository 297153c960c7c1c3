"""Long-document summarization and image description on top of a generator."""

from typing import List, Optional

from .chunking import chunk_text
from .generation import BaseGenerator
from .logging_utils import get_logger
from .prompts import build_image_prompt, build_merge_prompt, build_pdf_summary_prompt

logger = get_logger(__name__)


class Summarizer:
    """
    Produces the result stored for a document.

    Long text is split into sentence-packed chunks, each chunk is summarized,
    and the partial summaries are merged by one more generation call.
    """

    def __init__(
        self,
        generator: BaseGenerator,
        *,
        language: str = "English",
        pdf_instruction: str = "",
        image_instruction: str = "",
        chunk_chars: int = 2500,
        max_chunks: int = 6,
    ):
        self.generator = generator
        self.language = language
        self.pdf_instruction = pdf_instruction
        self.image_instruction = image_instruction
        self.chunk_chars = chunk_chars
        self.max_chunks = max_chunks

    def summarize(self, text: str, instruction: Optional[str] = None) -> str:
        """Summarize document text. Raises ``GenerationFailed``."""
        prompt = build_pdf_summary_prompt(
            language=self.language,
            instruction=self.pdf_instruction if instruction is None else instruction,
        )
        chunks = chunk_text(text, max_chars=self.chunk_chars, max_chunks=self.max_chunks)
        logger.info("Summarizing %d characters in %d chunk(s)", len(text), max(1, len(chunks)))

        if len(chunks) <= 1:
            return self.generator.generate(prompt, chunks[0] if chunks else "")

        partials: List[str] = []
        for i, chunk in enumerate(chunks, 1):
            logger.debug("Summarizing chunk %d/%d (%d chars)", i, len(chunks), len(chunk))
            partials.append(self.generator.generate(prompt, chunk))

        return self.generator.generate(build_merge_prompt(partials, language=self.language))

    def describe_image(self, image_bytes: bytes, instruction: Optional[str] = None) -> str:
        """Describe an image. Raises ``GenerationFailed``."""
        prompt = build_image_prompt(
            language=self.language,
            instruction=self.image_instruction if instruction is None else instruction,
        )
        return self.generator.generate_from_image(prompt, image_bytes)
