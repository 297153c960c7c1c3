"""Prompt templates for document summaries and image descriptions."""

from typing import List

PDF_SUMMARY_PROMPT = """You are an expert assistant for document summaries.
Answer only in {language}, using the following format, concise and structured:

Title:
Summary (3-6 sentences):
Key points (short bullets):
Conclusions / Recommendations:

Constraints:
- No preamble, no explanation of your method
- No off-topic content, no extra markup
- Clear, professional style

{instruction_block}Content to summarize (excerpt):"""

MERGE_PROMPT = """You will merge partial summaries into one final summary, clear and without redundancy.

Constraints:
- In {language}
- Title, Summary (3-6 sentences), Key points (bullets), Conclusions / Recommendations
- Remove duplicates and harmonize the style

Partial summaries:
{partials}

Produce only the final summary (no explanation)."""

IMAGE_PROMPT = """You are an expert in describing and summarizing images.
Answer only in {language}, using the following format:

Title:
Summary (2-4 sentences):
Visual elements (bullets):
Context / Interpretation:

Constraints:
- No preamble
- No unjustified speculation
- Factual, concise style

{instruction_block}Describe the image, then produce the summary with the sections above."""


def _instruction_block(label: str, instruction: str) -> str:
    instruction = (instruction or "").strip()
    return f"{label}:\n{instruction}\n\n" if instruction else ""


def build_pdf_summary_prompt(language: str = "English", instruction: str = "") -> str:
    """Summary instructions; the generator appends the text to summarize."""
    return PDF_SUMMARY_PROMPT.format(
        language=language,
        instruction_block=_instruction_block("Additional context", instruction),
    )


def build_merge_prompt(partials: List[str], language: str = "English") -> str:
    joined = "\n".join(f"\n[Part {i}]\n{p}" for i, p in enumerate(partials, 1))
    return MERGE_PROMPT.format(language=language, partials=joined)


def build_image_prompt(language: str = "English", instruction: str = "") -> str:
    return IMAGE_PROMPT.format(
        language=language,
        instruction_block=_instruction_block("Instruction", instruction),
    )
