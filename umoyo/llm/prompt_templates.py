"""
Prompt Templates for Umoyo

Role-specific system prompts and the grounding prompt that injects the
retrieved chunks as numbered, citable context blocks.
"""

import os
import re

from umoyo.rag.router import UserRole
from umoyo.rag.vector_store import SearchResult

PATIENT_SYSTEM_PROMPT = (
    "You are Umoyo Health Assistant, a helpful medical information service "
    "for patients in Zambia. Explain medical concepts in simple, clear "
    "language. Always emphasize when to consult healthcare professionals. "
    "Use the provided context to answer accurately."
)

PROFESSIONAL_SYSTEM_PROMPT = (
    "You are Umoyo Health Assistant, an evidence-based clinical decision "
    "support tool for healthcare professionals in Zambia. Provide accurate, "
    "clinically relevant information with proper citations. Use the provided "
    "context to give detailed, professional answers."
)

CONTEXT_SEPARATOR = "\n---\n\n"


def truncate_at_sentence(text: str, max_chars: int) -> str:
    """Truncate text at a sentence boundary, falling back to hard cut.

    Only boundaries past the halfway point of the limit are considered.
    """
    if len(text) <= max_chars:
        return text
    half = max_chars // 2
    match = None
    for m in re.finditer(r"[.!?]\s", text[half:max_chars]):
        match = m
    if match:
        return text[: half + match.end()].rstrip()
    return text[:max_chars] + "..."


class PromptTemplate:
    """Builds grounded prompts for medical question answering."""

    TEMPLATE = """Context from medical knowledge base:

{context}

User Question: {question}

Please provide a comprehensive answer based on the context above. Include citation numbers [1], [2], etc. when referencing specific information from the context."""

    def __init__(self, max_chunk_chars: int | None = None) -> None:
        self.max_chunk_chars = max_chunk_chars or int(
            os.environ.get("LLM_MAX_CHUNK_CHARS", "2000")
        )

    def system_prompt(self, role: "str | UserRole") -> str:
        if UserRole.parse(role) is UserRole.PROFESSIONAL:
            return PROFESSIONAL_SYSTEM_PROMPT
        return PATIENT_SYSTEM_PROMPT

    def build(self, question: str, results: list[SearchResult]) -> str:
        """
        Build the user prompt from a question and ranked search results.

        Args:
            question: The user's question.
            results: Retrieved chunks, most similar first. Block numbers in
                the context match their position in this list.
        """
        context = self.format_context(results)
        return self.TEMPLATE.format(context=context, question=question)

    def format_context(self, results: list[SearchResult]) -> str:
        """Numbered ``[n] Source: title, Page p`` blocks."""
        if not results:
            return "No context documents available."

        blocks = []
        for i, result in enumerate(results, 1):
            chunk = result.chunk
            header = f"[{i}] Source: {chunk.source}"
            if chunk.page_number:
                header += f", Page {chunk.page_number}"
            content = truncate_at_sentence(chunk.content, self.max_chunk_chars)
            blocks.append(f"{header}\nContent: {content}\n")

        return CONTEXT_SEPARATOR.join(blocks)
