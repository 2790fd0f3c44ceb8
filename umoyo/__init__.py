"""
Umoyo - Hybrid RAG Engine for Medical Question Answering

Answers natural-language medical questions by retrieving supporting text
from a document corpus and synthesizing a grounded answer.

Features:
- Deterministic query routing (managed / custom / hybrid)
- Managed retrieval corpus (Vertex AI RAG Engine)
- Custom vector corpus with exact cosine-similarity search
- Token-aware embedding batching with retry/backoff
- Graceful fallback: every query returns a well-formed result
"""

__version__ = "0.1.0"
__author__ = "Umoyo Health Hub Team"
