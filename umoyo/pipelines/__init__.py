"""
Umoyo Query Pipelines

- CustomRAGPipeline: retrieve-then-generate over the custom vector corpus
- HybridOrchestrator: routing, concurrent hybrid retrieval and fallback
"""

from umoyo.pipelines.custom import Citation, CustomAnswer, CustomRAGPipeline
from umoyo.pipelines.hybrid import HybridOrchestrator, RetrievalResult, Source

__all__ = [
    "Citation",
    "CustomAnswer",
    "CustomRAGPipeline",
    "HybridOrchestrator",
    "RetrievalResult",
    "Source",
]
