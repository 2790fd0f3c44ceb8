"""
Umoyo LLM Module

Answer generation components:
- OllamaClient: Async HTTP client for Ollama API
- PromptTemplate: Role-specific grounded prompt formatting
"""

from umoyo.llm.ollama_client import OllamaClient
from umoyo.llm.prompt_templates import PromptTemplate

__all__ = [
    "OllamaClient",
    "PromptTemplate",
]
