"""
Input Validation for Umoyo

Request models for the HTTP API. Questions are sanitized (null bytes and
control characters removed) and length-checked before reaching the
orchestrator.
"""

import re

from pydantic import BaseModel, Field, field_validator

from umoyo.rag.models import Document
from umoyo.rag.router import UserRole

MIN_QUERY_LENGTH = 3
MAX_QUERY_LENGTH = 1000
MAX_BATCH_DOCUMENTS = 500

_CONTROL_CHARS = re.compile(r"[\x01-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize(text: str) -> str:
    """Strip null bytes and control characters except newlines and tabs."""
    text = text.replace("\x00", "")
    return _CONTROL_CHARS.sub("", text).strip()


class QueryRequest(BaseModel):
    """Validated query request model."""

    message: str
    role: UserRole = UserRole.PATIENT

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        v = sanitize(v)
        if len(v) < MIN_QUERY_LENGTH:
            raise ValueError(f"Query must be at least {MIN_QUERY_LENGTH} characters")
        if len(v) > MAX_QUERY_LENGTH:
            raise ValueError(f"Query must be at most {MAX_QUERY_LENGTH} characters")
        return v

    @field_validator("role", mode="before")
    @classmethod
    def validate_role(cls, v):
        if isinstance(v, str):
            try:
                return UserRole.parse(v)
            except ValueError:
                raise ValueError("role must be 'patient' or 'professional'") from None
        return v


class IngestRequest(BaseModel):
    """A batch of documents to index into the custom corpus."""

    documents: list[Document] = Field(..., min_length=1)
    concurrency: int = 1

    @field_validator("documents")
    @classmethod
    def validate_documents(cls, v: list[Document]) -> list[Document]:
        if len(v) > MAX_BATCH_DOCUMENTS:
            raise ValueError(f"At most {MAX_BATCH_DOCUMENTS} documents per job")
        missing = [d.id for d in v if not d.local_path]
        if missing:
            raise ValueError(f"Documents without local_path: {missing}")
        return v

    @field_validator("concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if v < 1 or v > 8:
            raise ValueError("concurrency must be between 1 and 8")
        return v
