"""
Umoyo Security Module

Input validation and sanitization for the HTTP API.
"""

from umoyo.security.input_validation import IngestRequest, QueryRequest, sanitize

__all__ = [
    "IngestRequest",
    "QueryRequest",
    "sanitize",
]
