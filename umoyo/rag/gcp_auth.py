"""
Google Cloud access tokens for the Vertex AI REST calls.

Uses application default credentials through google-auth. The blocking
refresh runs in a worker thread so it never stalls the event loop.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

import google.auth
from google.auth.transport.requests import Request

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"

TokenProvider = Callable[[], Awaitable[str]]


class GoogleTokenProvider:
    """Async callable returning a valid OAuth2 access token."""

    def __init__(self, scopes: list[str] | None = None) -> None:
        self.scopes = scopes or [CLOUD_PLATFORM_SCOPE]
        self._credentials = None
        self._lock = asyncio.Lock()

    async def __call__(self) -> str:
        async with self._lock:
            if self._credentials is None or not self._credentials.valid:
                self._credentials = await asyncio.to_thread(self._refresh)
            return self._credentials.token

    def _refresh(self):
        credentials, _project = google.auth.default(scopes=self.scopes)
        credentials.refresh(Request())
        logger.debug("Refreshed Google Cloud access token")
        return credentials
