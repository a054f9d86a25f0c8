"""Interfaces the pipeline uses to reach a page renderer.

A renderer opens a session; a session hands out page handles; a page handle
fetches a URL and returns a RenderedPage snapshot. Sessions and handles are
async context managers so they are released even when the work inside them
fails.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Protocol

from gleaner.data_types import RenderedPage


class PageHandle(Protocol):
    async def fetch(
        self, url: str, timeout_ms: int | None = None
    ) -> RenderedPage:
        """Navigate to ``url`` and return a DOM snapshot.

        Raises:
            NavigationError: On timeout or network failure.
        """
        ...


class RenderSession(Protocol):
    def page(self) -> AbstractAsyncContextManager[PageHandle]:
        """Acquire a page handle, released when the context exits."""
        ...

    async def fetch(
        self, url: str, timeout_ms: int | None = None
    ) -> RenderedPage:
        """Fetch ``url`` on a throwaway page handle."""
        ...


class PageRenderer(Protocol):
    def open(self) -> AbstractAsyncContextManager[RenderSession]:
        """Start a browsing session, closed when the context exits."""
        ...
