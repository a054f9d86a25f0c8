"""Test utilities for pipeline tests.

FakeRenderer stands in for the Playwright renderer: it serves canned HTML
per URL, records every fetch, counts sessions and page handles, and can be
told to fail specific URLs with NavigationError.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from gleaner.checkpoint import CheckpointStore
from gleaner.common.exceptions import NavigationError
from gleaner.config import (
    CollectionConfig,
    DelayConfig,
    DiscoveryConfig,
    GleanerConfig,
    RetryConfig,
    StorageConfig,
)
from gleaner.data_types import RenderedPage

logger = logging.getLogger(__name__)

BASE_URL = "https://apps.example.com"

EMPTY_PAGE = "<html><head></head><body></body></html>"


class FakeRenderer:
    """Renderer serving canned pages.

    Unknown URLs render as an empty page, the way a real site answers a
    page number past the end of a listing.

    Args:
        pages: URL -> HTML.
        failures: URL -> number of fetches that fail before it succeeds.
            Use a large number for a URL that never recovers.
    """

    def __init__(
        self,
        pages: dict[str, str] | None = None,
        failures: dict[str, int] | None = None,
    ) -> None:
        self.pages = dict(pages or {})
        self.failures = dict(failures or {})
        self.fetches: list[str] = []
        self.sessions_opened = 0
        self.pages_opened = 0
        self.pages_closed = 0

    @asynccontextmanager
    async def open(self) -> AsyncIterator[FakeSession]:
        self.sessions_opened += 1
        yield FakeSession(self)

    async def render(self, url: str) -> RenderedPage:
        self.fetches.append(url)
        remaining = self.failures.get(url, 0)
        if remaining > 0:
            self.failures[url] = remaining - 1
            raise NavigationError(url, "simulated failure")
        return RenderedPage(
            url=url, html=self.pages.get(url, EMPTY_PAGE), requested_url=url
        )


class FakePage:
    def __init__(self, renderer: FakeRenderer) -> None:
        self.renderer = renderer

    async def fetch(
        self, url: str, timeout_ms: int | None = None
    ) -> RenderedPage:
        return await self.renderer.render(url)


class FakeSession:
    def __init__(self, renderer: FakeRenderer) -> None:
        self.renderer = renderer

    @asynccontextmanager
    async def page(self) -> AsyncIterator[FakePage]:
        self.renderer.pages_opened += 1
        try:
            yield FakePage(self.renderer)
        finally:
            self.renderer.pages_closed += 1

    async def fetch(
        self, url: str, timeout_ms: int | None = None
    ) -> RenderedPage:
        return await self.renderer.render(url)


class RecordingStore(CheckpointStore):
    """CheckpointStore that remembers the order of saves."""

    def __init__(self, root: Path) -> None:
        super().__init__(root)
        self.saves: list[str] = []

    def save(self, name: str, value: Any) -> Path:
        path = super().save(name, value)
        self.saves.append(name)
        return path


def make_config(data_dir: Path, **collection: Any) -> GleanerConfig:
    """Configuration with no pauses, pointed at BASE_URL and ``data_dir``.

    Keyword arguments override CollectionConfig fields.
    """
    no_delay = DelayConfig(min_ms=0, max_ms=0)
    quick_retry = RetryConfig(max_attempts=3, base_delay_ms=0)
    return GleanerConfig(
        discovery=DiscoveryConfig(
            base_url=BASE_URL, delay=no_delay, retry=quick_retry
        ),
        collection=CollectionConfig(
            base_url=BASE_URL,
            delay=no_delay,
            retry=quick_retry,
            **collection,
        ),
        storage=StorageConfig(data_dir=data_dir),
    )


def search_url(page: int = 1) -> str:
    url = f"{BASE_URL}/search?q=print+on+demand"
    return url if page == 1 else f"{url}&page={page}"


def search_href(page: int) -> str:
    return search_url(page)[len(BASE_URL) :]


def reviews_url(slug: str, page: int = 1) -> str:
    url = f"{BASE_URL}/{slug}/reviews"
    return url if page == 1 else f"{url}?page={page}"


def reviews_href(slug: str, page: int) -> str:
    return reviews_url(slug, page)[len(BASE_URL) :]
