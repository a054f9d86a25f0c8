"""Page renderers.

The pipeline depends only on the protocols in ``gleaner.renderer.base``;
PlaywrightRenderer is the production implementation.
"""

from gleaner.renderer.base import PageHandle, PageRenderer, RenderSession
from gleaner.renderer.playwright_renderer import (
    PlaywrightPage,
    PlaywrightRenderer,
    PlaywrightSession,
)

__all__ = [
    "PageHandle",
    "PageRenderer",
    "PlaywrightPage",
    "PlaywrightRenderer",
    "PlaywrightSession",
    "RenderSession",
]
