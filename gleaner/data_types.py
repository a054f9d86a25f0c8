"""Data types passed between the pipeline, the renderer and the extractor.

- Entity: a discovered app, keyed by its slug.
- Record: a single review belonging to an app.
- RenderedPage: a serialized DOM snapshot produced by the renderer.
- EntityExtraction: entities found on a listing page plus the extraction
  strategy tier that produced them.

Entities and records are frozen pydantic models: they are created once and
only ever appended to lists, never edited in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field

from gleaner.common.page_element import LxmlPageElement


class Entity(BaseModel):
    """An app discovered from the catalog listing."""

    model_config = ConfigDict(frozen=True)

    slug: str = Field(..., min_length=1, description="URL-safe unique key")
    name: str = Field(..., description="Display name")
    description: str | None = Field(None, description="Listing tagline")
    review_count: int | None = Field(
        None, description="Review count shown on the listing, if any"
    )

    def to_checkpoint(self) -> dict:
        return self.model_dump(exclude_none=True)


class Record(BaseModel):
    """One review of an app.

    Every field except the owning app defaults to an empty string, so a
    review whose markup lacked a field still serializes with the full
    column set.
    """

    model_config = ConfigDict(frozen=True)

    # (field name, CSV header) in output order.
    COLUMNS: ClassVar[tuple[tuple[str, str], ...]] = (
        ("app_name", "App Name"),
        ("app_slug", "App Slug"),
        ("reviewer_name", "Reviewer Name"),
        ("reviewer_location", "Reviewer Location"),
        ("rating", "Rating"),
        ("review_date", "Review Date"),
        ("usage_duration", "Usage Duration"),
        ("review_text", "Review Text"),
        ("developer_response", "Developer Response"),
        ("developer_response_date", "Developer Response Date"),
    )

    app_name: str
    app_slug: str
    reviewer_name: str = ""
    reviewer_location: str = ""
    rating: int | str = ""
    review_date: str = ""
    usage_duration: str = ""
    review_text: str = ""
    developer_response: str = ""
    developer_response_date: str = ""

    @property
    def entity_slug(self) -> str:
        """Slug of the app this review belongs to."""
        return self.app_slug

    def to_row(self) -> dict[str, int | str]:
        """Field map in column order."""
        return {name: getattr(self, name) for name, _ in self.COLUMNS}


@dataclass(frozen=True)
class RenderedPage:
    """A DOM snapshot taken after the renderer reported the page settled.

    Attributes:
        url: Final URL after redirects.
        html: Serialized document.
        requested_url: URL the renderer was asked to load.
    """

    url: str
    html: str
    requested_url: str = ""

    @cached_property
    def tree(self) -> LxmlPageElement:
        """Parsed document, built on first access."""
        return LxmlPageElement.from_html(self.html, self.url)


@dataclass(frozen=True)
class EntityExtraction:
    """Entities extracted from one listing page.

    Attributes:
        entities: Candidates in page order, before pipeline filtering.
        strategy: Name of the extraction tier that produced them, or
            "none" when every tier came back empty.
    """

    entities: list[Entity] = field(default_factory=list)
    strategy: str = "none"
