"""Selector-driven extraction of apps and reviews from rendered pages.

The pipeline talks to extraction only through the Extractor protocol.
AppStoreExtractor is the implementation for the app store's markup; every
selector it uses comes from its injected ExtractorConfig.

Entity extraction is a two-tier strategy. The "cards" tier reads the data
attributes on search result cards. If it finds nothing, the "links" tier
falls back to treating single-segment site links as app pages. The tier
that produced the result is returned with it so callers can log it.

Selector misses and malformed counts are ExtractionAnomaly internally. They
never escape: the extractor logs them and reports an empty result or an
unknown count.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from functools import partial
from typing import Any, Protocol, TypeVar

from gleaner.common.exceptions import ExtractionAnomaly
from gleaner.common.page_element import LxmlPageElement
from gleaner.config import ExtractorConfig
from gleaner.data_types import Entity, EntityExtraction, Record, RenderedPage

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RATING_RE = re.compile(r"(\d)\s*out of 5")
_USAGE_RE = re.compile(r"using the app|year|month|day", re.IGNORECASE)
_REPLIED_RE = re.compile(r"^\s*.*?replied\s*", re.IGNORECASE)
_SLUG_RE = re.compile(r"^/([^/?#]+)")
_COUNT_RE = re.compile(r"\d[\d,]*")
_PAREN_COUNT_RE = re.compile(r"\(\s*(\d[\d,]*)\s*\)")


class Extractor(Protocol):
    def extract_entities(self, page: RenderedPage) -> EntityExtraction: ...

    def extract_records(
        self, page: RenderedPage, entity: Entity
    ) -> list[Record]: ...

    def extract_total_count(self, page: RenderedPage) -> int | None: ...

    def find_next_page(self, page: RenderedPage) -> str | None: ...


def _parse_count(text: str) -> int | None:
    """First number in ``text``, preferring a parenthesized one like "(1,234)"."""
    match = _PAREN_COUNT_RE.search(text) or _COUNT_RE.search(text)
    if not match:
        return None
    return int(match.group(match.lastindex or 0).replace(",", ""))


class AppStoreExtractor:
    """Extractor for app store search and review pages."""

    def __init__(self, config: ExtractorConfig | None = None) -> None:
        config = config or ExtractorConfig()
        self.search = config.search
        self.reviews = config.reviews

    def _tolerant(
        self, func: Callable[[], T], default: T, url: str, what: str
    ) -> T:
        try:
            return func()
        except ExtractionAnomaly as e:
            logger.debug(f"No {what} on {url}: {e.message}")
            return default

    # ── Entities ────────────────────────────────────────────────

    def extract_entities(self, page: RenderedPage) -> EntityExtraction:
        """Extract candidate apps, trying the "cards" tier then "links"."""
        tiers: list[tuple[str, Callable[[LxmlPageElement], list[Entity]]]] = [
            ("cards", self._entities_from_cards),
            ("links", self._entities_from_links),
        ]
        for name, tier in tiers:
            entities = self._tolerant(
                partial(tier, page.tree), [], page.url, f"{name} entities"
            )
            if entities:
                return EntityExtraction(entities=entities, strategy=name)
        return EntityExtraction(entities=[], strategy="none")

    def _entities_from_cards(self, tree: LxmlPageElement) -> list[Entity]:
        sel = self.search
        entities: list[Entity] = []
        for card in tree.query_css(sel.app_card, "app cards", min_count=0):
            handle = (card.get_attribute(sel.app_handle_attr) or "").strip()
            if not handle:
                continue
            name = (card.get_attribute(sel.app_name_attr) or "").strip()
            description = card.get_attribute(sel.app_description_attr)
            count_elem = card.first_css(sel.review_count_selector, "review count")
            review_count = (
                _parse_count(count_elem.text_content()) if count_elem else None
            )
            entities.append(
                Entity(
                    slug=handle,
                    name=name or handle,
                    description=description.strip() if description else None,
                    review_count=review_count,
                )
            )
        return entities

    def _entities_from_links(self, tree: LxmlPageElement) -> list[Entity]:
        entities: list[Entity] = []
        for link in tree.find_links(
            self.search.fallback_link, "site links", min_count=0
        ):
            match = _SLUG_RE.match(link.href)
            if not match:
                continue
            slug = match.group(1)
            lines = [line.strip() for line in link.text.splitlines() if line.strip()]
            name = lines[0] if lines else slug
            if len(name) >= 200:
                continue
            entities.append(Entity(slug=slug, name=name))
        return entities

    # ── Review counts ───────────────────────────────────────────

    def extract_total_count(self, page: RenderedPage) -> int | None:
        """Total review count: JSON-LD aggregateRating first, heading second."""
        count = self._tolerant(
            lambda: self._count_from_json_ld(page), None, page.url, "JSON-LD count"
        )
        if count is not None:
            return count
        return self._tolerant(
            lambda: self._count_from_heading(page), None, page.url, "heading count"
        )

    def _count_from_json_ld(self, page: RenderedPage) -> int | None:
        scripts = page.tree.query_css(
            self.reviews.json_ld_script, "JSON-LD scripts", min_count=1
        )
        for script in scripts:
            try:
                data = json.loads(script.text_content())
            except ValueError:
                continue
            rating = _find_aggregate_rating(data)
            if rating is None:
                continue
            raw = rating.get("ratingCount", rating.get("reviewCount"))
            if raw is None:
                continue
            try:
                return int(str(raw).replace(",", ""))
            except ValueError:
                raise ExtractionAnomaly(
                    selector=self.reviews.json_ld_script,
                    selector_type="json",
                    description=f"numeric ratingCount (got {raw!r})",
                    expected_min=1,
                    expected_max=1,
                    actual_count=0,
                    request_url=page.url,
                ) from None
        return None

    def _count_from_heading(self, page: RenderedPage) -> int | None:
        heading = page.tree.query_css(
            self.reviews.total_count_heading, "review count heading", min_count=1
        )[0]
        text = heading.normalized_text()
        count = _parse_count(text)
        if count is None:
            raise ExtractionAnomaly(
                selector=self.reviews.total_count_heading,
                selector_type="css",
                description=f"number in heading (got {text!r})",
                expected_min=1,
                expected_max=1,
                actual_count=0,
                request_url=page.url,
            )
        return count

    # ── Reviews ─────────────────────────────────────────────────

    def extract_records(
        self, page: RenderedPage, entity: Entity
    ) -> list[Record]:
        blocks = self._tolerant(
            lambda: page.tree.query_css(
                self.reviews.review_block, "review blocks", min_count=0
            ),
            [],
            page.url,
            "review blocks",
        )
        return [self._record_from_block(block, entity) for block in blocks]

    def _record_from_block(
        self, block: LxmlPageElement, entity: Entity
    ) -> Record:
        sel = self.reviews

        rating: int | str = ""
        rating_elem = block.first_css(sel.rating, "star rating")
        if rating_elem is not None:
            match = _RATING_RE.search(rating_elem.get_attribute("aria-label") or "")
            if match:
                rating = int(match.group(1))

        date_elem = block.first_css(sel.review_date, "review date")
        review_date = date_elem.normalized_text() if date_elem else ""

        text_elem = block.first_css(sel.review_text, "review text")
        review_text = _paragraph_text(text_elem) if text_elem else ""

        reviewer_name = ""
        name_elem = block.first_css(sel.reviewer_name, "reviewer name")
        if name_elem is not None:
            reviewer_name = (
                name_elem.get_attribute("title") or name_elem.normalized_text()
            )

        reviewer_location = ""
        usage_duration = ""
        sidebar = block.first_css(sel.sidebar, "reviewer sidebar")
        if sidebar is not None:
            for child in sidebar.children():
                if child.tag_name() != "div":
                    continue
                text = child.normalized_text()
                if not text or child.first_css(sel.reviewer_name_marker, "name marker"):
                    continue
                if _USAGE_RE.search(text):
                    usage_duration = text
                elif not reviewer_location:
                    reviewer_location = text

        developer_response = ""
        developer_response_date = ""
        reply = block.first_css(sel.reply_block, "developer reply")
        if reply is not None:
            reply_date = reply.first_css(sel.reply_date, "reply date")
            if reply_date is not None:
                developer_response_date = _REPLIED_RE.sub(
                    "", reply_date.normalized_text()
                ).strip()
            reply_text = reply.first_css(sel.reply_text, "reply text")
            if reply_text is not None:
                developer_response = _paragraph_text(reply_text)

        return Record(
            app_name=entity.name,
            app_slug=entity.slug,
            reviewer_name=reviewer_name,
            reviewer_location=reviewer_location,
            rating=rating,
            review_date=review_date,
            usage_duration=usage_duration,
            review_text=review_text,
            developer_response=developer_response,
            developer_response_date=developer_response_date,
        )

    # ── Pagination ──────────────────────────────────────────────

    def find_next_page(self, page: RenderedPage) -> str | None:
        """URL of the "next page" link, if the page has one."""
        for selector in (self.reviews.next_page_link, self.search.next_page_link):
            links = self._tolerant(
                partial(page.tree.find_links, selector, "next page link", min_count=0),
                [],
                page.url,
                "next page link",
            )
            if links:
                return links[0].url
        return None


def _paragraph_text(elem: LxmlPageElement) -> str:
    """Text of the first <p> inside ``elem``, or of ``elem`` itself."""
    paragraph = elem.first_css("p", "paragraph")
    return (paragraph or elem).normalized_text()


def _find_aggregate_rating(data: Any) -> dict | None:
    """Locate an aggregateRating object in a JSON-LD document."""
    if isinstance(data, list):
        for item in data:
            found = _find_aggregate_rating(item)
            if found is not None:
                return found
        return None
    if not isinstance(data, dict):
        return None
    rating = data.get("aggregateRating")
    if isinstance(rating, dict):
        return rating
    graph = data.get("@graph")
    if graph is not None:
        return _find_aggregate_rating(graph)
    return None
