"""Configuration models.

The whole run is described by one GleanerConfig value, built from defaults,
an optional JSON file and CLI overrides. Each component is handed only the
slice it needs (DiscoveryConfig, CollectionConfig, RendererConfig,
StorageConfig); nothing reads configuration from module globals.

Selectors live in SearchSelectors and ReviewSelectors and are only read by
the extractor. They will need maintenance as the remote markup changes.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal
from urllib.parse import quote_plus

from pydantic import BaseModel, Field, ValidationError, model_validator

from gleaner.common.exceptions import GleanerException

logger = logging.getLogger(__name__)

BASE_URL = "https://apps.shopify.com"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class DelayConfig(BaseModel):
    """Bounds for the randomized pause after every page fetch."""

    min_ms: int = Field(3000, ge=0)
    max_ms: int = Field(5000, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> DelayConfig:
        if self.min_ms > self.max_ms:
            raise ValueError(
                f"min_ms ({self.min_ms}) must not exceed max_ms ({self.max_ms})"
            )
        return self


class RetryConfig(BaseModel):
    """Bounded exponential backoff for navigations."""

    max_attempts: int = Field(3, ge=1)
    base_delay_ms: int = Field(5000, ge=0)


class SearchSelectors(BaseModel):
    """Selectors for the catalog search listing."""

    app_card: str = "[data-app-card-handle-value]"
    app_name_attr: str = "data-app-card-name-value"
    app_handle_attr: str = "data-app-card-handle-value"
    app_description_attr: str = "data-app-card-intro-value"
    review_count_selector: str = "[data-app-card-review-count]"
    fallback_link: str = 'a[href^="/"]'
    next_page_link: str = 'a[rel="next"]'


class ReviewSelectors(BaseModel):
    """Selectors for an app's review pages."""

    json_ld_script: str = 'script[type="application/ld+json"]'
    total_count_heading: str = "h2 .tw-text-body-md"
    review_block: str = "div[data-merchant-review]"
    rating: str = 'div[aria-label*="out of 5 stars"]'
    review_date: str = ".tw-order-2 .tw-text-body-xs.tw-text-fg-tertiary"
    review_text: str = (
        "[data-truncate-review] [data-truncate-content-copy], [data-truncate-review]"
    )
    reviewer_name: str = ".tw-text-heading-xs.tw-text-fg-primary span[title]"
    reviewer_name_marker: str = ".tw-text-heading-xs"
    sidebar: str = ".tw-order-1 .tw-space-y-1"
    reply_block: str = '[data-merchant-review-reply] [id^="review-reply-"]'
    reply_date: str = ".tw-text-body-xs.tw-text-fg-tertiary.tw-mb-sm"
    reply_text: str = "[data-truncate-content-copy], [data-reply-id]"
    next_page_link: str = '[data-pagination-controls] a[rel="next"]'


class DiscoveryConfig(BaseModel):
    """Everything the entity discoverer needs."""

    base_url: str = BASE_URL
    query: str = "print on demand"
    max_pages: int = Field(15, ge=1)
    # Slugs whose first path segment is a site infrastructure route, not an app.
    excluded_route_pattern: str = (
        r"^(categories|collections|stories|search|login|partners?|cdn|\.well-known)"
        r"(?:$|[/?#])"
    )
    excluded_keywords: list[str] = Field(default_factory=list)
    min_review_count: int = Field(1, ge=0)
    delay: DelayConfig = Field(default_factory=DelayConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    def search_url(self) -> str:
        return f"{self.base_url}/search?q={quote_plus(self.query)}"


class CollectionConfig(BaseModel):
    """Everything the collection scraper needs."""

    base_url: str = BASE_URL
    reviews_per_page: int = Field(10, ge=1)
    # Page cap used when the total review count is unknown.
    max_pages: int = Field(500, ge=1)
    on_entity_error: Literal["abort", "skip"] = "abort"
    delay: DelayConfig = Field(default_factory=DelayConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    def reviews_url(self, slug: str) -> str:
        return f"{self.base_url}/{slug}/reviews"

    def reviews_page_url(self, slug: str, page: int) -> str:
        if page <= 1:
            return self.reviews_url(slug)
        return f"{self.reviews_url(slug)}?page={page}"


class RendererConfig(BaseModel):
    """Browser settings for the Playwright renderer."""

    browser_type: Literal["chromium", "firefox", "webkit"] = "chromium"
    headless: bool = True
    user_agent: str | None = DEFAULT_USER_AGENT
    viewport_width: int = 1280
    viewport_height: int = 800
    locale: str = "en-US"
    navigation_timeout_ms: int = Field(60_000, ge=1)
    wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = (
        "networkidle"
    )
    launch_args: list[str] = Field(
        default_factory=lambda: ["--no-sandbox", "--disable-setuid-sandbox"]
    )
    # Hard ceiling on navigations per minute, enforced with pyrate_limiter.
    # None leaves pacing to the randomized inter-request delay alone.
    max_navigations_per_minute: int | None = Field(None, ge=1)


class StorageConfig(BaseModel):
    """Checkpoint and output file names, relative to data_dir."""

    data_dir: Path = Path("data")
    apps_checkpoint: str = "apps.json"
    discovery_progress: str = "discovery_progress.json"
    scraped_slugs_checkpoint: str = "scraped_app_slugs.json"
    failed_slugs_checkpoint: str = "failed_app_slugs.json"
    combined_checkpoint: str = "combined_reviews.json"
    reviews_dir: str = "reviews"
    csv_output: str = "all_reviews.csv"
    json_output: str = "all_reviews.json"

    def entity_records_name(self, slug: str) -> str:
        return f"{self.reviews_dir}/{slug}.json"


class ExtractorConfig(BaseModel):
    search: SearchSelectors = Field(default_factory=SearchSelectors)
    reviews: ReviewSelectors = Field(default_factory=ReviewSelectors)


class GleanerConfig(BaseModel):
    """Complete configuration for one run."""

    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    collection: CollectionConfig = Field(default_factory=CollectionConfig)
    renderer: RendererConfig = Field(default_factory=RendererConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    extractor: ExtractorConfig = Field(default_factory=ExtractorConfig)


class ConfigError(GleanerException):
    """Raised when a configuration file cannot be read or validated."""


def load_config(path: Path | None = None) -> GleanerConfig:
    """Build a GleanerConfig from an optional JSON file.

    Args:
        path: JSON file whose keys mirror GleanerConfig. Missing keys keep
            their defaults. None returns the defaults.

    Raises:
        ConfigError: If the file is unreadable or fails validation.
    """
    if path is None:
        return GleanerConfig()

    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e

    try:
        config = GleanerConfig.model_validate_json(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid config file {path}:\n{e}") from e

    logger.debug(f"Loaded configuration from {path}")
    return config
