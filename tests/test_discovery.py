"""Tests for Phase 1, app discovery.

Covers:
1. Deduplication across listing pages
2. Trusting a non-empty discovery checkpoint
3. Filtering infrastructure routes, keywords and unreviewed apps
4. Pagination termination (no next link, no new apps, loops, page limit)
5. Resuming an interrupted discovery from its progress checkpoint
"""

from pathlib import Path

from gleaner.checkpoint import CheckpointStore
from gleaner.config import DiscoveryConfig, GleanerConfig, StorageConfig
from gleaner.data_types import Entity
from gleaner.discovery import (
    DiscoveryProgress,
    EntityDiscoverer,
    dedupe_by_slug,
    merge_new,
)
from gleaner.extractor import AppStoreExtractor
from tests.mock_server import MockApp, links_listing_html, listing_html
from tests.utils import FakeRenderer, search_href, search_url

A = MockApp(slug="a", name="App A", review_count=10)
B = MockApp(slug="b", name="App B", review_count=5)
C = MockApp(slug="c", name="App C", review_count=1)
D = MockApp(slug="d", name="App D", review_count=3)


def make_discoverer(
    config: GleanerConfig,
    store: CheckpointStore,
    **overrides,
) -> EntityDiscoverer:
    discovery = config.discovery.model_copy(update=overrides)
    return EntityDiscoverer(discovery, config.storage, AppStoreExtractor(), store)


class TestHelpers:
    """Tests for deduplication and merge helpers."""

    def test_dedupe_first_wins(self):
        """dedupe_by_slug shall keep the first occurrence of each slug."""
        entities = [
            Entity(slug="a", name="first"),
            Entity(slug="b", name="B"),
            Entity(slug="a", name="second"),
        ]
        assert dedupe_by_slug(entities) == [
            Entity(slug="a", name="first"),
            Entity(slug="b", name="B"),
        ]

    def test_merge_new_counts_new_slugs(self):
        """merge_new shall append only unseen slugs and count them."""
        accumulated = [Entity(slug="a", name="A")]
        seen = {"a"}

        added = merge_new(
            accumulated, seen, [Entity(slug="a", name="A"), Entity(slug="b", name="B")]
        )

        assert added == 1
        assert [e.slug for e in accumulated] == ["a", "b"]
        assert seen == {"a", "b"}


class TestFiltering:
    """Tests for route, keyword and review count filters."""

    def test_route_pattern_excludes_infrastructure(self, config, store):
        """Infrastructure routes shall not be treated as apps."""
        discoverer = make_discoverer(config, store)
        entities = [
            Entity(slug="categories", name="Categories"),
            Entity(slug="partners", name="Partners"),
            Entity(slug="printful", name="Printful"),
        ]
        assert [e.slug for e in discoverer.filter_entities(entities)] == ["printful"]

    def test_route_pattern_matches_whole_segment(self, config, store):
        """App slugs that merely start with a route name shall be kept."""
        discoverer = make_discoverer(config, store)
        kept = ["partnerjam", "searchanie", "login-with-shop", "cdn-booster", "storiesx"]
        dropped = ["partner", "partners", "categories", "search", "login", "Stories"]
        entities = [Entity(slug=s, name=s.title()) for s in kept + dropped]

        assert [e.slug for e in discoverer.filter_entities(entities)] == kept

    def test_keywords_match_slug_or_name(self, config, store):
        """Excluded keywords shall match case-insensitively in slug or name."""
        discoverer = make_discoverer(config, store, excluded_keywords=["Shipping"])
        entities = [
            Entity(slug="shipping-rates", name="Rates"),
            Entity(slug="rates", name="Free SHIPPING bar"),
            Entity(slug="printful", name="Printful"),
        ]
        assert [e.slug for e in discoverer.filter_entities(entities)] == ["printful"]

    def test_min_review_count(self, config, store):
        """Apps known to have too few reviews shall be dropped; unknown counts kept."""
        discoverer = make_discoverer(config, store, min_review_count=1)
        entities = [
            Entity(slug="none", name="None", review_count=0),
            Entity(slug="some", name="Some", review_count=4),
            Entity(slug="unknown", name="Unknown"),
        ]
        assert [e.slug for e in discoverer.filter_entities(entities)] == ["some", "unknown"]


class TestDiscover:
    """Tests for listing pagination."""

    async def test_dedup_across_pages(self, config, store):
        """Pages {a,b} then {b,c} shall discover a, b, c in that order."""
        renderer = FakeRenderer(
            {
                search_url(1): listing_html([A, B], next_href=search_href(2)),
                search_url(2): listing_html([B, C]),
            }
        )
        discoverer = make_discoverer(config, store)

        entities = await discoverer.discover(renderer)

        assert [e.slug for e in entities] == ["a", "b", "c"]
        assert [e["slug"] for e in store.load("apps.json")] == ["a", "b", "c"]
        assert renderer.fetches == [search_url(1), search_url(2)]

    async def test_completion_marks_progress(self, config, store):
        """Finished discovery shall save apps.json and mark its progress complete."""
        renderer = FakeRenderer({search_url(1): listing_html([A])})
        discoverer = make_discoverer(config, store)

        await discoverer.discover(renderer)

        progress = discoverer.load_progress()
        assert progress.complete is True
        assert progress.page == 1
        assert [e.slug for e in progress.entities] == ["a"]

    async def test_trusts_existing_checkpoint(self, config, store):
        """A non-empty apps.json shall be returned without opening the renderer."""
        store.save("apps.json", [{"slug": "x", "name": "X"}, {"slug": "y", "name": "Y"}])
        renderer = FakeRenderer()
        discoverer = make_discoverer(config, store)

        entities = await discoverer.discover(renderer)

        assert [e.slug for e in entities] == ["x", "y"]
        assert renderer.sessions_opened == 0
        assert renderer.fetches == []

    async def test_no_resume_ignores_checkpoint(self, config, store):
        """resume=False shall discover from page 1 and overwrite apps.json."""
        store.save("apps.json", [{"slug": "stale", "name": "Stale"}])
        renderer = FakeRenderer({search_url(1): listing_html([A, B])})
        discoverer = make_discoverer(config, store)

        entities = await discoverer.discover(renderer, resume=False)

        assert [e.slug for e in entities] == ["a", "b"]
        assert [e["slug"] for e in store.load("apps.json")] == ["a", "b"]

    async def test_stops_when_page_adds_nothing_new(self, config, store):
        """A page after the first with no new apps shall end discovery."""
        renderer = FakeRenderer(
            {
                search_url(1): listing_html([A, B], next_href=search_href(2)),
                search_url(2): listing_html([A, B], next_href=search_href(3)),
                search_url(3): listing_html([C]),
            }
        )
        discoverer = make_discoverer(config, store)

        entities = await discoverer.discover(renderer)

        assert [e.slug for e in entities] == ["a", "b"]
        assert renderer.fetches == [search_url(1), search_url(2)]

    async def test_stops_on_visited_url(self, config, store):
        """A "next" link pointing back to a visited page shall end discovery."""
        renderer = FakeRenderer(
            {
                search_url(1): listing_html([A], next_href=search_href(2)),
                search_url(2): listing_html([B], next_href=search_href(1)),
            }
        )
        discoverer = make_discoverer(config, store)

        entities = await discoverer.discover(renderer)

        assert [e.slug for e in entities] == ["a", "b"]
        assert renderer.fetches == [search_url(1), search_url(2)]

    async def test_page_limit(self, config, store):
        """Discovery shall not fetch more than max_pages listing pages."""
        renderer = FakeRenderer(
            {
                search_url(1): listing_html([A], next_href=search_href(2)),
                search_url(2): listing_html([B], next_href=search_href(3)),
                search_url(3): listing_html([C], next_href=search_href(4)),
            }
        )
        discoverer = make_discoverer(config, store, max_pages=2)

        entities = await discoverer.discover(renderer)

        assert [e.slug for e in entities] == ["a", "b"]
        assert len(renderer.fetches) == 2

    async def test_excluded_apps_never_checkpointed(self, config, store):
        """Filtered apps shall not appear in apps.json."""
        unreviewed = MockApp(slug="fresh", name="Fresh", review_count=0)
        renderer = FakeRenderer({search_url(1): listing_html([A, unreviewed])})
        discoverer = make_discoverer(config, store)

        entities = await discoverer.discover(renderer)

        assert [e.slug for e in entities] == ["a"]

    async def test_links_tier_recorded(self, config, store):
        """Apps found through the link fallback shall be counted under that tier."""
        renderer = FakeRenderer({search_url(1): links_listing_html([A, B])})
        discoverer = make_discoverer(config, store)

        entities = await discoverer.discover(renderer)

        assert [e.slug for e in entities] == ["a", "b"]
        assert discoverer.strategies["links"] == 1

    async def test_retries_failed_listing_page(self, config, store):
        """A listing page that fails once shall be retried."""
        renderer = FakeRenderer(
            {search_url(1): listing_html([A])}, failures={search_url(1): 1}
        )
        discoverer = make_discoverer(config, store)

        entities = await discoverer.discover(renderer)

        assert [e.slug for e in entities] == ["a"]
        assert renderer.fetches == [search_url(1), search_url(1)]


class TestResume:
    """Tests for resuming discovery from checkpoints."""

    async def test_resumes_from_progress_cursor(self, config, store):
        """Interrupted discovery shall continue from its saved next_url."""
        progress = DiscoveryProgress(
            page=1,
            next_url=search_url(2),
            entities=[Entity(slug="a", name="App A")],
            visited=[search_url(1)],
        )
        store.save("discovery_progress.json", progress.model_dump(mode="json"))
        renderer = FakeRenderer(
            {
                search_url(1): listing_html([A, B], next_href=search_href(2)),
                search_url(2): listing_html([B, C]),
            }
        )
        discoverer = make_discoverer(config, store)

        entities = await discoverer.discover(renderer)

        assert renderer.fetches == [search_url(2)]
        assert [e.slug for e in entities] == ["a", "b", "c"]

    async def test_exhausted_progress_needs_no_fetch(self, config, store):
        """Progress whose pagination already ended shall be finalized without fetching."""
        progress = DiscoveryProgress(
            page=2,
            next_url=None,
            entities=[Entity(slug="a", name="App A"), Entity(slug="d", name="App D")],
            visited=[search_url(1), search_url(2)],
        )
        store.save("discovery_progress.json", progress.model_dump(mode="json"))
        renderer = FakeRenderer()
        discoverer = make_discoverer(config, store)

        entities = await discoverer.discover(renderer)

        assert [e.slug for e in entities] == ["a", "d"]
        assert renderer.sessions_opened == 0
        assert [e["slug"] for e in store.load("apps.json")] == ["a", "d"]

    async def test_completed_empty_discovery_runs_again(self, config, store):
        """A completed discovery that found nothing shall be run again."""
        store.save(
            "discovery_progress.json",
            DiscoveryProgress(page=1, complete=True).model_dump(mode="json"),
        )
        renderer = FakeRenderer({search_url(1): listing_html([D])})
        discoverer = make_discoverer(config, store)

        entities = await discoverer.discover(renderer)

        assert [e.slug for e in entities] == ["d"]
        assert renderer.fetches == [search_url(1)]

    async def test_malformed_progress_restarts(self, config, store):
        """Unusable progress shall be discarded."""
        store.save("discovery_progress.json", {"page": "not a number"})
        renderer = FakeRenderer({search_url(1): listing_html([A])})
        discoverer = make_discoverer(config, store)

        entities = await discoverer.discover(renderer)

        assert [e.slug for e in entities] == ["a"]


def test_search_url_encodes_query(tmp_path: Path):
    """The search URL shall carry the encoded query."""
    config = DiscoveryConfig(base_url="https://apps.example.com", query="print on demand")
    assert config.search_url() == "https://apps.example.com/search?q=print+on+demand"
    assert StorageConfig(data_dir=tmp_path).entity_records_name("printful") == "reviews/printful.json"
