"""Phase 1: discover apps from the paginated catalog search listing.

Discovery walks the listing page by page, following the page's own "next"
link, and accumulates apps in first-seen order. Progress is saved after
every page so an interrupted discovery resumes from its cursor.

The discovery checkpoint (``apps.json``) is written once, when pagination
terminates. A non-empty ``apps.json`` is therefore trusted as a complete
discovery and short-circuits the phase without touching the network; it is
never re-validated against the live site.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Iterable
from functools import partial

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from gleaner.checkpoint import CheckpointStore
from gleaner.common.exceptions import CheckpointIOError, NavigationError
from gleaner.config import DiscoveryConfig, StorageConfig
from gleaner.data_types import Entity
from gleaner.extractor import Extractor
from gleaner.renderer.base import PageHandle, PageRenderer
from gleaner.throttle import throttled_delay, with_retry

logger = logging.getLogger(__name__)

_entity_list = TypeAdapter(list[Entity])


class DiscoveryProgress(BaseModel):
    """Cursor and accumulator persisted after every listing page.

    ``complete`` is set only after ``apps.json`` has been written, and is the
    explicit marker distinguishing a finished discovery from an interrupted
    one.
    """

    page: int = 0
    next_url: str | None = None
    entities: list[Entity] = Field(default_factory=list)
    visited: list[str] = Field(default_factory=list)
    complete: bool = False

    @property
    def exhausted(self) -> bool:
        """Pagination already ran to its end in an earlier process."""
        return self.page > 0 and self.next_url is None


def dedupe_by_slug(entities: Iterable[Entity]) -> list[Entity]:
    """Drop repeated slugs; the first occurrence wins."""
    seen: set[str] = set()
    unique: list[Entity] = []
    for entity in entities:
        if entity.slug in seen:
            continue
        seen.add(entity.slug)
        unique.append(entity)
    return unique


def merge_new(
    accumulated: list[Entity], seen: set[str], batch: Iterable[Entity]
) -> int:
    """Append entities whose slug is not in ``seen``.

    Returns:
        How many entities were genuinely new.
    """
    new_count = 0
    for entity in batch:
        if entity.slug in seen:
            continue
        seen.add(entity.slug)
        accumulated.append(entity)
        new_count += 1
    return new_count


class EntityDiscoverer:
    """Paginates the catalog listing and persists the discovered apps.

    Example:
        discoverer = EntityDiscoverer(config.discovery, config.storage, extractor, store)
        apps = await discoverer.discover(renderer, resume=True)
    """

    def __init__(
        self,
        config: DiscoveryConfig,
        storage: StorageConfig,
        extractor: Extractor,
        store: CheckpointStore,
    ) -> None:
        self.config = config
        self.storage = storage
        self.extractor = extractor
        self.store = store
        self._route_re = re.compile(config.excluded_route_pattern, re.IGNORECASE)
        self._keywords = [k.lower() for k in config.excluded_keywords if k]
        self.strategies: Counter[str] = Counter()

    # ── Checkpoints ─────────────────────────────────────────────

    def load_checkpoint(self) -> list[Entity]:
        """Entities from ``apps.json``, or an empty list when absent.

        Raises:
            CheckpointIOError: If the file holds entries that are not apps.
        """
        raw = self.store.load(self.storage.apps_checkpoint, [])
        if not isinstance(raw, list):
            return []
        try:
            return _entity_list.validate_python(raw)
        except ValidationError as e:
            raise CheckpointIOError(
                self.store.path(self.storage.apps_checkpoint),
                f"invalid entity entries: {e.error_count()} errors",
            ) from e

    def load_progress(self) -> DiscoveryProgress:
        raw = self.store.load(self.storage.discovery_progress, None)
        if raw is None:
            return DiscoveryProgress()
        try:
            return DiscoveryProgress.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding malformed discovery progress; starting over")
            return DiscoveryProgress()

    def _save_progress(self, progress: DiscoveryProgress) -> None:
        self.store.save(
            self.storage.discovery_progress, progress.model_dump(mode="json")
        )

    # ── Filtering ───────────────────────────────────────────────

    def is_excluded(self, entity: Entity) -> bool:
        """True for infrastructure routes, excluded keywords and apps
        below the minimum review count."""
        if self._route_re.match(entity.slug):
            return True
        slug = entity.slug.lower()
        name = entity.name.lower()
        if any(k in slug or k in name for k in self._keywords):
            return True
        return (
            entity.review_count is not None
            and entity.review_count < self.config.min_review_count
        )

    def filter_entities(self, entities: Iterable[Entity]) -> list[Entity]:
        return [e for e in entities if not self.is_excluded(e)]

    # ── Discovery ───────────────────────────────────────────────

    async def discover(
        self, renderer: PageRenderer, *, resume: bool = True
    ) -> list[Entity]:
        """Discover apps, or return the trusted checkpoint when resuming.

        Args:
            renderer: Page renderer; only opened when the listing must be
                fetched.
            resume: Use existing checkpoints. When False, discovery starts
                from page 1 and overwrites them.

        Returns:
            Deduplicated apps in first-seen order.
        """
        progress = DiscoveryProgress()
        if resume:
            cached = self.load_checkpoint()
            if cached:
                logger.info(f"Resuming: found {len(cached)} apps in checkpoint.")
                return cached

            progress = self.load_progress()
            if progress.complete:
                logger.info(
                    "Previous discovery completed with no apps; running it again."
                )
                progress = DiscoveryProgress()
            elif progress.page:
                logger.info(
                    f"Resuming discovery after page {progress.page} "
                    f"with {len(progress.entities)} apps."
                )

        if progress.exhausted:
            entities = progress.entities
        else:
            async with renderer.open() as session:
                async with session.page() as tab:
                    entities = await self._paginate(tab, progress)

        unique = dedupe_by_slug(entities)
        self.store.save(
            self.storage.apps_checkpoint, [e.to_checkpoint() for e in unique]
        )
        progress.entities = unique
        progress.next_url = None
        progress.complete = True
        self._save_progress(progress)

        summary = ", ".join(f"{k}={v}" for k, v in sorted(self.strategies.items()))
        logger.info(
            f"Discovered {len(unique)} apps"
            + (f" (extraction tiers: {summary})" if summary else "")
        )
        return unique

    async def _paginate(
        self, tab: PageHandle, progress: DiscoveryProgress
    ) -> list[Entity]:
        config = self.config
        url = progress.next_url or config.search_url()
        accumulated = list(progress.entities)
        seen = {e.slug for e in accumulated}
        visited = set(progress.visited)
        page_num = progress.page

        while True:
            if page_num >= config.max_pages:
                logger.warning(
                    f"Stopping discovery at the {config.max_pages}-page limit"
                )
                break
            if url in visited:
                logger.warning(f"Next page {url} was already visited; stopping")
                break

            page_num += 1
            visited.add(url)
            logger.info(f"Listing page {page_num}: {url}")
            snapshot = await with_retry(
                partial(tab.fetch, url),
                config.retry.max_attempts,
                config.retry.base_delay_ms,
                retry_on=(NavigationError,),
                description=f"listing page {page_num}",
            )
            await throttled_delay(config.delay.min_ms, config.delay.max_ms)

            extraction = self.extractor.extract_entities(snapshot)
            self.strategies[extraction.strategy] += 1
            kept = self.filter_entities(extraction.entities)
            new_count = merge_new(accumulated, seen, kept)
            logger.info(
                f"  Page {page_num}: {len(extraction.entities)} candidates via "
                f"'{extraction.strategy}', {len(kept)} kept, {new_count} new "
                f"(total: {len(accumulated)})"
            )

            next_url = self.extractor.find_next_page(snapshot)
            stop = next_url is None or (page_num > 1 and new_count == 0)

            progress.page = page_num
            progress.entities = accumulated
            progress.visited = sorted(visited)
            progress.next_url = None if stop else next_url
            self._save_progress(progress)

            if stop:
                break
            url = next_url

        return accumulated
