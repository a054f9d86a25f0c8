"""Phase 2: collect reviews for every discovered app.

Per app, page 1 is fetched first. The total review count read from it
bounds the page count when it is available; otherwise a large backstop
applies. Whatever the count says, an empty page or a missing "next" link
ends the app's pagination, since the count hint can be stale.

Across apps, progress is checkpointed after each completed app, in this
order:

1. ``reviews/<slug>.json`` (the app's reviews)
2. the combined review checkpoint
3. the scraped-slug set

A slug is only recorded as scraped once its data is on disk, so a crash at
any point leaves the app looking unscraped and it is collected again on the
next run. At most the in-flight app's work is lost.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from functools import partial

from pydantic import TypeAdapter, ValidationError

from gleaner.checkpoint import CheckpointStore
from gleaner.common.exceptions import CheckpointIOError, NavigationError
from gleaner.config import CollectionConfig, StorageConfig
from gleaner.data_types import Entity, Record, RenderedPage
from gleaner.extractor import Extractor
from gleaner.output import flatten
from gleaner.renderer.base import PageHandle, PageRenderer, RenderSession
from gleaner.throttle import throttled_delay, with_retry

logger = logging.getLogger(__name__)

_record_list = TypeAdapter(list[Record])


class StopReason(str, Enum):
    EMPTY_PAGE = "empty_page"
    PAGE_LIMIT = "page_limit"
    NO_NEXT_LINK = "no_next_link"
    BACKSTOP = "backstop"


@dataclass
class EntityProgress:
    """Bookkeeping for one app's pagination run."""

    entity: Entity
    total_count: int | None = None
    total_pages: int | None = None
    pages_fetched: int = 0
    stop_reason: StopReason | None = None
    records: list[Record] = field(default_factory=list)


def total_pages_for(total_count: int, per_page: int) -> int:
    """Pages needed to show ``total_count`` records, ``per_page`` at a time."""
    return math.ceil(total_count / per_page)


class CollectionScraper:
    """Collects reviews per app and checkpoints after every app.

    Example:
        scraper = CollectionScraper(config.collection, config.storage, extractor, store)
        reviews = await scraper.scrape_all(apps, renderer, resume=True)
    """

    def __init__(
        self,
        config: CollectionConfig,
        storage: StorageConfig,
        extractor: Extractor,
        store: CheckpointStore,
    ) -> None:
        self.config = config
        self.storage = storage
        self.extractor = extractor
        self.store = store
        self.failed: list[str] = []

    # ── Checkpoints ─────────────────────────────────────────────

    def load_scraped_slugs(self) -> list[str]:
        raw = self.store.load(self.storage.scraped_slugs_checkpoint, [])
        if not isinstance(raw, list):
            return []
        return [str(slug) for slug in raw]

    def load_combined(self) -> list[Record]:
        """Reviews from the combined checkpoint, or an empty list.

        Raises:
            CheckpointIOError: If the checkpoint holds malformed reviews.
        """
        raw = self.store.load(self.storage.combined_checkpoint, [])
        if not isinstance(raw, list):
            return []
        try:
            return _record_list.validate_python(raw)
        except ValidationError as e:
            raise CheckpointIOError(
                self.store.path(self.storage.combined_checkpoint),
                f"invalid review entries: {e.error_count()} errors",
            ) from e

    def _save_records(self, name: str, records: Iterable[Record]) -> None:
        self.store.save(name, [r.to_row() for r in records])

    # ── One app ─────────────────────────────────────────────────

    async def _fetch(
        self, tab: PageHandle, url: str, label: str
    ) -> RenderedPage:
        retry = self.config.retry
        snapshot = await with_retry(
            partial(tab.fetch, url),
            retry.max_attempts,
            retry.base_delay_ms,
            retry_on=(NavigationError,),
            description=label,
        )
        await throttled_delay(self.config.delay.min_ms, self.config.delay.max_ms)
        return snapshot

    async def scrape_entity(
        self, session: RenderSession, entity: Entity
    ) -> list[Record]:
        """Collect every review page for one app.

        The page handle is scoped to this call and released whether or not
        pagination succeeds.

        Raises:
            NavigationError: When a page still fails after all retries.
        """
        progress = EntityProgress(entity=entity)
        async with session.page() as tab:
            await self._paginate(tab, progress)
        return progress.records

    async def _paginate(
        self, tab: PageHandle, progress: EntityProgress
    ) -> None:
        config = self.config
        entity = progress.entity

        url = config.reviews_url(entity.slug)
        logger.info(f"  Opening {entity.slug} reviews: {url}")
        snapshot = await self._fetch(tab, url, f"{entity.slug} page 1")

        progress.total_count = self.extractor.extract_total_count(snapshot)
        if progress.total_count is not None:
            progress.total_pages = total_pages_for(
                progress.total_count, config.reviews_per_page
            )
            logger.info(
                f"  Total reviews: {progress.total_count}, "
                f"pages: ~{progress.total_pages}"
            )
        else:
            logger.info(
                f"  Total reviews unknown; capping at {config.max_pages} pages"
            )

        max_pages = (
            progress.total_pages
            if progress.total_pages is not None
            else config.max_pages
        )
        page_num = 1

        while True:
            if page_num > 1:
                page_url = config.reviews_page_url(entity.slug, page_num)
                snapshot = await self._fetch(
                    tab, page_url, f"{entity.slug} page {page_num}"
                )

            batch = self.extractor.extract_records(snapshot, entity)
            progress.records.extend(batch)
            progress.pages_fetched = page_num
            logger.info(
                f"  Page {page_num}: {len(batch)} reviews "
                f"(total: {len(progress.records)})"
            )

            if not batch:
                progress.stop_reason = StopReason.EMPTY_PAGE
                break
            if progress.total_pages is not None and page_num >= progress.total_pages:
                progress.stop_reason = StopReason.PAGE_LIMIT
                break
            if self.extractor.find_next_page(snapshot) is None:
                progress.stop_reason = StopReason.NO_NEXT_LINK
                break
            if page_num >= max_pages:
                progress.stop_reason = StopReason.BACKSTOP
                logger.warning(
                    f"  {entity.slug}: stopped at the {max_pages}-page backstop"
                )
                break
            page_num += 1

        logger.debug(
            f"  {entity.slug}: done after {progress.pages_fetched} pages "
            f"({progress.stop_reason.value})"
        )

    # ── All apps ────────────────────────────────────────────────

    def pending(
        self,
        entities: Iterable[Entity],
        scraped: set[str],
        rescrape: Iterable[str] = (),
    ) -> list[Entity]:
        """Entities still to collect, in input order."""
        forced = set(rescrape)
        return [e for e in entities if e.slug in forced or e.slug not in scraped]

    async def scrape_all(
        self,
        entities: list[Entity],
        renderer: PageRenderer,
        *,
        resume: bool = True,
        rescrape: Iterable[str] = (),
    ) -> list[Record]:
        """Collect reviews for every app not yet scraped.

        Args:
            entities: Apps from discovery.
            renderer: Page renderer; opened once for the whole batch, and
                not at all when nothing is left to collect.
            resume: Honour the scraped-slug set and combined checkpoint.
            rescrape: Slugs to collect again even if already scraped.

        Returns:
            All reviews, grouped by app in checkpoint-then-run order.
        """
        scraped_list = self.load_scraped_slugs() if resume else []
        scraped = set(scraped_list)
        to_process = self.pending(entities, scraped, rescrape)

        if not to_process and entities:
            logger.info(
                "All apps already scraped (resume). Loading combined reviews "
                "from checkpoint."
            )
            return self.load_combined()

        by_slug: dict[str, list[Record]] = {}
        if resume:
            for record in self.load_combined():
                by_slug.setdefault(record.entity_slug, []).append(record)
        self.failed = []

        # The failed list always describes the latest run, aborted or not.
        try:
            async with renderer.open() as session:
                for i, entity in enumerate(to_process, start=1):
                    logger.info(
                        f"[{i}/{len(to_process)}] {entity.name} ({entity.slug})"
                    )
                    try:
                        records = await self.scrape_entity(session, entity)
                    except NavigationError as e:
                        if self.config.on_entity_error == "abort":
                            logger.error(f"Aborting run: {entity.slug} failed: {e}")
                            raise
                        logger.error(f"Skipping {entity.slug}: {e}")
                        self.failed.append(entity.slug)
                        self.store.save(
                            self.storage.failed_slugs_checkpoint, self.failed
                        )
                        continue

                    by_slug[entity.slug] = records
                    self._save_records(
                        self.storage.entity_records_name(entity.slug), records
                    )
                    self._save_records(
                        self.storage.combined_checkpoint, flatten(by_slug)
                    )
                    if entity.slug not in scraped:
                        scraped.add(entity.slug)
                        scraped_list.append(entity.slug)
                    self.store.save(
                        self.storage.scraped_slugs_checkpoint, scraped_list
                    )
        finally:
            self.store.save(self.storage.failed_slugs_checkpoint, self.failed)

        if self.failed:
            logger.warning(
                f"{len(self.failed)} apps failed and were left unscraped: "
                f"{', '.join(self.failed)}"
            )
        return flatten(by_slug)
