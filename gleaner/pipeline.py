"""Run-mode orchestration.

A Pipeline wires one GleanerConfig into the components and runs them in
one of three modes:

- ``full``: discover apps, collect their reviews, write the final outputs.
- ``discover``: discovery only.
- ``collect``: collection over the existing discovery checkpoint.

Both phases share one renderer but each opens its own session, and a phase
with nothing left to fetch never opens one. Phases that end up with no apps
raise NoEntitiesError, which the CLI turns into a non-zero exit status.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from gleaner.checkpoint import CheckpointStore
from gleaner.collection import CollectionScraper
from gleaner.common.exceptions import NoEntitiesError
from gleaner.config import GleanerConfig
from gleaner.data_types import Entity, Record
from gleaner.discovery import EntityDiscoverer
from gleaner.extractor import AppStoreExtractor, Extractor
from gleaner.output import write_outputs
from gleaner.renderer.base import PageRenderer
from gleaner.renderer.playwright_renderer import PlaywrightRenderer

logger = logging.getLogger(__name__)

RunMode = Literal["full", "discover", "collect"]


@dataclass
class RunResult:
    """What one run produced."""

    mode: str
    entities: list[Entity] = field(default_factory=list)
    records: list[Record] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    outputs: tuple[Path, Path] | None = None


@dataclass
class PipelineStatus:
    """Snapshot of the checkpoints in a data directory."""

    data_dir: Path
    apps_discovered: int
    discovery_complete: bool
    discovery_page: int
    scraped: int
    failed: list[str]
    combined_records: int

    @property
    def remaining(self) -> int:
        return max(self.apps_discovered - self.scraped, 0)


class Pipeline:
    """Discovery, collection and output over one data directory.

    Example:
        pipeline = Pipeline(load_config(path))
        result = asyncio.run(pipeline.run("full"))
    """

    def __init__(
        self,
        config: GleanerConfig | None = None,
        renderer: PageRenderer | None = None,
        extractor: Extractor | None = None,
    ) -> None:
        self.config = config or GleanerConfig()
        self.renderer = renderer or PlaywrightRenderer(self.config.renderer)
        self.extractor = extractor or AppStoreExtractor(self.config.extractor)
        self.store = CheckpointStore(self.config.storage.data_dir)
        self.discoverer = EntityDiscoverer(
            self.config.discovery, self.config.storage, self.extractor, self.store
        )
        self.scraper = CollectionScraper(
            self.config.collection, self.config.storage, self.extractor, self.store
        )

    async def run(
        self,
        mode: RunMode = "full",
        *,
        resume: bool = True,
        rescrape: Iterable[str] = (),
    ) -> RunResult:
        """Run the pipeline in the given mode.

        Args:
            mode: "full", "discover" or "collect".
            resume: Honour existing checkpoints.
            rescrape: Slugs to collect again even if already scraped.

        Raises:
            NoEntitiesError: Discovery found no apps, or collect mode found
                no discovery checkpoint.
            NavigationError: An app failed under the "abort" policy.
            CheckpointIOError: A checkpoint could not be written.
        """
        if mode not in ("full", "discover", "collect"):
            raise ValueError(f"Unknown run mode: {mode!r}")

        logger.info(f"Starting {mode} run in {self.config.storage.data_dir}")
        result = RunResult(mode=mode)

        if mode == "collect":
            result.entities = self.discoverer.load_checkpoint()
            if not result.entities:
                raise NoEntitiesError(
                    "No apps to collect; run discovery first "
                    f"({self.store.path(self.config.storage.apps_checkpoint)})"
                )
        else:
            result.entities = await self.discoverer.discover(
                self.renderer, resume=resume
            )
            if not result.entities:
                raise NoEntitiesError("No apps found. Check the selectors.")

        logger.info(f"Total apps: {len(result.entities)}")
        if mode == "discover":
            return result

        result.records = await self.scraper.scrape_all(
            result.entities, self.renderer, resume=resume, rescrape=rescrape
        )
        result.failed = list(self.scraper.failed)
        result.outputs = self.write(result.records)
        logger.info(f"Done! Total reviews: {len(result.records)}")
        return result

    def write(self, records: list[Record]) -> tuple[Path, Path] | None:
        """Write the final CSV and JSON, unless there is nothing to write."""
        if not records:
            logger.warning("No reviews to write.")
            return None
        return write_outputs(records, self.config.storage)

    def export(self) -> tuple[Path, Path] | None:
        """Rebuild the final outputs from the combined checkpoint alone."""
        records = self.scraper.load_combined()
        logger.info(f"Loaded {len(records)} reviews from checkpoint")
        return self.write(records)

    def status(self) -> PipelineStatus:
        storage = self.config.storage
        apps = self.discoverer.load_checkpoint()
        progress = self.discoverer.load_progress()
        failed = self.store.load(storage.failed_slugs_checkpoint, [])
        return PipelineStatus(
            data_dir=Path(storage.data_dir),
            apps_discovered=len(apps) or len(progress.entities),
            discovery_complete=bool(apps) or progress.complete,
            discovery_page=progress.page,
            scraped=len(self.scraper.load_scraped_slugs()),
            failed=[str(s) for s in failed] if isinstance(failed, list) else [],
            combined_records=len(self.scraper.load_combined()),
        )
