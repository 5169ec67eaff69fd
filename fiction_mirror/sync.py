"""Mirror run: TOC, reconcile, fetch planned chapters, commit."""
import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional

import httpx

from fiction_mirror.config import Settings
from fiction_mirror.crawler import BaseSpider, SpiderRegistry
from fiction_mirror.exceptions import ExtractError, NetworkError
from fiction_mirror.fetcher import RateLimitedFetcher
from fiction_mirror.models import (
    ArchiveManifest,
    ChapterContent,
    ChapterFailure,
    ChapterRef,
    FailureKind,
    Fiction,
    SyncReport,
)
from fiction_mirror.normalizer import SlugGenerator
from fiction_mirror.reconciler import ReconcilePlan, reconcile
from fiction_mirror.storage import ArchiveStore

logger = logging.getLogger(__name__)


class ManifestAccumulator:
    """
    The manifest being built by the current run.

    Chapter tasks finish in any order; each hands its result here and the
    chapter file plus a fresh manifest are committed under one lock, so the
    archive only ever moves forward one whole chapter at a time.
    """

    def __init__(self, store: ArchiveStore, plan: ReconcilePlan):
        self.store = store
        self.plan = plan
        self.results: Dict[str, ChapterContent] = {}
        self._lock = asyncio.Lock()
        self._backed_up = False

    async def commit(self) -> None:
        """Commit the manifest as it stands."""
        async with self._lock:
            self._save()

    async def commit_chapter(self, content: ChapterContent) -> None:
        """Persist one extracted chapter, then the manifest including it."""
        async with self._lock:
            slot = self.plan.slot(content.chapter_id)
            self.store.write_chapter(slot.filename, content.content)
            self.results[content.chapter_id] = content
            self._save()

    def manifest(self) -> ArchiveManifest:
        return self.plan.assemble(self.results)

    def _save(self) -> None:
        if not self._backed_up:
            self.store.backup_manifest()
            self._backed_up = True
        self.store.save_manifest(self.manifest())


class FictionSync:
    """
    One mirror run for one fiction.

    Fails fast on anything TOC-wide (network, layout, archive I/O) and
    tolerates failures of individual chapters, which are reported.
    """

    def __init__(
        self,
        url: str,
        settings: Settings,
        output_dir: Optional[Path] = None,
        incremental: bool = False,
        spider: Optional[BaseSpider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.settings = settings
        self.output_dir = Path(output_dir) if output_dir is not None else None
        self.incremental = incremental
        self.spider = spider
        self.transport = transport

    def resolve_output_dir(self, fiction: Fiction) -> Path:
        if self.output_dir is not None:
            return self.output_dir
        return Path(SlugGenerator.generate_slug(fiction.title))

    async def run(self) -> SyncReport:
        """
        Execute the run.

        Returns:
            Report of what was fetched, skipped, orphaned and what failed

        Raises:
            ConfigError: invalid settings or unsupported URL, before any request
            NetworkError: TOC could not be fetched
            LayoutChangedError: TOC structure not recognised
            PersistenceError: archive could not be read or written
        """
        self.settings.validate_limits()
        spider = self.spider or SpiderRegistry.create(self.url)

        async with RateLimitedFetcher.from_settings(self.settings, self.transport) as fetcher:
            toc_body = await fetcher.fetch(self.url)
            fiction, refs = spider.parse_toc(self.url, toc_body)

            output_dir = self.resolve_output_dir(fiction)
            logger.info(f"Saving to {output_dir}")
            store = ArchiveStore(output_dir, self.settings.manifest_name)
            prior = store.load_manifest()
            intact = store.intact_chapters(prior) if self.incremental and prior else None

            plan = reconcile(prior, refs, fiction, self.incremental, intact)
            accumulator = ManifestAccumulator(store, plan)
            await accumulator.commit()

            to_fetch = plan.to_fetch
            tasks = [
                asyncio.create_task(
                    self._mirror_chapter(fetcher, spider, accumulator, fiction, ref, index, len(to_fetch))
                )
                for index, ref in enumerate(to_fetch, start=1)
            ]
            try:
                outcomes = await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

        failures: List[ChapterFailure] = [f for f in outcomes if f is not None]
        report = SyncReport(
            fiction=fiction,
            output_dir=str(output_dir),
            planned=[ref.chapter_id for ref in to_fetch],
            fetched=[ref.chapter_id for ref in to_fetch if ref.chapter_id in accumulator.results],
            skipped=plan.skipped,
            renamed=plan.renamed,
            orphaned=plan.orphaned,
            failures=failures,
        )
        log_summary(report)
        return report

    async def _mirror_chapter(
        self,
        fetcher: RateLimitedFetcher,
        spider: BaseSpider,
        accumulator: ManifestAccumulator,
        fiction: Fiction,
        ref: ChapterRef,
        index: int,
        total: int,
    ) -> Optional[ChapterFailure]:
        logger.info(f"Downloading {index}/{total}: {ref.url}")
        try:
            body = await fetcher.fetch(ref.url)
            content = spider.parse_chapter(ref, body, fiction)
        except NetworkError as e:
            logger.error(f"Chapter {ref.chapter_id} '{ref.title}' failed: {e}")
            return ChapterFailure(ref=ref, kind=FailureKind.NETWORK, reason=str(e))
        except ExtractError as e:
            logger.error(f"Chapter {ref.chapter_id} '{ref.title}' could not be extracted: {e}")
            return ChapterFailure(ref=ref, kind=FailureKind.EXTRACT, reason=str(e))

        await accumulator.commit_chapter(content)
        words = spider.cleaner.count_words(content.content)
        logger.info(f"Saved {index}/{total}: '{content.title}' ({words} words)")
        return None


def log_summary(report: SyncReport) -> None:
    """Log the end-of-run summary, one line per failed chapter."""
    logger.info("=" * 60)
    logger.info(f"Finished '{report.fiction.title}' -> {report.output_dir}")
    logger.info(f"  - Fetched: {len(report.fetched)}/{len(report.planned)}")
    logger.info(f"  - Up to date: {len(report.skipped)}")
    if report.renamed:
        logger.info(f"  - Renamed: {len(report.renamed)}")
    if report.orphaned:
        logger.info(f"  - Newly orphaned: {len(report.orphaned)}")
    if report.failures:
        logger.error(f"  - Failed: {len(report.failures)}")
        for failure in report.failures:
            logger.error(
                f"    {failure.ref.order + 1}. {failure.ref.title} [{failure.kind.value}]: {failure.reason}"
            )
    logger.info("=" * 60)


async def sync_fiction(
    url: str,
    settings: Settings,
    output_dir: Optional[Path] = None,
    incremental: bool = False,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SyncReport:
    """Convenience wrapper around :class:`FictionSync`."""
    return await FictionSync(
        url,
        settings,
        output_dir=output_dir,
        incremental=incremental,
        transport=transport,
    ).run()
