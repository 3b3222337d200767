"""
Dataset Build Orchestrator.

Runs the whole pipeline: catalog -> normalize -> artwork -> compact -> write.

Concurrency model:
- Artwork jobs run as asyncio tasks in one TaskGroup
- A semaphore bounds how MANY jobs are in flight (max_concurrency)
- The shared TokenBucket bounds how FAST requests are issued
- Results are re-sorted by id before compaction, so completion order
  never leaks into the output

INVARIANTS:
1. Only the orchestrator decides success or failure of a run
2. A FatalError cancels every in-flight and queued job
3. On failure no dataset is written or replaced
4. Every run ends with a RunReport, success or not, even on unexpected errors
"""

import asyncio
import logging

import httpx
from tqdm import tqdm

from cardforge.config import Settings
from cardforge.models.card import ArtworkAsset, Card, SkippedArtwork
from cardforge.models.failure import CompactionError, FailureKind, FatalError, PipelineError
from cardforge.models.report import FailureDetail, RunOutcome, RunReport, SkippedItem
from cardforge.services.catalog_cache import CatalogCache
from cardforge.services.compactor import compact, write_artwork_files, write_dataset
from cardforge.services.fetcher import CatalogFetcher, FetchEvent, FetchEventKind
from cardforge.services.image_pipeline import ArtworkCache, ImagePipeline
from cardforge.services.normalizer import normalize
from cardforge.services.rate_limiter import TokenBucket

logger = logging.getLogger(__name__)


class DatasetBuilder:
    """
    Builds the card dataset described by `settings`.

    Pass `client` to reuse an existing httpx client (tests inject one
    routed through respx); otherwise one is created and closed per run.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._client = client
        self._report = RunReport()

    def _on_fetch_event(self, event: FetchEvent) -> None:
        if event.kind == FetchEventKind.REQUEST:
            self._report.requests_issued += 1
        elif event.kind == FetchEventKind.RETRY:
            self._report.retries += 1

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={"User-Agent": self._settings.user_agent},
            timeout=self._settings.request_timeout,
            follow_redirects=True,
        )

    async def run(self, use_cache: bool = True) -> RunReport:
        """
        Run the pipeline once.

        Args:
            use_cache: If False, the catalog is downloaded even when a
                fresh local copy exists

        Returns:
            RunReport; outcome is SUCCESS only if the dataset was written
        """
        self._report = RunReport(output_path=str(self._settings.output_path))
        owns_client = self._client is None
        client = self._client if self._client is not None else self._new_client()

        try:
            await self._build(client, use_cache)
        except PipelineError as e:
            self._report.outcome = RunOutcome.FAILURE
            self._report.failure = FailureDetail.from_error(e)
            logger.error(
                "RUN_FAILED",
                extra={"kind": e.kind.value, "error_message": e.message, "detail": e.detail},
            )
        except Exception as e:
            self._report.outcome = RunOutcome.FAILURE
            self._report.failure = FailureDetail(
                kind=FailureKind.INTERNAL_ERROR,
                message="Dataset build stopped on an unexpected error",
                detail=f"{type(e).__name__}: {e}",
                suggestion="Rerun with -v and report the traceback.",
            )
            logger.exception("RUN_FAILED", extra={"kind": FailureKind.INTERNAL_ERROR.value})
        finally:
            if owns_client:
                await client.aclose()

        return self._report

    async def _build(self, client: httpx.AsyncClient, use_cache: bool) -> None:
        settings = self._settings
        report = self._report

        limiter = TokenBucket(settings.requests_per_second)
        fetcher = CatalogFetcher.from_settings(
            client, limiter, settings, on_event=self._on_fetch_event
        )

        catalog_cache = CatalogCache(
            settings.catalog_cache_path,
            check_interval=settings.version_check_hours * 60 * 60,
        )
        records = await catalog_cache.load(fetcher, use_cache=use_cache)
        report.records_received = len(records)

        result = normalize(records, settings.artwork_url_template)
        report.records_excluded = result.excluded
        report.cards_processed = len(result.cards)
        report.diagnostics = [
            SkippedItem(card_id=d.card_id, reason=f"{d.field}: {d.message}")
            for d in result.diagnostics
        ]

        pipeline = ImagePipeline(
            fetcher,
            ArtworkCache(settings.artwork_cache_dir),
            size=settings.image_size,
            quality=settings.image_quality,
        )
        assets, skipped = await self._process_artwork(pipeline, result.cards)
        report.artwork_downloaded = pipeline.downloads
        report.artwork_cached = pipeline.cache_hits
        report.artwork_skipped = len(skipped)
        report.skipped = [SkippedItem(card_id=s.card_id, reason=s.reason) for s in skipped]

        dataset = compact(result.cards, assets, artwork_mode=settings.artwork_mode)

        output_path = settings.output_path
        try:
            if settings.artwork_mode == "external":
                written = write_artwork_files(output_path.parent, assets.values())
                logger.info("Wrote %d artwork files next to %s", written, output_path)
            report.output_bytes = write_dataset(output_path, dataset)
        except OSError as e:
            raise CompactionError(f"Could not write {output_path}", detail=str(e)) from e

        report.checksum = dataset.checksum_hex
        report.outcome = RunOutcome.SUCCESS
        logger.info(
            "RUN_COMPLETE",
            extra={"cards": dataset.record_count, "checksum": report.checksum},
        )

    async def _process_artwork(
        self, pipeline: ImagePipeline, cards: list[Card]
    ) -> tuple[dict[int, ArtworkAsset], list[SkippedArtwork]]:
        """
        Run one artwork job per card under the concurrency bound.

        Raises:
            FatalError: The first fatal error; all other jobs are cancelled
        """
        semaphore = asyncio.Semaphore(self._settings.max_concurrency)
        results: dict[int, ArtworkAsset | SkippedArtwork] = {}
        progress = tqdm(
            total=len(cards),
            desc="Artwork",
            unit="card",
            disable=not self._settings.show_progress,
        )

        async def job(card: Card) -> None:
            async with semaphore:
                results[card.id] = await pipeline.process(card)
            progress.update(1)

        try:
            async with asyncio.TaskGroup() as group:
                for card in cards:
                    group.create_task(job(card))
        except BaseExceptionGroup as errors:
            fatal = errors.subgroup(FatalError)
            if fatal is None:
                raise
            raise fatal.exceptions[0] from errors
        finally:
            progress.close()

        assets: dict[int, ArtworkAsset] = {}
        skipped: list[SkippedArtwork] = []
        for card_id in sorted(results):
            outcome = results[card_id]
            if isinstance(outcome, ArtworkAsset):
                assets[card_id] = outcome
            else:
                skipped.append(outcome)
        return assets, skipped
