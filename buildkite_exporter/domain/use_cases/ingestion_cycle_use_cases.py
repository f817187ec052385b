"""
One polling pass over the CI provider's build history.

A cycle loads the processed-build cache, pages through every pipeline's builds that finished
since that pipeline's watermark, claims and exports the builds it has not seen before, waits for
all exports, then persists the cache and returns the advanced watermarks.
"""

import asyncio
import functools
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import aiohttp
from buildkite_exporter.core.loggers import logger_name, make_logger
from buildkite_exporter.domain.entities import (
    TERMINAL_BUILD_STATES,
    BuildIdCache,
    BuildRecord,
    CycleContext,
    CycleResult,
)
from buildkite_exporter.domain.exceptions import (
    BuildListingException,
    BuildListingFailedException,
)
from buildkite_exporter.domain.gateways import BuildListingGateway, BuildListPage, SpanExportGateway
from buildkite_exporter.domain.repositories import BuildIdCacheRepository
from buildkite_exporter.domain.services.span_builder import build_span
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = make_logger(logger_name())

PAGE_RETRY_MAX_WAIT_SECONDS = 60


@dataclass
class IngestionSettings:
    pipelines: List[str]
    retention: timedelta
    page_size: int = 100
    max_concurrent_builds: int = 16
    max_page_attempts: int = 10
    # Multiplier for the exponential backoff between page attempts, in seconds.
    retry_backoff_multiplier: float = 1.0


class IngestionCycleUseCase:
    def __init__(
        self,
        build_listing_gateway: BuildListingGateway,
        span_export_gateway: SpanExportGateway,
        build_id_cache_repository: BuildIdCacheRepository,
        settings: IngestionSettings,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.build_listing_gateway = build_listing_gateway
        self.span_export_gateway = span_export_gateway
        self.build_id_cache_repository = build_id_cache_repository
        self.settings = settings
        self.clock = clock

    async def run_cycle(self, context: CycleContext) -> CycleResult:
        """
        Runs exactly one pass and returns once every export it started has completed.

        The query window of each pipeline never starts before the retention floor, which is also
        the eviction cutoff of the cache. A build evicted from the cache can therefore never be
        listed again.

        Raises:
            BuildIdCacheUnavailableException: the cache cannot be loaded or saved.
            BuildListingFailedException: a page could not be fetched. Builds dispatched so far are
                still exported and cached, but the watermarks are not advanced. Any other
                exception raised while listing is handled the same way.
        """
        cache = self.build_id_cache_repository.load()
        logger.info(f"Loaded build id cache with {len(cache)} entries")

        retention_floor = self.clock() - self.settings.retention
        result = CycleResult(context=context)
        semaphore = asyncio.Semaphore(self.settings.max_concurrent_builds)
        workers: Dict[str, "asyncio.Task[None]"] = {}
        candidates: Dict[str, datetime] = {}

        try:
            for pipeline in self.settings.pipelines:
                finished_after = max(context.last_finished_at(pipeline), retention_floor)
                candidate = await self._process_pipeline(
                    pipeline, finished_after, cache, semaphore, workers, result
                )
                if candidate is not None:
                    candidates[pipeline] = candidate
        except Exception:
            # Builds dispatched before the failure are exported and stay cached, but the
            # watermarks stay where they were so the next cycle covers the same window again.
            await self._join(workers)
            self._persist(cache, retention_floor)
            raise

        result.worker_failures = await self._join(workers)
        self._persist(cache, retention_floor)

        for pipeline, candidate in candidates.items():
            context = context.advance(pipeline, candidate)
        result.context = context

        logger.info(
            f"Cycle done: {result.pages_fetched} pages, {result.builds_seen} builds seen, "
            f"{result.builds_dispatched} exported, {result.builds_skipped_cached} already cached, "
            f"{result.builds_deferred_incomplete} incomplete, {result.worker_failures} failed"
        )
        return result

    def _persist(self, cache: BuildIdCache, retention_floor: datetime) -> None:
        evicted = cache.evict_finished_before(retention_floor)
        if evicted:
            logger.info(f"Evicted {evicted} builds older than the retention window from the cache")
        self.build_id_cache_repository.save(cache)

    async def _process_pipeline(
        self,
        pipeline: str,
        finished_after: datetime,
        cache: BuildIdCache,
        semaphore: asyncio.Semaphore,
        workers: Dict[str, "asyncio.Task[None]"],
        result: CycleResult,
    ) -> Optional[datetime]:
        latest_finished_at: Optional[datetime] = None

        page: Optional[int] = 1
        while page:
            build_page = await self._fetch_page(pipeline, finished_after, page)
            result.pages_fetched += 1

            for build in build_page.builds:
                result.builds_seen += 1
                if not build.is_ingestible:
                    # Not cached, so a later cycle picks it up once it has both timestamps.
                    logger.debug(f"Deferring build {build.id}: not started or not finished")
                    result.builds_deferred_incomplete += 1
                    continue
                if build.id in cache:
                    logger.debug(f"Skipping build: {build.id}")
                    result.builds_skipped_cached += 1
                    continue

                # Claim before dispatching so a later page cannot dispatch it again.
                cache.claim(build.id, build.finished_at)
                if latest_finished_at is None or build.finished_at > latest_finished_at:
                    latest_finished_at = build.finished_at

                workers[build.id] = asyncio.create_task(self._export_build(build, semaphore))
                result.builds_dispatched += 1

            page = build_page.next_page if build_page.has_next_page else None

        return latest_finished_at

    async def _fetch_page(
        self, pipeline: str, finished_after: datetime, page: int
    ) -> BuildListPage:
        logger.info(f"Listing builds of pipeline {pipeline} on page {page}")
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.settings.max_page_attempts),
                retry=retry_if_exception_type((BuildListingException, aiohttp.ClientError)),
                wait=wait_exponential(
                    multiplier=self.settings.retry_backoff_multiplier,
                    max=PAGE_RETRY_MAX_WAIT_SECONDS,
                ),
                before_sleep=lambda retry_state: logger.warning(
                    f"Issues calling Buildkite API for {pipeline} page {page}: "
                    f"{retry_state.outcome.exception()}"
                ),
            ):
                with attempt:
                    return await self.build_listing_gateway.list_builds(
                        pipeline=pipeline,
                        finished_after=finished_after,
                        states=TERMINAL_BUILD_STATES,
                        page=page,
                        page_size=self.settings.page_size,
                    )
        except RetryError as e:
            raise BuildListingFailedException(
                f"Could not list page {page} of pipeline {pipeline} after "
                f"{self.settings.max_page_attempts} attempts"
            ) from e.last_attempt.exception()

        # Never reached because tenacity should throw a RetryError if we exit the for loop.
        # This is for mypy.
        raise BuildListingFailedException(f"Could not list page {page} of pipeline {pipeline}")

    async def _export_build(self, build: BuildRecord, semaphore: asyncio.Semaphore) -> None:
        async with semaphore:
            logger.info(f"Processing build {build.number} finished at {build.finished_at}")
            span = build_span(build)
            logger.debug(f"Exporting {span.span_count()} spans for build {build.number}")
            # Span export is blocking SDK work, keep it off the event loop.
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None, functools.partial(self.span_export_gateway.export, span)
            )

    async def _join(self, workers: Dict[str, "asyncio.Task[None]"]) -> int:
        if not workers:
            return 0
        outcomes = await asyncio.gather(*workers.values(), return_exceptions=True)
        failures = 0
        for build_id, outcome in zip(workers, outcomes):
            if isinstance(outcome, BaseException):
                failures += 1
                logger.error(f"Failed to export build {build_id}", exc_info=outcome)
        return failures
