import threading
import time
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Collection, DefaultDict, Dict, List, Optional, Set, Tuple

import pytest
from buildkite_exporter.domain.entities import (
    AgentRecord,
    BuildIdCache,
    BuildRecord,
    BuildState,
    CachedBuild,
    CycleContext,
    JobRecord,
    SpanSpec,
)
from buildkite_exporter.domain.exceptions import BuildListingException
from buildkite_exporter.domain.gateways import BuildListingGateway, BuildListPage, SpanExportGateway
from buildkite_exporter.domain.repositories import BuildIdCacheRepository
from buildkite_exporter.domain.use_cases.ingestion_cycle_use_cases import (
    IngestionCycleUseCase,
    IngestionSettings,
)

T0 = datetime(2026, 10, 1, 12, 0, 0, tzinfo=timezone.utc)
NOW = T0 + timedelta(days=1)
RETENTION = timedelta(days=60)
PIPELINE = "test-pipeline"


def make_job(
    name: Optional[str] = "test-job",
    state: Optional[str] = "passed",
    started_at: Optional[datetime] = T0 + timedelta(minutes=1),
    finished_at: Optional[datetime] = T0 + timedelta(minutes=9),
    **kwargs,
) -> JobRecord:
    return JobRecord(
        name=name, state=state, started_at=started_at, finished_at=finished_at, **kwargs
    )


def make_build(
    build_id: str = "b1",
    number: int = 1,
    state: Optional[str] = "passed",
    started_at: Optional[datetime] = T0,
    finished_at: Optional[datetime] = T0 + timedelta(minutes=10),
    jobs: Optional[List[JobRecord]] = None,
    **kwargs,
) -> BuildRecord:
    return BuildRecord(
        id=build_id,
        number=number,
        state=state,
        started_at=started_at,
        finished_at=finished_at,
        jobs=jobs if jobs is not None else [make_job()],
        **kwargs,
    )


class FakeBuildListingGateway(BuildListingGateway):
    def __init__(self, filter_finished_after: bool = False):
        self.pages: Dict[Tuple[str, int], BuildListPage] = {}
        self.failures_remaining: DefaultDict[Tuple[str, int], int] = defaultdict(int)
        self.calls: List[Tuple[str, datetime, int]] = []
        self.requested_states: List[Set[BuildState]] = []
        self.token_verified = False
        # Like the real API, only return builds that finished at or after `finished_after`.
        self.filter_finished_after = filter_finished_after

    def add_page(
        self,
        builds: List[BuildRecord],
        page: int = 1,
        next_page: Optional[int] = None,
        pipeline: str = PIPELINE,
    ) -> None:
        self.pages[(pipeline, page)] = BuildListPage(builds=builds, next_page=next_page)

    def fail_page(self, page: int, times: int, pipeline: str = PIPELINE) -> None:
        self.failures_remaining[(pipeline, page)] = times

    def pages_requested(self) -> List[int]:
        return [page for _, _, page in self.calls]

    async def list_builds(
        self,
        pipeline: str,
        finished_after: datetime,
        states: Collection[BuildState],
        page: int,
        page_size: int,
    ) -> BuildListPage:
        self.calls.append((pipeline, finished_after, page))
        self.requested_states.append(set(states))
        if self.failures_remaining[(pipeline, page)] > 0:
            self.failures_remaining[(pipeline, page)] -= 1
            raise BuildListingException(status_code=500, content=b"internal error")
        build_page = self.pages.get((pipeline, page), BuildListPage())
        if not self.filter_finished_after:
            return build_page
        builds = [
            build
            for build in build_page.builds
            if build.finished_at is None or build.finished_at >= finished_after
        ]
        return BuildListPage(builds=builds, next_page=build_page.next_page)

    async def verify_token(self) -> None:
        self.token_verified = True


class FakeSpanExportGateway(SpanExportGateway):
    def __init__(self, export_seconds: float = 0.0, failing_span_names: Collection[str] = ()):
        self.exported: List[SpanSpec] = []
        self.export_seconds = export_seconds
        self.failing_span_names = set(failing_span_names)
        self.active = 0
        self.max_active = 0
        self.is_shutdown = False
        self._lock = threading.Lock()

    def exported_names(self) -> List[str]:
        return sorted(span.name for span in self.exported)

    def export(self, span: SpanSpec) -> None:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.export_seconds:
                time.sleep(self.export_seconds)
            if span.name in self.failing_span_names:
                raise RuntimeError(f"export of {span.name} failed")
            with self._lock:
                self.exported.append(span)
        finally:
            with self._lock:
                self.active -= 1

    def shutdown(self) -> None:
        self.is_shutdown = True


class FakeBuildIdCacheRepository(BuildIdCacheRepository):
    def __init__(self, entries: Optional[List[CachedBuild]] = None):
        self.entries: List[CachedBuild] = list(entries or [])
        self.load_count = 0
        self.save_count = 0

    def ids(self) -> Set[str]:
        return {entry.id for entry in self.entries}

    def load(self) -> BuildIdCache:
        self.load_count += 1
        return BuildIdCache.from_entries(self.entries)

    def save(self, cache: BuildIdCache) -> None:
        self.save_count += 1
        self.entries = list(cache)


@pytest.fixture
def fake_build_listing_gateway() -> FakeBuildListingGateway:
    return FakeBuildListingGateway()


@pytest.fixture
def fake_span_export_gateway() -> FakeSpanExportGateway:
    return FakeSpanExportGateway()


@pytest.fixture
def fake_build_id_cache_repository() -> FakeBuildIdCacheRepository:
    return FakeBuildIdCacheRepository()


@pytest.fixture
def ingestion_settings() -> IngestionSettings:
    return IngestionSettings(
        pipelines=[PIPELINE],
        retention=RETENTION,
        page_size=2,
        max_concurrent_builds=4,
        max_page_attempts=3,
        retry_backoff_multiplier=0,
    )


@pytest.fixture
def initial_context() -> CycleContext:
    return CycleContext.initial(RETENTION, now=NOW)


@pytest.fixture
def ingestion_cycle_use_case(
    fake_build_listing_gateway: FakeBuildListingGateway,
    fake_span_export_gateway: FakeSpanExportGateway,
    fake_build_id_cache_repository: FakeBuildIdCacheRepository,
    ingestion_settings: IngestionSettings,
) -> IngestionCycleUseCase:
    return IngestionCycleUseCase(
        build_listing_gateway=fake_build_listing_gateway,
        span_export_gateway=fake_span_export_gateway,
        build_id_cache_repository=fake_build_id_cache_repository,
        settings=ingestion_settings,
        clock=lambda: NOW,
    )


@pytest.fixture
def agent_record() -> AgentRecord:
    return AgentRecord(
        name="agent-1",
        hostname="ci-host-1",
        ip_address="10.0.0.1",
        version="3.50.0",
        metadata=["queue=default", "malformed", "a=b=c"],
    )
