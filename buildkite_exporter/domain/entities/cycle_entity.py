from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, Mapping, Optional

from buildkite_exporter.common.pydantic_types import BaseModel, ConfigDict, Field, field_validator


@dataclass(frozen=True)
class CachedBuild:
    id: str
    finished_at: Optional[datetime] = None


@dataclass
class BuildIdCache:
    """
    The set of build ids that have already been turned into spans.
    """

    entries: Dict[str, CachedBuild] = field(default_factory=dict)

    @classmethod
    def from_entries(cls, entries: Iterable[CachedBuild]) -> "BuildIdCache":
        return cls(entries={entry.id: entry for entry in entries})

    def __contains__(self, build_id: str) -> bool:
        return build_id in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[CachedBuild]:
        return iter(self.entries.values())

    def claim(self, build_id: str, finished_at: Optional[datetime]) -> None:
        self.entries[build_id] = CachedBuild(id=build_id, finished_at=finished_at)

    def evict_finished_before(self, cutoff: datetime) -> int:
        """
        Drops builds that finished before `cutoff`. Entries with an unknown finish time are kept.
        Returns the number of evicted entries.
        """
        expired = [
            entry.id
            for entry in self.entries.values()
            if entry.finished_at is not None and entry.finished_at < cutoff
        ]
        for build_id in expired:
            del self.entries[build_id]
        return len(expired)


class CycleContext(BaseModel):
    """
    Query window state carried from one ingestion cycle to the next.

    Each pipeline has its own "finished after" watermark. Pipelines that have not yet
    processed a build start from `initial_finished_after`. The watermarks are read-only,
    use `advance` to get a context with a moved watermark.
    """

    model_config = ConfigDict(frozen=True)

    initial_finished_after: datetime
    watermarks: Mapping[str, datetime] = Field(default_factory=dict, validate_default=True)

    @field_validator("watermarks", mode="after")
    @classmethod
    def read_only_watermarks(cls, value: Mapping[str, datetime]) -> Mapping[str, datetime]:
        return MappingProxyType(dict(value))

    @classmethod
    def initial(cls, retention: timedelta, now: Optional[datetime] = None) -> "CycleContext":
        # The tracing backend drops data older than its retention window, so there is
        # no point in querying further back than that.
        now = now or datetime.now(timezone.utc)
        return cls(initial_finished_after=now - retention)

    def last_finished_at(self, pipeline: str) -> datetime:
        return self.watermarks.get(pipeline, self.initial_finished_after)

    def advance(self, pipeline: str, candidate: Optional[datetime]) -> "CycleContext":
        if candidate is None or candidate <= self.last_finished_at(pipeline):
            return self
        return CycleContext(
            initial_finished_after=self.initial_finished_after,
            watermarks={**self.watermarks, pipeline: candidate},
        )


class CycleResult(BaseModel):
    context: CycleContext
    pages_fetched: int = 0
    builds_seen: int = 0
    builds_dispatched: int = 0
    builds_skipped_cached: int = 0
    builds_deferred_incomplete: int = 0
    worker_failures: int = 0
