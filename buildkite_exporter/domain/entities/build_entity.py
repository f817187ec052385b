from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from buildkite_exporter.common.pydantic_types import BaseModel, Field


class BuildState(str, Enum):
    RUNNING = "running"
    SCHEDULED = "scheduled"
    PASSED = "passed"
    FAILED = "failed"
    BLOCKED = "blocked"
    CANCELED = "canceled"
    CANCELING = "canceling"
    SKIPPED = "skipped"
    NOT_RUN = "not_run"
    FINISHED = "finished"


# Builds in these states will not change any further, so they can be exported and cached.
TERMINAL_BUILD_STATES: FrozenSet[BuildState] = frozenset(
    {BuildState.PASSED, BuildState.FAILED, BuildState.CANCELED, BuildState.SKIPPED}
)


class AgentRecord(BaseModel):
    name: Optional[str] = None
    hostname: Optional[str] = None
    ip_address: Optional[str] = None
    version: Optional[str] = None
    metadata: List[str] = Field(default_factory=list)

    def parsed_metadata(self) -> List[Tuple[str, str]]:
        """
        Agent metadata comes as raw "key=value" strings. Entries without exactly one "=" are
        dropped.
        """
        pairs = []
        for entry in self.metadata:
            tokens = entry.split("=")
            if len(tokens) != 2:
                continue
            pairs.append((tokens[0], tokens[1]))
        return pairs


class JobRecord(BaseModel):
    id: Optional[str] = None
    type: Optional[str] = None
    name: Optional[str] = None
    state: Optional[str] = None
    step_key: Optional[str] = None
    logs_url: Optional[str] = None

    # Causal chain: scheduled <= created <= runnable <= started <= finished
    # reference: https://buildkite.com/docs/apis/rest-api/builds#timestamp-attributes
    created_at: Optional[datetime] = None
    scheduled_at: Optional[datetime] = None
    runnable_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    retries_count: int = Field(default=0, ge=0)
    retried: bool = False
    soft_failed: bool = False
    exit_status: Optional[int] = None
    agent: AgentRecord = Field(default_factory=AgentRecord)

    @property
    def is_ingestible(self) -> bool:
        return self.started_at is not None and self.finished_at is not None

    @property
    def display_name(self) -> str:
        # Waiter and trigger jobs have no name.
        return self.name or self.step_key or self.type or "job"


class BuildRecord(BaseModel):
    id: str
    number: int
    state: Optional[str] = None

    created_at: Optional[datetime] = None
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    commit: Optional[str] = None
    branch: Optional[str] = None
    author_email: Optional[str] = None
    web_url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    jobs: List[JobRecord] = Field(default_factory=list)

    @property
    def is_ingestible(self) -> bool:
        return self.started_at is not None and self.finished_at is not None

    def string_metadata(self) -> Dict[str, str]:
        """
        Build metadata values are untyped upstream. Only string values are kept, everything
        else is dropped rather than coerced.
        """
        return {key: value for key, value in self.metadata.items() if isinstance(value, str)}
