from typing import Sequence

from .build_entity import TERMINAL_BUILD_STATES, AgentRecord, BuildRecord, BuildState, JobRecord
from .cycle_entity import BuildIdCache, CachedBuild, CycleContext, CycleResult
from .span_entity import AttributeValue, SpanEvent, SpanSpec, SpanStatus, SpanStatusCode

__all__: Sequence[str] = (
    "AgentRecord",
    "AttributeValue",
    "BuildIdCache",
    "BuildRecord",
    "BuildState",
    "CachedBuild",
    "CycleContext",
    "CycleResult",
    "JobRecord",
    "SpanEvent",
    "SpanSpec",
    "SpanStatus",
    "SpanStatusCode",
    "TERMINAL_BUILD_STATES",
)
