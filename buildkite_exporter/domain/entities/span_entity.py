from datetime import datetime
from enum import Enum
from typing import Dict, List, Union

from buildkite_exporter.common.pydantic_types import BaseModel, ConfigDict, Field

AttributeValue = Union[bool, int, str]


class SpanStatusCode(str, Enum):
    UNSET = "unset"
    OK = "ok"
    ERROR = "error"


class SpanStatus(BaseModel):
    code: SpanStatusCode = SpanStatusCode.UNSET
    message: str = ""


class SpanEvent(BaseModel):
    name: str
    timestamp: datetime


class SpanSpec(BaseModel):
    """
    A finished span, described after the fact. Start and end times are the historical times of the
    build or job, not the time the span is exported.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    start_time: datetime
    end_time: datetime
    events: List[SpanEvent] = Field(default_factory=list)
    attributes: Dict[str, AttributeValue] = Field(default_factory=dict)
    status: SpanStatus = Field(default_factory=SpanStatus)
    children: List["SpanSpec"] = Field(default_factory=list)

    def span_count(self) -> int:
        return 1 + sum(child.span_count() for child in self.children)
