"""
Pure mapping from Buildkite build records to span trees.

A build becomes a root span named after its build number, and each of its jobs becomes a child
span. Both use the historical start and finish times of the record, so the resulting trace looks
the same no matter when, or in which order, it is exported.
"""

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from buildkite_exporter.domain.entities import (
    AttributeValue,
    BuildRecord,
    BuildState,
    JobRecord,
    SpanEvent,
    SpanSpec,
    SpanStatus,
    SpanStatusCode,
)
from buildkite_exporter.domain.exceptions import BuildNotIngestibleException

_OK_STATES = frozenset({BuildState.PASSED.value, BuildState.FINISHED.value})


def span_status(state: Optional[str]) -> SpanStatus:
    if state == BuildState.FAILED.value:
        code = SpanStatusCode.ERROR
    elif state in _OK_STATES:
        code = SpanStatusCode.OK
    else:
        code = SpanStatusCode.UNSET
    return SpanStatus(code=code, message=state or "")


def _events(*named_times: Tuple[str, Optional[datetime]]) -> List[SpanEvent]:
    return [SpanEvent(name=name, timestamp=ts) for name, ts in named_times if ts is not None]


def _set_if_present(attributes: Dict[str, AttributeValue], key: str, value) -> None:
    if value is not None:
        attributes[key] = value


def job_span(job: JobRecord) -> SpanSpec:
    if not job.is_ingestible:
        raise BuildNotIngestibleException(f"Job {job.id} has not both started and finished")

    attributes: Dict[str, AttributeValue] = {}
    _set_if_present(attributes, "state", job.state)
    attributes["retry_count"] = job.retries_count
    attributes["retried"] = job.retried
    attributes["soft_failed"] = job.soft_failed
    _set_if_present(attributes, "url", job.logs_url)
    _set_if_present(attributes, "step_key", job.step_key)
    _set_if_present(attributes, "exit_status", job.exit_status)

    agent = job.agent
    _set_if_present(attributes, "agent_name", agent.name)
    _set_if_present(attributes, "agent_hostname", agent.hostname)
    _set_if_present(attributes, "agent_ip", agent.ip_address)
    _set_if_present(attributes, "agent_version", agent.version)
    # TODO: allow filtering agent metadata keys through configuration
    for key, value in agent.parsed_metadata():
        attributes[f"agent_{key}"] = value

    return SpanSpec(
        name=job.display_name,
        start_time=job.started_at,
        end_time=job.finished_at,
        events=_events(
            ("created", job.created_at),
            ("scheduled", job.scheduled_at),
            ("runnable", job.runnable_at),
        ),
        attributes=attributes,
        status=span_status(job.state),
    )


def build_span(build: BuildRecord) -> SpanSpec:
    """
    Maps a finished build and its jobs to a span tree.

    Jobs that have not both started and finished are left out. Job spans are not required
    to lie within the build's time window.
    """
    if not build.is_ingestible:
        raise BuildNotIngestibleException(f"Build {build.id} has not both started and finished")

    attributes: Dict[str, AttributeValue] = {}
    _set_if_present(attributes, "state", build.state)
    _set_if_present(attributes, "commit", build.commit)
    _set_if_present(attributes, "branch", build.branch)
    _set_if_present(attributes, "author", build.author_email)
    _set_if_present(attributes, "url", build.web_url)
    for key, value in build.string_metadata().items():
        attributes[f"build_{key}"] = value

    return SpanSpec(
        name=str(build.number),
        start_time=build.started_at,
        end_time=build.finished_at,
        events=_events(("created", build.started_at), ("scheduled", build.scheduled_at)),
        attributes=attributes,
        status=span_status(build.state),
        children=[job_span(job) for job in build.jobs if job.is_ingestible],
    )
