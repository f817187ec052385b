from datetime import datetime, timezone
from typing import Any, Collection, Dict, List, Optional, Tuple

import aiohttp
from buildkite_exporter.core.loggers import logger_name, make_logger
from buildkite_exporter.domain.entities import AgentRecord, BuildRecord, BuildState, JobRecord
from buildkite_exporter.domain.exceptions import (
    BuildListingException,
    InvalidConfigurationException,
)
from buildkite_exporter.domain.gateways import BuildListingGateway, BuildListPage

logger = make_logger(logger_name())

BUILDKITE_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def _translate_job(payload: Dict[str, Any]) -> JobRecord:
    agent = payload.get("agent") or {}
    return JobRecord(
        id=payload.get("id"),
        type=payload.get("type"),
        name=payload.get("name"),
        state=payload.get("state"),
        step_key=payload.get("step_key"),
        logs_url=payload.get("logs_url"),
        created_at=payload.get("created_at"),
        scheduled_at=payload.get("scheduled_at"),
        runnable_at=payload.get("runnable_at"),
        started_at=payload.get("started_at"),
        finished_at=payload.get("finished_at"),
        retries_count=payload.get("retries_count") or 0,
        retried=bool(payload.get("retried")),
        soft_failed=bool(payload.get("soft_failed")),
        exit_status=payload.get("exit_status"),
        agent=AgentRecord(
            name=agent.get("name"),
            hostname=agent.get("hostname"),
            ip_address=agent.get("ip_address"),
            version=agent.get("version"),
            metadata=agent.get("meta_data") or [],
        ),
    )


def _translate_build(payload: Dict[str, Any]) -> BuildRecord:
    author = payload.get("author") or payload.get("creator") or {}
    metadata = payload.get("meta_data")
    return BuildRecord(
        id=payload["id"],
        number=payload["number"],
        state=payload.get("state"),
        created_at=payload.get("created_at"),
        scheduled_at=payload.get("scheduled_at"),
        started_at=payload.get("started_at"),
        finished_at=payload.get("finished_at"),
        commit=payload.get("commit"),
        branch=payload.get("branch"),
        author_email=author.get("email"),
        web_url=payload.get("web_url"),
        metadata=metadata if isinstance(metadata, dict) else {},
        jobs=[_translate_job(job) for job in payload.get("jobs") or []],
    )


def _next_page(links) -> Optional[int]:
    """Reads the next page number from the parsed `Link` response header."""
    next_link = links.get("next")
    if not next_link:
        return None
    page = next_link["url"].query.get("page")
    return int(page) if page else None


class LiveBuildkiteBuildListingGateway(BuildListingGateway):
    """
    Lists builds through the Buildkite REST API.
    """

    def __init__(self, api_url: str, organization: str, token: str):
        self.api_url = api_url.rstrip("/")
        self.organization = organization
        self.token = token

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}", "Accept": "application/json"}

    def _builds_url(self, pipeline: str) -> str:
        return f"{self.api_url}/v2/organizations/{self.organization}/pipelines/{pipeline}/builds"

    async def list_builds(
        self,
        pipeline: str,
        finished_after: datetime,
        states: Collection[BuildState],
        page: int,
        page_size: int,
    ) -> BuildListPage:
        params: List[Tuple[str, str]] = [
            (
                "finished_from",
                finished_after.astimezone(timezone.utc).strftime(BUILDKITE_TIMESTAMP_FORMAT),
            ),
        ]
        params.extend(("state[]", state.value) for state in sorted(states, key=lambda s: s.value))
        params.append(("page", str(page)))
        params.append(("per_page", str(page_size)))

        async with aiohttp.ClientSession() as client:
            aio_resp = await client.get(
                self._builds_url(pipeline), params=params, headers=self._headers()
            )
            status = aio_resp.status
            if status == 200:
                payload = await aio_resp.json()
                next_page = _next_page(aio_resp.links)
            else:
                content = await aio_resp.read()

        if status != 200:
            raise BuildListingException(status_code=status, content=content)

        builds = [_translate_build(build) for build in payload]
        logger.debug(f"Listed {len(builds)} builds of {pipeline} on page {page}")
        return BuildListPage(builds=builds, next_page=next_page)

    async def verify_token(self) -> None:
        async with aiohttp.ClientSession() as client:
            aio_resp = await client.get(f"{self.api_url}/v2/access-token", headers=self._headers())
            status = aio_resp.status
            content = await aio_resp.read()

        if status in (401, 403):
            raise InvalidConfigurationException("Buildkite rejected the configured API token")
        if status != 200:
            raise BuildListingException(status_code=status, content=content)
        logger.info("Buildkite API token verified")
