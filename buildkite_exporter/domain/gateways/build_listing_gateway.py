from abc import ABC, abstractmethod
from datetime import datetime
from typing import Collection, List, Optional

from buildkite_exporter.common.pydantic_types import BaseModel, Field
from buildkite_exporter.domain.entities import BuildRecord, BuildState


class BuildListPage(BaseModel):
    builds: List[BuildRecord] = Field(default_factory=list)
    next_page: Optional[int] = None

    @property
    def has_next_page(self) -> bool:
        # The provider signals the last page with no next page, or page 0.
        return bool(self.next_page)


class BuildListingGateway(ABC):
    """
    Base class for listing finished builds from a CI provider.
    """

    @abstractmethod
    async def list_builds(
        self,
        pipeline: str,
        finished_after: datetime,
        states: Collection[BuildState],
        page: int,
        page_size: int,
    ) -> BuildListPage:
        """
        Lists one page of builds of a pipeline.

        Args:
            pipeline: The pipeline slug.
            finished_after: Only builds that finished at or after this time are returned.
            states: Only builds in one of these states are returned.
            page: The 1-based page number.
            page_size: The maximum number of builds on the page.

        Returns:
            The builds on the page, and the number of the next page if there is one.
        """
        pass

    @abstractmethod
    async def verify_token(self) -> None:
        """
        Checks that the configured API token is accepted by the provider.

        Raises:
            InvalidConfigurationException: if the token is rejected.
        """
        pass
