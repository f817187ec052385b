from abc import ABC, abstractmethod

from buildkite_exporter.domain.entities import BuildIdCache


class BuildIdCacheRepository(ABC):
    """
    Durable store for the ids of builds that were already exported.
    """

    @abstractmethod
    def load(self) -> BuildIdCache:
        """
        Loads the full cache.

        Raises:
            BuildIdCacheUnavailableException: if the store cannot be opened or read.
        """
        pass

    @abstractmethod
    def save(self, cache: BuildIdCache) -> None:
        """
        Replaces the stored cache with `cache`.

        Raises:
            BuildIdCacheUnavailableException: if the store cannot be written.
        """
        pass
