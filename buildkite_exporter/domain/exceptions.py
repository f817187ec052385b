class DomainException(Exception):
    """
    Base class for exceptions thrown for domain (business logic) errors.
    """


class InvalidConfigurationException(DomainException, ValueError):
    """
    Thrown when the exporter is started with missing or invalid settings, e.g. no API token,
    or when the CI provider rejects the configured token.
    """


class BuildIdCacheUnavailableException(DomainException):
    """
    Thrown when the processed-build cache cannot be opened, read or written.
    The daemon cannot deduplicate builds without it, so this is fatal.
    """


class BuildListingException(DomainException):
    """
    Thrown when a single build listing request returns a non-200 response.
    """

    def __init__(self, status_code: int, content: bytes):
        self.status_code = status_code
        self.content = content

    def __str__(self) -> str:
        return f"build listing request failed with status {self.status_code}: {self.content!r}"


class BuildListingFailedException(DomainException):
    """
    Thrown when a build listing page could not be fetched after all retry attempts.
    Aborts the current ingestion cycle only.
    """


class BuildNotIngestibleException(DomainException, ValueError):
    """
    Thrown when a span is requested for a build or job that has not both started and finished.
    """
