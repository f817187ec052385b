import os
import tempfile
from datetime import datetime
from typing import List

from buildkite_exporter.core.loggers import logger_name, make_logger
from buildkite_exporter.domain.entities import BuildIdCache, CachedBuild
from buildkite_exporter.domain.exceptions import BuildIdCacheUnavailableException
from buildkite_exporter.domain.repositories import BuildIdCacheRepository

logger = make_logger(logger_name())

FIELD_SEPARATOR = "\t"


def _parse_line(line: str) -> CachedBuild:
    build_id, _, finished_at = line.partition(FIELD_SEPARATOR)
    if not finished_at:
        # Plain id lines, as written by older versions of the exporter.
        return CachedBuild(id=build_id)
    return CachedBuild(id=build_id, finished_at=datetime.fromisoformat(finished_at))


def _format_line(entry: CachedBuild) -> str:
    if entry.finished_at is None:
        return entry.id
    return f"{entry.id}{FIELD_SEPARATOR}{entry.finished_at.isoformat()}"


class FileBuildIdCacheRepository(BuildIdCacheRepository):
    """
    Stores one build per line: the build id, optionally followed by a tab and the ISO-8601 time
    the build finished. The file is replaced as a whole on every save.
    """

    def __init__(self, path: str):
        self.path = path

    def load(self) -> BuildIdCache:
        entries: List[CachedBuild] = []
        try:
            # Create the file on first use, like opening with O_CREATE.
            with open(self.path, "a+") as f:
                f.seek(0)
                for raw_line in f:
                    line = raw_line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(_parse_line(line))
                    except ValueError:
                        logger.warning(f"Ignoring malformed cache line {line!r} in {self.path}")
        except OSError as exc:
            raise BuildIdCacheUnavailableException(
                f"Could not open build id cache at {self.path}: {exc}"
            ) from exc

        logger.info(f"Loading cache: {len(entries)} lines")
        return BuildIdCache.from_entries(entries)

    def save(self, cache: BuildIdCache) -> None:
        # Write next to the target and rename over it, so a crash mid-write leaves the previous
        # cache intact. At worst some builds get exported twice.
        directory = os.path.dirname(os.path.abspath(self.path))
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=directory, prefix=f".{os.path.basename(self.path)}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w") as f:
                for entry in cache:
                    f.write(_format_line(entry) + "\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as exc:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise BuildIdCacheUnavailableException(
                f"Error writing build id cache at {self.path}: {exc}"
            ) from exc
        logger.debug(f"Wrote {len(cache)} build ids to {self.path}")
