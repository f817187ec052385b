from typing import Sequence

from .file_build_id_cache_repository import FileBuildIdCacheRepository

__all__: Sequence[str] = ("FileBuildIdCacheRepository",)
