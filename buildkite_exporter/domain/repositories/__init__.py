from typing import Sequence

from .build_id_cache_repository import BuildIdCacheRepository

__all__: Sequence[str] = ("BuildIdCacheRepository",)
