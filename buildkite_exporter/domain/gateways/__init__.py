from typing import Sequence

from .build_listing_gateway import BuildListingGateway, BuildListPage
from .span_export_gateway import SpanExportGateway

__all__: Sequence[str] = (
    "BuildListPage",
    "BuildListingGateway",
    "SpanExportGateway",
)
