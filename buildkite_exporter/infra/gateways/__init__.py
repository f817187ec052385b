from typing import Sequence

from .live_buildkite_build_listing_gateway import LiveBuildkiteBuildListingGateway
from .otel_span_export_gateway import OpenTelemetrySpanExportGateway, make_tracer_provider

__all__: Sequence[str] = (
    "LiveBuildkiteBuildListingGateway",
    "OpenTelemetrySpanExportGateway",
    "make_tracer_provider",
)
