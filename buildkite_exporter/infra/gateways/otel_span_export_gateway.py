from datetime import datetime, timedelta, timezone
from typing import Optional

from buildkite_exporter.core.config import ExporterConfig
from buildkite_exporter.core.loggers import logger_name, make_logger
from buildkite_exporter.domain.entities import SpanSpec, SpanStatus, SpanStatusCode
from buildkite_exporter.domain.gateways import SpanExportGateway
from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.trace import SpanKind, Status, StatusCode

logger = make_logger(logger_name())

INSTRUMENTATION_NAME = "buildkite_exporter"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_STATUS_CODES = {
    SpanStatusCode.UNSET: StatusCode.UNSET,
    SpanStatusCode.OK: StatusCode.OK,
    SpanStatusCode.ERROR: StatusCode.ERROR,
}


def to_unix_nanos(ts: datetime) -> int:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return (ts - _EPOCH) // timedelta(microseconds=1) * 1000


def to_otel_status(status: SpanStatus) -> Status:
    code = _STATUS_CODES[status.code]
    # OpenTelemetry only keeps a description on ERROR and warns about it otherwise.
    # The raw state is still exported as the `state` attribute.
    if code is StatusCode.ERROR:
        return Status(code, status.message)
    return Status(code)


def make_tracer_provider(config: ExporterConfig) -> TracerProvider:
    """
    Builds the tracer provider the exporter sends spans through.

    In debug mode spans are printed to stdout as they end, otherwise they are batched
    and sent to the OTLP gRPC endpoint.
    """
    resource = Resource.create(
        {
            "service.name": config.service_name,
            "service.version": config.service_version,
        }
    )
    provider = TracerProvider(resource=resource)
    if config.debug_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        logger.info("Debug exporter enabled, printing spans to stdout")
    else:
        provider.add_span_processor(
            BatchSpanProcessor(
                OTLPSpanExporter(
                    endpoint=config.otlp_endpoint,
                    headers=config.otlp_headers,
                    insecure=config.otlp_insecure,
                )
            )
        )
        logger.info(f"Exporting spans to {config.otlp_endpoint}")
    return provider


class OpenTelemetrySpanExportGateway(SpanExportGateway):
    def __init__(self, tracer_provider: TracerProvider):
        self.tracer_provider = tracer_provider
        self.tracer = tracer_provider.get_tracer(INSTRUMENTATION_NAME)

    def export(self, span: SpanSpec) -> None:
        # Each build is its own trace, whatever context the caller happens to run in.
        self._record(span, Context())

    def _record(self, spec: SpanSpec, parent_context: Optional[Context]) -> None:
        otel_span = self.tracer.start_span(
            spec.name,
            context=parent_context,
            kind=SpanKind.INTERNAL,
            start_time=to_unix_nanos(spec.start_time),
        )
        for event in spec.events:
            otel_span.add_event(event.name, timestamp=to_unix_nanos(event.timestamp))
        otel_span.set_attributes(spec.attributes)
        otel_span.set_status(to_otel_status(spec.status))

        child_context = trace.set_span_in_context(otel_span)
        for child in spec.children:
            self._record(child, child_context)

        otel_span.end(end_time=to_unix_nanos(spec.end_time))

    def shutdown(self) -> None:
        self.tracer_provider.shutdown()
