import argparse
import asyncio
import signal
import sys

import aiohttp
from buildkite_exporter.core.config import ExporterConfig
from buildkite_exporter.core.loggers import logger_name, make_logger
from buildkite_exporter.daemon import ExporterDaemon
from buildkite_exporter.domain.entities import CycleContext
from buildkite_exporter.domain.exceptions import (
    BuildIdCacheUnavailableException,
    BuildListingException,
    InvalidConfigurationException,
)
from buildkite_exporter.domain.use_cases.ingestion_cycle_use_cases import (
    IngestionCycleUseCase,
    IngestionSettings,
)
from buildkite_exporter.infra.gateways import (
    LiveBuildkiteBuildListingGateway,
    OpenTelemetrySpanExportGateway,
    make_tracer_provider,
)
from buildkite_exporter.infra.repositories import FileBuildIdCacheRepository

logger = make_logger(logger_name())


async def run_exporter(config: ExporterConfig, once: bool = False) -> None:
    build_listing_gateway = LiveBuildkiteBuildListingGateway(
        api_url=config.buildkite_api_url,
        organization=config.buildkite_org,
        token=config.buildkite_token,
    )
    try:
        await build_listing_gateway.verify_token()
    except (BuildListingException, aiohttp.ClientError) as e:
        # Only a rejected token is fatal, the API may just be having a bad moment.
        logger.warning(f"Could not verify Buildkite API token: {e}")

    span_export_gateway = OpenTelemetrySpanExportGateway(make_tracer_provider(config))
    ingestion_cycle = IngestionCycleUseCase(
        build_listing_gateway=build_listing_gateway,
        span_export_gateway=span_export_gateway,
        build_id_cache_repository=FileBuildIdCacheRepository(config.cache_path),
        settings=IngestionSettings(
            pipelines=config.buildkite_pipelines,
            retention=config.retention,
            page_size=config.page_size,
            max_concurrent_builds=config.max_concurrent_builds,
            max_page_attempts=config.max_page_attempts,
        ),
    )
    daemon = ExporterDaemon(
        ingestion_cycle=ingestion_cycle,
        poll_interval=config.poll_interval,
        context=CycleContext.initial(config.retention),
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, daemon.stop)

    try:
        if once:
            await daemon.run_once()
        else:
            await daemon.run_forever()
    finally:
        # Flush whatever the batch processor still holds.
        span_export_gateway.shutdown()


def entrypoint():
    parser = argparse.ArgumentParser(
        description="Export Buildkite builds and jobs as OpenTelemetry traces."
    )
    parser.add_argument("--config", "-c", help="Path to a YAML config file.")
    parser.add_argument(
        "--once", action="store_true", help="Run a single ingestion cycle and exit."
    )
    parser.add_argument(
        "--debug", action="store_true", help="Print spans to stdout instead of exporting them."
    )
    args = parser.parse_args()

    try:
        config = ExporterConfig.load(args.config)
        if args.debug:
            config.debug_exporter = True
        config.validate()
        asyncio.run(run_exporter(config, once=args.once))
    except (InvalidConfigurationException, BuildIdCacheUnavailableException):
        logger.exception("Fatal error, exiting")
        sys.exit(1)


if __name__ == "__main__":
    entrypoint()
