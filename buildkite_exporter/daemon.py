"""
Exporter daemon
===============

Runs the ingestion cycle on a fixed interval until stopped. Each cycle starts from the
context returned by the previous one, so the query window only moves forward.

Cycles never overlap: the next one is started only after the previous one has returned.
"""

import asyncio
from datetime import timedelta
from typing import Optional

from buildkite_exporter.core.loggers import logger_name, make_logger
from buildkite_exporter.domain.entities import CycleContext, CycleResult
from buildkite_exporter.domain.exceptions import (
    BuildIdCacheUnavailableException,
    BuildListingFailedException,
    InvalidConfigurationException,
)
from buildkite_exporter.domain.use_cases.ingestion_cycle_use_cases import IngestionCycleUseCase

logger = make_logger(logger_name())


class ExporterDaemon:
    def __init__(
        self,
        ingestion_cycle: IngestionCycleUseCase,
        poll_interval: timedelta,
        context: CycleContext,
    ):
        self.ingestion_cycle = ingestion_cycle
        self.poll_interval = poll_interval
        self.context = context
        self.cycles_completed = 0
        self._stopping = False
        self._stop_event: Optional[asyncio.Event] = None

    async def run_once(self) -> CycleResult:
        result = await self.ingestion_cycle.run_cycle(self.context)
        self.context = result.context
        self.cycles_completed += 1
        return result

    async def run_forever(self) -> None:
        """
        Repeats cycles until `stop` is called. A failed cycle is logged and retried on the next
        interval. Only an unusable cache or configuration ends the loop.
        """
        self._stop_event = asyncio.Event()
        if self._stopping:
            self._stop_event.set()

        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except (BuildIdCacheUnavailableException, InvalidConfigurationException):
                raise
            except BuildListingFailedException:
                logger.exception("Aborted ingestion cycle, will retry on the next interval")
            except Exception:
                logger.exception("Ingestion cycle failed, will retry on the next interval")

            if self._stop_event.is_set():
                break
            logger.info(f"Sleeping for {self.poll_interval}")
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.poll_interval.total_seconds()
                )
            except asyncio.TimeoutError:
                pass

        logger.info(f"Exporter daemon stopped after {self.cycles_completed} cycles")

    def stop(self) -> None:
        """Ends the loop once the in-flight cycle, if any, has finished."""
        logger.info("Stopping exporter daemon")
        self._stopping = True
        if self._stop_event is not None:
            self._stop_event.set()
