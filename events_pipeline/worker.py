from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Protocol

from opentelemetry import trace

from events_pipeline.core.config import Settings, get_settings
from events_pipeline.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from events_pipeline.services.ingestion import process_staged_events
from events_pipeline.services.repository import EventRepo, StagingRepo, TombstoneRepo, get_repository
from events_pipeline.services.validation import run_validation_batch

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(slots=True)
class WorkerState:
    last_staging_at: float | None = None
    last_validation_at: float | None = None


class WorkerRepository(StagingRepo, EventRepo, TombstoneRepo, Protocol):
    async def close(self) -> None: ...


async def run_cycle(
    state: WorkerState,
    repository: WorkerRepository,
    settings: Settings,
    *,
    now: float | None = None,
) -> bool:
    """Run whichever passes are due. Returns True when any pass ran."""
    current = time.monotonic() if now is None else now
    ran = False

    with tracer.start_as_current_span("worker.cycle"):
        if state.last_staging_at is None or current - state.last_staging_at >= settings.staging_interval_seconds:
            result = await process_staged_events(
                settings.staging_batch_size,
                staging=repository,
                events=repository,
            )
            if result.processed:
                logger.info("staging pass inserted=%s updated=%s errors=%s", result.inserted, result.updated, result.errors)
            state.last_staging_at = current
            ran = True

        if (
            state.last_validation_at is None
            or current - state.last_validation_at >= settings.validation_interval_seconds
        ):
            await run_validation_batch(
                settings.validation_batch_size,
                events=repository,
                tombstones=repository,
            )
            state.last_validation_at = current
            ran = True

    return ran


async def run_worker() -> None:
    settings = get_settings()
    configure_logging()
    telemetry_runtime = setup_telemetry(settings)
    repository = get_repository()
    state = WorkerState()
    backoff = settings.poll_interval_seconds

    try:
        while True:
            try:
                await run_cycle(state, repository, settings)
                backoff = settings.poll_interval_seconds
                await asyncio.sleep(settings.poll_interval_seconds)
            except Exception as exc:  # pragma: no cover - bootstrap robustness
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (2.0 + jitter), settings.max_backoff_seconds)
                logger.exception("worker iteration failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = sleep_for
    finally:
        await repository.close()
        shutdown_telemetry(telemetry_runtime)


if __name__ == "__main__":
    asyncio.run(run_worker())
