from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from opentelemetry import trace

from events_pipeline.core.config import get_settings
from events_pipeline.schemas.events import EventRefresh, IngestResult, StageResult
from events_pipeline.services.normalizer import dedupe_key_for_raw, normalize
from events_pipeline.services.repository import EventRepo, StagingRepo

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def stage_raw_event(raw: dict[str, Any], source: str = "ai_generated", *, staging: StagingRepo) -> StageResult:
    """Append a raw payload to the staging table. Never raises."""
    dedupe_key = dedupe_key_for_raw(raw)
    try:
        staging_id = await staging.insert_staged(source=source, raw=raw, dedupe_key=dedupe_key)
    except Exception as exc:
        logger.exception("failed to stage raw event source=%s dedupe_key=%s", source, dedupe_key)
        return StageResult(success=False, error=str(exc) or exc.__class__.__name__)
    return StageResult(success=True, staging_id=staging_id)


async def process_staged_events(
    batch_size: int | None = None,
    *,
    staging: StagingRepo,
    events: EventRepo,
    now: datetime | None = None,
) -> IngestResult:
    """Drain up to ``batch_size`` staged rows into the events table.

    Rows are handled one at a time; a failing row is counted and left in
    staging for the next run. Stale rows are deleted and counted as skipped.
    """
    limit = batch_size or get_settings().staging_batch_size
    result = IngestResult()

    with tracer.start_as_current_span("events.process_staged") as span:
        span.set_attribute("events.batch_size", limit)
        try:
            rows = await staging.list_staged(limit)
        except Exception:
            logger.exception("failed to list staged events limit=%s", limit)
            result.errors = 1
            return result

        for row in rows:
            result.processed += 1
            try:
                normalized = normalize(row.raw, row.source, now=now)
                if normalized is None:
                    await staging.delete_staged(row.id)
                    result.skipped += 1
                    continue

                outcome = await events.upsert_by_dedupe_key(EventRefresh(**normalized.model_dump(), source=row.source))
                if outcome == "inserted":
                    result.inserted += 1
                else:
                    result.updated += 1
                await staging.delete_staged(row.id)
            except Exception:
                result.errors += 1
                logger.exception("failed to process staged event id=%s dedupe_key=%s", row.id, row.dedupe_key)

        span.set_attribute("events.inserted", result.inserted)
        span.set_attribute("events.updated", result.updated)
        span.set_attribute("events.errors", result.errors)

    if result.processed:
        logger.info(
            "processed staged events processed=%s inserted=%s updated=%s skipped=%s errors=%s",
            result.processed,
            result.inserted,
            result.updated,
            result.skipped,
            result.errors,
        )
    return result


async def ingest_events(
    raw_events: Iterable[Any],
    source: str = "ai_generated",
    *,
    events: EventRepo,
    now: datetime | None = None,
) -> IngestResult:
    result = IngestResult()

    with tracer.start_as_current_span("events.ingest") as span:
        span.set_attribute("events.source", source)
        for raw in raw_events:
            result.processed += 1
            try:
                normalized = normalize(raw, source, now=now)
                if normalized is None:
                    result.skipped += 1
                    continue

                outcome = await events.upsert_by_dedupe_key(EventRefresh(**normalized.model_dump(), source=source))
                if outcome == "inserted":
                    result.inserted += 1
                else:
                    result.updated += 1
            except Exception:
                result.errors += 1
                logger.exception("failed to ingest event source=%s", source)

    logger.info(
        "ingested events source=%s processed=%s inserted=%s updated=%s skipped=%s errors=%s",
        source,
        result.processed,
        result.inserted,
        result.updated,
        result.skipped,
        result.errors,
    )
    return result
