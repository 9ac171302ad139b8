from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Literal

import httpx
from opentelemetry import trace

from events_pipeline.core.config import Settings, get_settings
from events_pipeline.core.policy import LinkHealthPolicy, parse_policy_overrides
from events_pipeline.core.urls import extract_url_parts, heal_url
from events_pipeline.jobs.link_health import LinkCheckResult, build_keywords, check_url
from events_pipeline.jobs.tombstone import GONE_STATUS_CODES, should_tombstone, tombstone_reason
from events_pipeline.schemas.events import LinkHealthUpdate, ValidationBatchResult, ValidationOutcome
from events_pipeline.services.repository import EventRecord, EventRepo, RepositoryNotFoundError, TombstoneRepo

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

CheckKind = Literal["skipped", "tombstoned", "validated", "failed"]


async def run_validation_batch(
    limit: int | None = None,
    *,
    events: EventRepo,
    tombstones: TombstoneRepo,
    client: httpx.AsyncClient | None = None,
    now: datetime | None = None,
    policy: LinkHealthPolicy | None = None,
) -> ValidationBatchResult:
    """Re-check links for the events checked longest ago.

    Only link-health columns are written. ``link_ok`` counts events whose
    result clears ``publish_score_min`` with a non-error status; whether an
    event is published stays a review decision.
    """
    settings = get_settings()
    policy = policy or parse_policy_overrides(settings.link_health_policy_json)
    limit = limit or settings.validation_batch_size
    current = now or datetime.now(timezone.utc)
    recheck_after = timedelta(hours=settings.recheck_interval_hours)
    result = ValidationBatchResult()

    with tracer.start_as_current_span("events.validate_batch") as span:
        span.set_attribute("events.batch_size", limit)
        try:
            candidates = await events.list_events_for_link_check(limit)
        except Exception:
            logger.exception("failed to list events for link check limit=%s", limit)
            result.errors = 1
            return result

        semaphore = asyncio.Semaphore(max(1, settings.link_check_concurrency))

        async with _client_scope(client, settings, policy) as http_client:

            async def check_one(event: EventRecord) -> tuple[CheckKind, ValidationOutcome | None]:
                async with semaphore:
                    if event.last_checked_at is not None and current - event.last_checked_at < recheck_after:
                        return "skipped", None
                    try:
                        return await _validate_event(
                            event,
                            events=events,
                            tombstones=tombstones,
                            client=http_client,
                            policy=policy,
                            settings=settings,
                            now=current,
                        )
                    except Exception as exc:
                        logger.exception("link validation failed for event id=%s", event.id)
                        return "failed", ValidationOutcome(event_id=event.id, success=False, error=str(exc))

            checks = await asyncio.gather(*(check_one(event) for event in candidates))

        for kind, outcome in checks:
            result.processed += 1
            if kind == "skipped":
                result.skipped += 1
            elif kind == "failed":
                result.errors += 1
            elif kind == "tombstoned":
                result.tombstoned += 1
            else:
                result.validated += 1
                if outcome is not None and outcome.link_ok:
                    result.link_ok += 1
                if outcome is not None and outcome.tombstoned:
                    result.tombstoned += 1

        span.set_attribute("events.validated", result.validated)
        span.set_attribute("events.link_ok", result.link_ok)
        span.set_attribute("events.tombstoned", result.tombstoned)

    logger.info(
        "link validation processed=%s validated=%s link_ok=%s tombstoned=%s skipped=%s errors=%s",
        result.processed,
        result.validated,
        result.link_ok,
        result.tombstoned,
        result.skipped,
        result.errors,
    )
    return result


async def validate_event_by_id(
    event_id: str,
    *,
    events: EventRepo,
    tombstones: TombstoneRepo,
    client: httpx.AsyncClient | None = None,
    now: datetime | None = None,
    policy: LinkHealthPolicy | None = None,
) -> ValidationOutcome:
    """Check one event immediately, ignoring the recheck window."""
    settings = get_settings()
    policy = policy or parse_policy_overrides(settings.link_health_policy_json)

    try:
        event = await events.get_event(event_id)
    except RepositoryNotFoundError:
        return ValidationOutcome(event_id=event_id, success=False, error="event not found")

    async with _client_scope(client, settings, policy) as http_client:
        kind, outcome = await _validate_event(
            event,
            events=events,
            tombstones=tombstones,
            client=http_client,
            policy=policy,
            settings=settings,
            now=now or datetime.now(timezone.utc),
        )
    if kind == "skipped" or outcome is None:
        return ValidationOutcome(event_id=event_id, success=False, error="event has no url to validate")
    return outcome


async def _validate_event(
    event: EventRecord,
    *,
    events: EventRepo,
    tombstones: TombstoneRepo,
    client: httpx.AsyncClient,
    policy: LinkHealthPolicy,
    settings: Settings,
    now: datetime,
) -> tuple[CheckKind, ValidationOutcome | None]:
    url = event.canonical_url or event.candidate_url
    if not url:
        return "skipped", None

    parts = extract_url_parts(url)
    if parts is not None and await tombstones.is_tombstoned(parts.domain, parts.path):
        await events.update_link_health(
            event.id,
            LinkHealthUpdate(
                canonical_url=event.canonical_url,
                url_status=404,
                redirect_chain=[],
                link_health_score=0,
                last_checked_at=now,
            ),
        )
        logger.info("skipping tombstoned url event id=%s domain=%s path=%s", event.id, parts.domain, parts.path)
        return "tombstoned", ValidationOutcome(
            event_id=event.id,
            success=True,
            score=0,
            status=404,
            link_ok=False,
            tombstoned=True,
        )

    keywords = build_keywords(event.title, event.organizer)
    result = await _check(url, keywords, client=client, policy=policy, settings=settings)
    if result.status in GONE_STATUS_CODES:
        healed = heal_url(url)
        if healed != url:
            retry = await _check(healed, keywords, client=client, policy=policy, settings=settings)
            logger.info(
                "retried healed url event id=%s status=%s->%s score=%s->%s",
                event.id,
                result.status,
                retry.status,
                result.score,
                retry.score,
            )
            if retry.score > result.score:
                result = retry

    tombstoned = should_tombstone(result.status, result.redirect_chain, result.score, policy=policy)
    if tombstoned and parts is not None:
        await tombstones.add_tombstone(
            domain=parts.domain,
            path=parts.path,
            reason=tombstone_reason(result.status, result.redirect_chain, result.score),
        )

    await events.update_link_health(
        event.id,
        LinkHealthUpdate(
            canonical_url=result.canonical or result.final_url,
            url_status=result.status,
            redirect_chain=result.redirect_chain,
            link_health_score=result.score,
            last_checked_at=now,
        ),
    )

    link_ok = result.score >= policy.publish_score_min and 0 < result.status < 400
    return "validated", ValidationOutcome(
        event_id=event.id,
        success=True,
        score=result.score,
        status=result.status,
        link_ok=link_ok,
        tombstoned=tombstoned,
        error=result.error,
    )


async def _check(
    url: str,
    keywords: list[str],
    *,
    client: httpx.AsyncClient,
    policy: LinkHealthPolicy,
    settings: Settings,
) -> LinkCheckResult:
    return await check_url(
        url,
        keywords,
        client=client,
        policy=policy,
        timeout_seconds=settings.link_check_timeout_seconds,
        body_timeout_seconds=settings.link_check_body_timeout_seconds,
        user_agent=settings.link_check_user_agent,
    )


@asynccontextmanager
async def _client_scope(
    client: httpx.AsyncClient | None,
    settings: Settings,
    policy: LinkHealthPolicy,
) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(
        timeout=settings.link_check_timeout_seconds,
        follow_redirects=True,
        max_redirects=policy.max_redirects,
    ) as shared_client:
        yield shared_client
