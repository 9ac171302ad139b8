from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from events_pipeline.schemas.events import EventRefresh, UpsertOutcome
from events_pipeline.services.ingestion import ingest_events, process_staged_events, stage_raw_event
from events_pipeline.services.normalizer import make_dedupe_key
from events_pipeline.services.repository import RepositoryUnavailableError, StagedEventRecord
from events_pipeline.services.store import InMemoryRepository

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FlakyRepository(InMemoryRepository):
    def __init__(self, failing_titles: set[str]) -> None:
        super().__init__()
        self.failing_titles = failing_titles

    async def upsert_by_dedupe_key(self, refresh: EventRefresh) -> UpsertOutcome:
        if refresh.title in self.failing_titles:
            raise RepositoryUnavailableError("connection reset")
        return await super().upsert_by_dedupe_key(refresh)


class BrokenStagingRepository(InMemoryRepository):
    async def insert_staged(self, *, source: str, raw: dict[str, Any], dedupe_key: str) -> str:
        raise RepositoryUnavailableError("database unavailable")

    async def list_staged(self, limit: int) -> list[StagedEventRecord]:
        raise RepositoryUnavailableError("database unavailable")


def _event(title: str, **extra: Any) -> dict[str, Any]:
    return {"title": title, "start_date": "2026-04-01T09:00:00Z", "organizer": "CalCPA", **extra}


def test_stage_raw_event_records_dedupe_key() -> None:
    repo = InMemoryRepository()
    result = asyncio.run(stage_raw_event(_event("Tax Summit"), "scraper", staging=repo))

    assert result.success is True
    staged = repo.staged[result.staging_id]
    assert staged.source == "scraper"
    assert staged.dedupe_key == make_dedupe_key("Tax Summit", "2026-04-01T09:00:00Z", "CalCPA")


def test_stage_raw_event_accepts_duplicates() -> None:
    repo = InMemoryRepository()
    first = asyncio.run(stage_raw_event(_event("Tax Summit"), staging=repo))
    second = asyncio.run(stage_raw_event(_event("Tax Summit"), staging=repo))

    assert first.success and second.success
    assert len(repo.staged) == 2


def test_stage_raw_event_reports_failure_without_raising() -> None:
    result = asyncio.run(stage_raw_event(_event("Tax Summit"), staging=BrokenStagingRepository()))

    assert result.success is False
    assert result.staging_id is None
    assert result.error == "database unavailable"


def test_process_staged_events_inserts_and_drains_staging() -> None:
    repo = InMemoryRepository()
    for title in ("Tax Summit", "Ethics Update"):
        asyncio.run(stage_raw_event(_event(title), staging=repo))

    result = asyncio.run(process_staged_events(10, staging=repo, events=repo, now=NOW))

    assert (result.processed, result.inserted, result.updated, result.errors) == (2, 2, 0, 0)
    assert repo.staged == {}
    stored = sorted(event.title for event in repo.events.values())
    assert stored == ["Ethics Update", "Tax Summit"]
    for event in repo.events.values():
        assert event.publishable is False
        assert event.review_status == "pending_review"
        assert event.link_health_score == 0


def test_process_staged_events_isolates_failures() -> None:
    repo = FlakyRepository({"Broken"})
    for title in ("First", "Broken", "Last"):
        asyncio.run(stage_raw_event(_event(title), staging=repo))

    result = asyncio.run(process_staged_events(10, staging=repo, events=repo, now=NOW))

    assert result.processed == 3
    assert result.inserted == 2
    assert result.errors == 1
    remaining = [row.raw["title"] for row in repo.staged.values()]
    assert remaining == ["Broken"]


def test_process_staged_events_skips_and_deletes_stale_rows() -> None:
    repo = InMemoryRepository()
    asyncio.run(stage_raw_event({"title": "Last Year", "start_date": "2025-01-10"}, staging=repo))

    result = asyncio.run(process_staged_events(10, staging=repo, events=repo, now=NOW))

    assert result.skipped == 1
    assert result.errors == 0
    assert repo.staged == {}
    assert repo.events == {}


def test_process_staged_events_respects_batch_size() -> None:
    repo = InMemoryRepository()
    for index in range(5):
        asyncio.run(stage_raw_event(_event(f"Session {index}"), staging=repo))

    result = asyncio.run(process_staged_events(2, staging=repo, events=repo, now=NOW))

    assert result.processed == 2
    assert len(repo.staged) == 3


def test_process_staged_events_survives_listing_failure() -> None:
    repo = BrokenStagingRepository()
    result = asyncio.run(process_staged_events(10, staging=repo, events=repo, now=NOW))

    assert result.errors == 1
    assert result.processed == 0


def test_refresh_preserves_review_and_link_health_fields() -> None:
    repo = InMemoryRepository()
    asyncio.run(ingest_events([_event("Tax Summit", description="v1")], events=repo, now=NOW))
    (event_id,) = repo.events
    checked_at = datetime(2026, 2, 28, tzinfo=timezone.utc)
    repo.events[event_id] = replace(
        repo.events[event_id],
        publishable=True,
        review_status="approved",
        link_health_score=82,
        url_status=200,
        canonical_url="https://example.org/summit",
        last_checked_at=checked_at,
    )

    result = asyncio.run(
        ingest_events([_event("TAX SUMMIT", description="v2")], "partner_feed", events=repo, now=NOW)
    )

    assert result.updated == 1
    assert result.inserted == 0
    assert len(repo.events) == 1
    refreshed = repo.events[event_id]
    assert refreshed.description == "v2"
    assert refreshed.title == "TAX SUMMIT"
    assert refreshed.source == "partner_feed"
    assert refreshed.publishable is True
    assert refreshed.review_status == "approved"
    assert refreshed.link_health_score == 82
    assert refreshed.url_status == 200
    assert refreshed.canonical_url == "https://example.org/summit"
    assert refreshed.last_checked_at == checked_at


def test_ingest_events_counts_skips_and_errors() -> None:
    repo = FlakyRepository({"Broken"})
    result = asyncio.run(
        ingest_events(
            [_event("Good"), _event("Broken"), {"title": "Old", "start_date": "2024-01-01"}, "not an object"],
            events=repo,
            now=NOW,
        )
    )

    assert result.processed == 4
    assert result.inserted == 1
    assert result.errors == 1
    assert result.skipped == 2
