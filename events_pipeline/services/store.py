from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from events_pipeline.schemas.events import EventRefresh, LinkHealthUpdate, UpsertOutcome
from events_pipeline.services.repository import EventRecord, RepositoryNotFoundError, StagedEventRecord


class InMemoryRepository:
    """Process-local repository used by tests and local runs without a database."""

    def __init__(self) -> None:
        self.staged: dict[str, StagedEventRecord] = {}
        self.events: dict[str, EventRecord] = {}
        self.tombstones: dict[tuple[str, str], str] = {}

    async def close(self) -> None:
        return None

    async def insert_staged(self, *, source: str, raw: dict[str, Any], dedupe_key: str) -> str:
        staging_id = str(uuid4())
        self.staged[staging_id] = StagedEventRecord(
            id=staging_id,
            source=source,
            raw=dict(raw),
            dedupe_key=dedupe_key,
            created_at=datetime.now(timezone.utc),
        )
        return staging_id

    async def list_staged(self, limit: int) -> list[StagedEventRecord]:
        return list(self.staged.values())[: max(1, limit)]

    async def delete_staged(self, staging_id: str) -> None:
        self.staged.pop(staging_id, None)

    async def find_by_dedupe_key(self, dedupe_key: str) -> EventRecord | None:
        return self._by_dedupe_key(dedupe_key)

    async def upsert_by_dedupe_key(self, refresh: EventRefresh) -> UpsertOutcome:
        now = datetime.now(timezone.utc)
        existing = self._by_dedupe_key(refresh.dedupe_key)
        if existing is None:
            event_id = str(uuid4())
            self.events[event_id] = EventRecord(id=event_id, created_at=now, updated_at=now, **refresh.model_dump())
            return "inserted"

        self.events[existing.id] = replace(existing, updated_at=now, **refresh.model_dump())
        return "updated"

    async def get_event(self, event_id: str) -> EventRecord:
        event = self.events.get(event_id)
        if event is None:
            raise RepositoryNotFoundError("event not found")
        return event

    async def list_events_for_link_check(self, limit: int) -> list[EventRecord]:
        oldest = datetime.min.replace(tzinfo=timezone.utc)
        ordered = sorted(
            self.events.values(),
            key=lambda event: (event.last_checked_at is not None, event.last_checked_at or oldest, event.created_at),
        )
        return ordered[: max(1, limit)]

    async def update_link_health(self, event_id: str, update: LinkHealthUpdate) -> None:
        event = await self.get_event(event_id)
        self.events[event_id] = replace(
            event,
            canonical_url=update.canonical_url,
            url_status=update.url_status,
            redirect_chain=list(update.redirect_chain),
            link_health_score=update.link_health_score,
            last_checked_at=update.last_checked_at,
            updated_at=datetime.now(timezone.utc),
        )

    async def is_tombstoned(self, domain: str, path: str) -> bool:
        return (domain, path) in self.tombstones

    async def add_tombstone(self, *, domain: str, path: str, reason: str) -> None:
        self.tombstones.setdefault((domain, path), reason)

    def _by_dedupe_key(self, dedupe_key: str) -> EventRecord | None:
        for event in self.events.values():
            if event.dedupe_key == dedupe_key:
                return event
        return None
