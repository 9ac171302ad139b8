from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Any, Protocol

import asyncpg  # type: ignore[import-untyped]

from events_pipeline.core.config import get_settings
from events_pipeline.schemas.events import EventRefresh, LinkHealthUpdate, UpsertOutcome


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when a write could not be applied."""


@dataclass(slots=True)
class StagedEventRecord:
    id: str
    source: str
    raw: dict[str, Any]
    dedupe_key: str
    created_at: datetime


@dataclass(slots=True)
class EventRecord:
    id: str
    dedupe_key: str
    title: str
    start_date: str
    source: str
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    end_date: str | None = None
    location_city: str | None = None
    location_state: str | None = None
    candidate_url: str | None = None
    tags: list[str] = field(default_factory=list)
    organizer: str | None = None
    region: str = "CA"
    canonical_url: str | None = None
    url_status: int = 0
    redirect_chain: list[str] = field(default_factory=list)
    link_health_score: int = 0
    last_checked_at: datetime | None = None
    publishable: bool = False
    review_status: str = "pending_review"


class StagingRepo(Protocol):
    async def insert_staged(self, *, source: str, raw: dict[str, Any], dedupe_key: str) -> str: ...

    async def list_staged(self, limit: int) -> list[StagedEventRecord]: ...

    async def delete_staged(self, staging_id: str) -> None: ...


class EventRepo(Protocol):
    async def find_by_dedupe_key(self, dedupe_key: str) -> EventRecord | None: ...

    async def upsert_by_dedupe_key(self, refresh: EventRefresh) -> UpsertOutcome: ...

    async def get_event(self, event_id: str) -> EventRecord: ...

    async def list_events_for_link_check(self, limit: int) -> list[EventRecord]: ...

    async def update_link_health(self, event_id: str, update: LinkHealthUpdate) -> None: ...


class TombstoneRepo(Protocol):
    async def is_tombstoned(self, domain: str, path: str) -> bool: ...

    async def add_tombstone(self, *, domain: str, path: str, reason: str) -> None: ...


REFRESH_COLUMNS: tuple[str, ...] = tuple(EventRefresh.model_fields)

_EVENT_SELECT = """
    select
      id::text as id,
      dedupe_key,
      title,
      description,
      start_date,
      end_date,
      location_city,
      location_state,
      candidate_url,
      tags,
      organizer,
      region,
      source,
      canonical_url,
      url_status,
      redirect_chain,
      link_health_score,
      last_checked_at,
      publishable,
      review_status::text as review_status,
      created_at,
      updated_at
    from events
"""

# New rows take their review and link-health values from column defaults
# (publishable=false, review_status='pending_review', score 0). On conflict only
# the refresh columns are rewritten.
_UPSERT_EVENT_SQL = f"""
    insert into events ({", ".join(REFRESH_COLUMNS)})
    values ({", ".join(f"${index}" for index in range(1, len(REFRESH_COLUMNS) + 1))})
    on conflict (dedupe_key) do update set
      {", ".join(f"{column} = excluded.{column}" for column in REFRESH_COLUMNS if column != "dedupe_key")},
      updated_at = now()
    returning (xmax = 0) as inserted
"""


class PostgresRepository:
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def insert_staged(self, *, source: str, raw: dict[str, Any], dedupe_key: str) -> str:
        pool = await self._get_pool()
        staging_id = await pool.fetchval(
            """
            insert into staging_events (source, raw, dedupe_key)
            values ($1, $2::jsonb, $3)
            returning id::text
            """,
            source,
            json.dumps(raw, default=str),
            dedupe_key,
        )
        if not staging_id:
            raise RepositoryConflictError("failed to stage raw event")
        return staging_id

    async def list_staged(self, limit: int) -> list[StagedEventRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select id::text as id, source, raw, dedupe_key, created_at
            from staging_events
            order by created_at asc
            limit $1
            """,
            max(1, limit),
        )
        return [self._staged_row_to_record(row) for row in rows]

    async def delete_staged(self, staging_id: str) -> None:
        pool = await self._get_pool()
        await pool.execute("delete from staging_events where id = $1::uuid", staging_id)

    async def find_by_dedupe_key(self, dedupe_key: str) -> EventRecord | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(f"{_EVENT_SELECT} where dedupe_key = $1", dedupe_key)
        return self._event_row_to_record(row) if row else None

    async def upsert_by_dedupe_key(self, refresh: EventRefresh) -> UpsertOutcome:
        pool = await self._get_pool()
        values = refresh.model_dump()
        inserted = await pool.fetchval(_UPSERT_EVENT_SQL, *(values[column] for column in REFRESH_COLUMNS))
        if inserted is None:
            raise RepositoryConflictError(f"failed to upsert event dedupe_key={refresh.dedupe_key}")
        return "inserted" if inserted else "updated"

    async def get_event(self, event_id: str) -> EventRecord:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(f"{_EVENT_SELECT} where id = $1::uuid", event_id)
        except asyncpg.DataError as exc:
            raise RepositoryNotFoundError("event not found") from exc
        if not row:
            raise RepositoryNotFoundError("event not found")
        return self._event_row_to_record(row)

    async def list_events_for_link_check(self, limit: int) -> list[EventRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"{_EVENT_SELECT} order by last_checked_at asc nulls first, created_at asc limit $1",
            max(1, limit),
        )
        return [self._event_row_to_record(row) for row in rows]

    async def update_link_health(self, event_id: str, update: LinkHealthUpdate) -> None:
        pool = await self._get_pool()
        status = await pool.execute(
            """
            update events
            set
              canonical_url = $2,
              url_status = $3,
              redirect_chain = $4::text[],
              link_health_score = $5,
              last_checked_at = $6,
              updated_at = now()
            where id = $1::uuid
            """,
            event_id,
            update.canonical_url,
            update.url_status,
            update.redirect_chain,
            update.link_health_score,
            update.last_checked_at,
        )
        if status.endswith(" 0"):
            raise RepositoryNotFoundError("event not found")

    async def is_tombstoned(self, domain: str, path: str) -> bool:
        pool = await self._get_pool()
        found = await pool.fetchval(
            "select exists(select 1 from event_url_tombstones where domain = $1 and path = $2)",
            domain,
            path,
        )
        return bool(found)

    async def add_tombstone(self, *, domain: str, path: str, reason: str) -> None:
        pool = await self._get_pool()
        await pool.execute(
            """
            insert into event_url_tombstones (domain, path, reason)
            values ($1, $2, $3)
            on conflict (domain, path) do nothing
            """,
            domain,
            path,
            reason,
        )

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("TPX_EVENTS_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _staged_row_to_record(row: asyncpg.Record) -> StagedEventRecord:
        raw = row["raw"]
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError:
                raw = {}
        return StagedEventRecord(
            id=row["id"],
            source=row["source"],
            raw=raw if isinstance(raw, dict) else {},
            dedupe_key=row["dedupe_key"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _event_row_to_record(row: asyncpg.Record) -> EventRecord:
        return EventRecord(
            id=row["id"],
            dedupe_key=row["dedupe_key"],
            title=row["title"],
            description=row["description"],
            start_date=row["start_date"],
            end_date=row["end_date"],
            location_city=row["location_city"],
            location_state=row["location_state"],
            candidate_url=row["candidate_url"],
            tags=list(row["tags"] or []),
            organizer=row["organizer"],
            region=row["region"],
            source=row["source"],
            canonical_url=row["canonical_url"],
            url_status=int(row["url_status"] or 0),
            redirect_chain=list(row["redirect_chain"] or []),
            link_health_score=int(row["link_health_score"] or 0),
            last_checked_at=row["last_checked_at"],
            publishable=bool(row["publishable"]),
            review_status=row["review_status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
