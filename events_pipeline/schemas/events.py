from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

ReviewStatus = Literal["pending_review", "approved", "rejected"]
UpsertOutcome = Literal["inserted", "updated"]


class NormalizedEvent(BaseModel):
    title: str
    description: str | None = None
    start_date: str
    end_date: str | None = None
    location_city: str | None = None
    location_state: str | None = None
    candidate_url: str | None = None
    tags: list[str] = Field(default_factory=list)
    organizer: str | None = None
    region: str = "CA"
    dedupe_key: str


class EventRefresh(NormalizedEvent):
    """Columns an ingestion run may write; review and link-health columns are not part of it."""

    source: str


class LinkHealthUpdate(BaseModel):
    canonical_url: str | None = None
    url_status: int = 0
    redirect_chain: list[str] = Field(default_factory=list)
    link_health_score: int = Field(default=0, ge=0, le=100)
    last_checked_at: datetime


class EventOut(NormalizedEvent):
    id: str
    source: str
    canonical_url: str | None = None
    url_status: int = 0
    redirect_chain: list[str] = Field(default_factory=list)
    link_health_score: int = 0
    last_checked_at: datetime | None = None
    publishable: bool = False
    review_status: ReviewStatus = "pending_review"
    created_at: datetime
    updated_at: datetime


class LinkHealthOut(BaseModel):
    event_id: str
    title: str
    canonical_url: str | None = None
    url_status: int = 0
    redirect_chain: list[str] = Field(default_factory=list)
    link_health_score: int = 0
    last_checked_at: datetime | None = None
    publishable: bool = False
    review_status: ReviewStatus = "pending_review"


class StageRequest(BaseModel):
    source: str = "ai_generated"
    raw: dict[str, Any]


class StageResult(BaseModel):
    success: bool
    staging_id: str | None = None
    error: str | None = None


class IngestRequest(BaseModel):
    source: str = "ai_generated"
    events: list[dict[str, Any]] = Field(default_factory=list)


class IngestResult(BaseModel):
    processed: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0


class ValidationBatchResult(BaseModel):
    processed: int = 0
    validated: int = 0
    link_ok: int = 0
    tombstoned: int = 0
    skipped: int = 0
    errors: int = 0


class ValidationOutcome(BaseModel):
    event_id: str
    success: bool
    score: int | None = None
    status: int | None = None
    link_ok: bool | None = None
    tombstoned: bool = False
    error: str | None = None
