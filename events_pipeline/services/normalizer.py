"""Raw event normalization.

Producers (scrapers, LLM summarizers, partner feeds) disagree on field names,
so every canonical field is resolved from ``FIELD_ALIASES``: the first alias
holding a non-blank value wins, in the order listed. Blank strings and values
of the wrong type fall through to the next alias.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Mapping
from datetime import date, datetime, timedelta, timezone
from typing import Any

from dateutil import parser as date_parser

from events_pipeline.schemas.events import NormalizedEvent

logger = logging.getLogger(__name__)

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "title": ("title", "summary"),
    "description": ("description",),
    "start_date": ("start_date", "start", "startDate"),
    "end_date": ("end_date", "ends_at", "endsAt", "end"),
    "location_city": ("location_city", "location", "venue"),
    "location_state": ("location_state",),
    "organizer": ("organizer", "host", "publisher"),
    "candidate_url": ("url", "link", "website"),
    "tags": ("tags",),
}

MAX_TITLE_LENGTH = 400
MAX_DESCRIPTION_LENGTH = 4000
DEFAULT_REGION = "CA"
STALE_AFTER = timedelta(days=1)


def make_dedupe_key(title: str | None, start_date: str | None, organizer: str | None = None) -> str:
    base = f"{(title or '').lower()}|{start_date or ''}|{(organizer or '').lower()}"
    return hashlib.sha1(base.encode("utf-8")).hexdigest()


def resolve_text(raw: Mapping[str, Any], canonical: str) -> str | None:
    for alias in FIELD_ALIASES[canonical]:
        value = _as_text(raw.get(alias))
        if value is not None:
            return value
    return None


def resolve_tags(raw: Mapping[str, Any]) -> list[str]:
    for alias in FIELD_ALIASES["tags"]:
        value = raw.get(alias)
        if isinstance(value, str):
            value = value.split(",")
        if not isinstance(value, (list, tuple)):
            continue
        tags = [item.strip() for item in value if isinstance(item, str) and item.strip()]
        if tags:
            return list(dict.fromkeys(tags))
    return []


def dedupe_key_for_raw(raw: Any) -> str:
    """Best-effort key straight from a raw payload, used to trace staged rows."""
    if not isinstance(raw, Mapping):
        return make_dedupe_key("", "", None)
    return make_dedupe_key(
        resolve_text(raw, "title"),
        resolve_text(raw, "start_date"),
        resolve_text(raw, "organizer"),
    )


def normalize(raw: Any, source: str = "ai_generated", *, now: datetime | None = None) -> NormalizedEvent | None:
    """Map a raw payload onto the canonical event shape.

    Returns None for payloads that are not objects and for events whose start
    date parses to more than one day before ``now``. Missing optional fields
    become None; an unparseable start date is kept as given.
    """
    if not isinstance(raw, Mapping):
        logger.warning("ignoring non-object event payload from source=%s type=%s", source, type(raw).__name__)
        return None

    current = now or datetime.now(timezone.utc)
    title = resolve_text(raw, "title") or ""
    start_date = resolve_text(raw, "start_date") or ""
    organizer = resolve_text(raw, "organizer")
    location_state = resolve_text(raw, "location_state")

    starts_at = parse_event_datetime(start_date)
    if starts_at is not None and starts_at < current - STALE_AFTER:
        logger.info("rejecting past event source=%s title=%r start_date=%s", source, title[:80], start_date)
        return None

    description = resolve_text(raw, "description")
    return NormalizedEvent(
        title=title[:MAX_TITLE_LENGTH],
        description=description[:MAX_DESCRIPTION_LENGTH] if description else None,
        start_date=start_date,
        end_date=resolve_text(raw, "end_date"),
        location_city=resolve_text(raw, "location_city"),
        location_state=location_state,
        candidate_url=resolve_text(raw, "candidate_url"),
        tags=resolve_tags(raw),
        organizer=organizer,
        region=location_state or DEFAULT_REGION,
        dedupe_key=make_dedupe_key(title, start_date, organizer),
    )


def parse_event_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            parsed = date_parser.parse(raw)
        except (ValueError, OverflowError):
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _as_text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    return None
