from datetime import datetime, timezone

from events_pipeline.services.normalizer import (
    DEFAULT_REGION,
    MAX_DESCRIPTION_LENGTH,
    MAX_TITLE_LENGTH,
    dedupe_key_for_raw,
    make_dedupe_key,
    normalize,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_make_dedupe_key_is_deterministic_and_case_insensitive() -> None:
    first = make_dedupe_key("Tax Summit", "2026-05-01", "CalCPA")
    second = make_dedupe_key("TAX SUMMIT", "2026-05-01", "calcpa")
    assert first == second
    assert len(first) == 40
    assert make_dedupe_key("Tax Summit", "2026-05-02", "CalCPA") != first


def test_make_dedupe_key_treats_missing_organizer_as_empty() -> None:
    assert make_dedupe_key("Tax Summit", "2026-05-01", None) == make_dedupe_key("Tax Summit", "2026-05-01", "")


def test_normalize_resolves_aliases_in_order() -> None:
    event = normalize(
        {
            "summary": "Summary Title",
            "title": "Primary Title",
            "startDate": "2026-04-01T09:00:00Z",
            "ends_at": "2026-04-01T17:00:00Z",
            "venue": "Sacramento",
            "host": "CalCPA",
            "website": "https://example.org/website",
            "link": "https://example.org/link",
        },
        now=NOW,
    )
    assert event is not None
    assert event.title == "Primary Title"
    assert event.start_date == "2026-04-01T09:00:00Z"
    assert event.end_date == "2026-04-01T17:00:00Z"
    assert event.location_city == "Sacramento"
    assert event.organizer == "CalCPA"
    assert event.candidate_url == "https://example.org/link"


def test_normalize_skips_blank_alias_values() -> None:
    event = normalize({"title": "   ", "summary": "Fallback", "start": "2026-04-01"}, now=NOW)
    assert event is not None
    assert event.title == "Fallback"


def test_normalize_rejects_events_older_than_a_day() -> None:
    assert normalize({"title": "Old", "start_date": "2026-02-27"}, now=NOW) is None


def test_normalize_keeps_recent_and_future_events() -> None:
    assert normalize({"title": "Yesterday", "start_date": "2026-02-28T18:00:00Z"}, now=NOW) is not None
    assert normalize({"title": "Soon", "start_date": "2026-03-01T13:00:00Z"}, now=NOW) is not None


def test_normalize_keeps_unparseable_start_date() -> None:
    event = normalize({"title": "TBD", "start_date": "sometime in spring"}, now=NOW)
    assert event is not None
    assert event.start_date == "sometime in spring"


def test_normalize_truncates_long_fields() -> None:
    event = normalize(
        {"title": "t" * 500, "description": "d" * 5000, "start_date": "2026-04-01"},
        now=NOW,
    )
    assert event is not None
    assert len(event.title) == MAX_TITLE_LENGTH
    assert len(event.description or "") == MAX_DESCRIPTION_LENGTH


def test_normalize_defaults_region_from_state() -> None:
    with_state = normalize({"title": "A", "start_date": "2026-04-01", "location_state": "NV"}, now=NOW)
    without_state = normalize({"title": "B", "start_date": "2026-04-01"}, now=NOW)
    assert with_state is not None and with_state.region == "NV"
    assert without_state is not None and without_state.region == DEFAULT_REGION


def test_normalize_accepts_comma_separated_tags() -> None:
    event = normalize({"title": "A", "start_date": "2026-04-01", "tags": "cpe, ethics,cpe,"}, now=NOW)
    assert event is not None
    assert event.tags == ["cpe", "ethics"]


def test_normalize_degrades_on_malformed_input() -> None:
    assert normalize(["not", "an", "object"], now=NOW) is None
    event = normalize({"title": 42, "start_date": None, "tags": {"bad": True}}, now=NOW)
    assert event is not None
    assert event.title == "42"
    assert event.start_date == ""
    assert event.tags == []
    assert event.description is None


def test_normalized_dedupe_key_matches_raw_key() -> None:
    raw = {"summary": "Ethics Update", "start": "2026-04-01", "publisher": "State Board"}
    event = normalize(raw, now=NOW)
    assert event is not None
    assert event.dedupe_key == dedupe_key_for_raw(raw)
    assert event.dedupe_key == make_dedupe_key("ethics update", "2026-04-01", "state board")
