from events_pipeline.core.urls import UrlParts, extract_url_parts, heal_url


def test_heal_url_strips_tracking_params_and_fragment() -> None:
    healed = heal_url("https://example.org/events/summit?utm_source=x&id=7&fbclid=abc#register")
    assert healed == "https://example.org/events/summit?id=7"


def test_heal_url_drops_empty_query() -> None:
    assert heal_url("https://example.org/events?utm_campaign=spring&gclid=abc") == "https://example.org/events"


def test_heal_url_keeps_referral_params() -> None:
    healed = heal_url("https://example.org/register?ref=chapter-12&utm_source=mail")
    assert healed == "https://example.org/register?ref=chapter-12"


def test_heal_url_keeps_order_and_encoding_of_remaining_params() -> None:
    healed = heal_url("https://example.org/e?b=2&utm_medium=email&a=hello%20world&gclid=1")
    assert healed == "https://example.org/e?b=2&a=hello%20world"


def test_heal_url_is_idempotent() -> None:
    once = heal_url("https://example.org/e?UTM_Source=x&msclkid=1&page=2#top")
    assert heal_url(once) == once
    assert once == "https://example.org/e?page=2"


def test_heal_url_returns_unparseable_input_unchanged() -> None:
    assert heal_url("not a url") == "not a url"
    assert heal_url("/relative/path?utm_source=x") == "/relative/path?utm_source=x"


def test_extract_url_parts_includes_query() -> None:
    assert extract_url_parts("https://Example.org/events/1?x=1") == UrlParts(domain="example.org", path="/events/1?x=1")


def test_extract_url_parts_defaults_path() -> None:
    assert extract_url_parts("https://example.org") == UrlParts(domain="example.org", path="/")


def test_extract_url_parts_rejects_garbage() -> None:
    assert extract_url_parts("garbage") is None
    assert extract_url_parts("") is None
