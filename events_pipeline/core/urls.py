from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import unquote_plus, urlsplit, urlunsplit

TRACKING_KEYS = {
    "fbclid",
    "gclid",
    "dclid",
    "msclkid",
    "yclid",
    "igshid",
    "mc_cid",
    "mc_eid",
    "_hsenc",
    "_hsmi",
}


@dataclass(slots=True, frozen=True)
class UrlParts:
    domain: str
    path: str


def heal_url(raw_url: str) -> str:
    """Strip click-tracking parameters and the fragment from an absolute URL.

    Remaining query parameters keep their order and original encoding.
    Anything that does not parse as ``scheme://host`` is returned unchanged.
    """
    parsed = _split_absolute(raw_url)
    if parsed is None:
        return raw_url

    kept_pairs = [pair for pair in parsed.query.split("&") if pair and not _is_tracking_param(_query_key(pair))]
    return urlunsplit((parsed.scheme, parsed.netloc, parsed.path, "&".join(kept_pairs), ""))


def extract_url_parts(raw_url: str) -> UrlParts | None:
    parsed = _split_absolute(raw_url)
    if parsed is None:
        return None
    try:
        hostname = parsed.hostname
    except ValueError:
        return None
    if not hostname:
        return None

    path = parsed.path or "/"
    if parsed.query:
        path = f"{path}?{parsed.query}"
    return UrlParts(domain=hostname, path=path)


def _split_absolute(raw_url: str):
    if not isinstance(raw_url, str):
        return None
    try:
        parsed = urlsplit(raw_url.strip())
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    return parsed


def _query_key(pair: str) -> str:
    key, _, _ = pair.partition("=")
    return unquote_plus(key).strip().lower()


def _is_tracking_param(key: str) -> bool:
    return key.startswith("utm_") or key in TRACKING_KEYS
