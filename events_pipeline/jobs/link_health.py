from __future__ import annotations

import asyncio
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from urllib.parse import urljoin, urlsplit

import httpx
from opentelemetry import trace
from selectolax.parser import HTMLParser

from events_pipeline.core.policy import DEFAULT_POLICY, LinkHealthPolicy

DEFAULT_USER_AGENT = "TaxProExchange/1.0 (+https://taxproexchange.com)"
OK_STATUS_CODES = {200, 203}
HTML_CONTENT_MARKERS = ("text/html", "application/xhtml+xml", "text/plain")
SPA_ROOT_SELECTOR = "#root, #app, #__next, #__nuxt, #svelte"
_NON_WORD_RE = re.compile(r"[^\w\s]")

tracer = trace.get_tracer(__name__)


@dataclass(slots=True)
class FetchOutcome:
    requested_url: str
    final_url: str
    status: int = 0
    redirect_chain: list[str] = field(default_factory=list)
    content_type: str = ""
    body: str | None = None
    body_complete: bool = True
    error: str | None = None


@dataclass(slots=True)
class PageSignals:
    title: str | None
    canonical: str | None
    visible_chars: int
    has_spa_root: bool


@dataclass(slots=True)
class LinkCheckResult:
    score: int
    status: int
    final_url: str
    redirect_chain: list[str] = field(default_factory=list)
    needs_js: bool = False
    title: str | None = None
    canonical: str | None = None
    error: str | None = None


def build_keywords(title: str | None, organizer: str | None) -> list[str]:
    keywords: list[str] = []
    if title:
        keywords.extend([word for word in _words(title) if len(word) > 3][:5])
    if organizer:
        keywords.extend(word for word in _words(organizer) if len(word) > 2)
    return list(dict.fromkeys(keywords))


async def check_url(
    url: str,
    keywords: Sequence[str] = (),
    *,
    client: httpx.AsyncClient | None = None,
    policy: LinkHealthPolicy | None = None,
    timeout_seconds: float = 12.0,
    body_timeout_seconds: float = 5.0,
    user_agent: str = DEFAULT_USER_AGENT,
) -> LinkCheckResult:
    policy = policy or DEFAULT_POLICY
    with tracer.start_as_current_span("events.check_url") as span:
        span.set_attribute("link.url", url)
        if client is not None:
            outcome = await fetch_url(
                client,
                url,
                policy=policy,
                timeout_seconds=timeout_seconds,
                body_timeout_seconds=body_timeout_seconds,
                user_agent=user_agent,
            )
        else:
            async with httpx.AsyncClient(
                timeout=timeout_seconds,
                follow_redirects=True,
                max_redirects=policy.max_redirects,
            ) as temp_client:
                outcome = await fetch_url(
                    temp_client,
                    url,
                    policy=policy,
                    timeout_seconds=timeout_seconds,
                    body_timeout_seconds=body_timeout_seconds,
                    user_agent=user_agent,
                )

        result = score_fetch(outcome, keywords, policy=policy)
        span.set_attribute("link.status", result.status)
        span.set_attribute("link.score", result.score)
        span.set_attribute("link.redirect_hops", len(result.redirect_chain))
        return result


async def fetch_url(
    client: httpx.AsyncClient,
    url: str,
    *,
    policy: LinkHealthPolicy = DEFAULT_POLICY,
    timeout_seconds: float = 12.0,
    body_timeout_seconds: float = 5.0,
    user_agent: str = DEFAULT_USER_AGENT,
) -> FetchOutcome:
    """Issue one GET (following redirects) and capture what scoring needs.

    The whole exchange runs under ``timeout_seconds``. Once headers are in,
    the body gets ``body_timeout_seconds``; if it is not complete by then the
    bytes read so far are kept and ``body_complete`` is False.
    """
    headers = {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
    }
    try:
        return await asyncio.wait_for(
            _fetch(
                client,
                url,
                headers=headers,
                max_body_bytes=policy.max_body_bytes,
                body_timeout_seconds=min(body_timeout_seconds, timeout_seconds),
            ),
            timeout=timeout_seconds,
        )
    except TimeoutError:
        return FetchOutcome(requested_url=url, final_url=url, error=f"request timed out after {timeout_seconds:g}s")
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        return FetchOutcome(requested_url=url, final_url=url, error=str(exc) or exc.__class__.__name__)


def score_fetch(
    outcome: FetchOutcome,
    keywords: Sequence[str] = (),
    *,
    policy: LinkHealthPolicy = DEFAULT_POLICY,
) -> LinkCheckResult:
    if outcome.error is not None:
        return LinkCheckResult(score=0, status=0, final_url=outcome.requested_url, error=outcome.error)

    status = outcome.status
    if status >= 400:
        return LinkCheckResult(
            score=0,
            status=status,
            final_url=outcome.final_url,
            redirect_chain=list(outcome.redirect_chain),
        )

    body = outcome.body or ""
    signals = parse_page(body, base_url=outcome.final_url)

    score = _base_score(status, policy)
    score += _keyword_bonus(signals.title, keywords, policy)
    if signals.canonical:
        score += policy.canonical_bonus
    if len(body) > policy.content_bonus_min_chars:
        score += policy.content_bonus

    # An HTML response with no title and no visible text is an unverifiable shell,
    # whether or not it carries a known framework root.
    empty_shell = _is_html_like(outcome.content_type) and signals.title is None and signals.visible_chars == 0
    needs_js = empty_shell or (
        signals.has_spa_root
        and len(body) < policy.spa_max_body_chars
        and signals.visible_chars <= policy.spa_max_visible_chars
    )
    if needs_js:
        score -= policy.spa_penalty

    if outcome.redirect_chain:
        score -= min(policy.redirect_penalty_max, policy.redirect_penalty_per_hop * len(outcome.redirect_chain))

    return LinkCheckResult(
        score=max(0, min(100, score)),
        status=status,
        final_url=outcome.final_url,
        redirect_chain=list(outcome.redirect_chain),
        needs_js=needs_js,
        title=signals.title,
        canonical=signals.canonical,
    )


def parse_page(html: str, *, base_url: str) -> PageSignals:
    if not html.strip():
        return PageSignals(title=None, canonical=None, visible_chars=0, has_spa_root=False)

    tree = HTMLParser(html)
    title_node = tree.css_first("title")
    title = " ".join(title_node.text().split()).lower() if title_node is not None else ""

    canonical: str | None = None
    for node in tree.css("link[rel]"):
        rel_tokens = (node.attributes.get("rel") or "").lower().split()
        href = (node.attributes.get("href") or "").strip()
        if "canonical" in rel_tokens and href:
            canonical = _resolve_canonical(href, base_url)
            break

    has_spa_root = tree.css_first(SPA_ROOT_SELECTOR) is not None
    for node in tree.css("script, style, noscript, template"):
        node.decompose()
    body = tree.body
    visible_text = body.text(separator=" ") if body is not None else ""

    return PageSignals(
        title=title or None,
        canonical=canonical,
        visible_chars=len("".join(visible_text.split())),
        has_spa_root=has_spa_root,
    )


async def _fetch(
    client: httpx.AsyncClient,
    url: str,
    *,
    headers: dict[str, str],
    max_body_bytes: int,
    body_timeout_seconds: float,
) -> FetchOutcome:
    async with client.stream("GET", url, headers=headers, follow_redirects=True) as response:
        content_type = response.headers.get("content-type", "").lower()
        outcome = FetchOutcome(
            requested_url=url,
            final_url=str(response.url),
            status=int(response.status_code),
            redirect_chain=_redirect_chain(response),
            content_type=content_type,
        )
        if outcome.status < 400 and _is_html_like(content_type):
            raw, outcome.body_complete = await _read_body(
                response,
                max_bytes=max_body_bytes,
                timeout_seconds=body_timeout_seconds,
            )
            outcome.body = _decode_body(raw, response.charset_encoding)
        return outcome


async def _read_body(response: httpx.Response, *, max_bytes: int, timeout_seconds: float) -> tuple[bytes, bool]:
    chunks: list[bytes] = []

    async def consume() -> bool:
        size = 0
        async for chunk in response.aiter_bytes():
            chunks.append(chunk)
            size += len(chunk)
            if size >= max_bytes:
                return False
        return True

    try:
        complete = await asyncio.wait_for(consume(), timeout=timeout_seconds)
    except (TimeoutError, httpx.TransportError):
        complete = False
    return b"".join(chunks)[:max_bytes], complete


def _decode_body(raw: bytes, charset: str | None) -> str:
    try:
        return raw.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return raw.decode("utf-8", errors="replace")


def _redirect_chain(response: httpx.Response) -> list[str]:
    if not response.history:
        return []
    hops = [*response.history[1:], response]
    return [str(hop.url) for hop in hops]


def _is_html_like(content_type: str) -> bool:
    if not content_type:
        return True
    return any(marker in content_type for marker in HTML_CONTENT_MARKERS)


def _base_score(status: int, policy: LinkHealthPolicy) -> int:
    if status in OK_STATUS_CODES:
        return policy.ok_base_score
    if 200 <= status < 300:
        return policy.other_success_base_score
    if 300 <= status < 400:
        return policy.redirect_status_base_score
    return 0


def _keyword_bonus(title: str | None, keywords: Iterable[str], policy: LinkHealthPolicy) -> int:
    cleaned = list(dict.fromkeys(keyword.strip().lower() for keyword in keywords if keyword and keyword.strip()))
    if not title or not cleaned:
        return 0
    matched = sum(1 for keyword in cleaned if keyword in title)
    return round(policy.keyword_bonus_max * matched / len(cleaned))


def _resolve_canonical(href: str, base_url: str) -> str | None:
    resolved = urljoin(base_url, href)
    parts = urlsplit(resolved)
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        return None
    return resolved


def _words(text: str) -> list[str]:
    return [word for word in _NON_WORD_RE.sub(" ", text.lower()).split() if word]
