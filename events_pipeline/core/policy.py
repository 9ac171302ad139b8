from __future__ import annotations

import json
from dataclasses import dataclass, fields, replace
from typing import Any


@dataclass(slots=True, frozen=True)
class LinkHealthPolicy:
    """Scoring and tombstone knobs for link health checks.

    Values are policy defaults, not derived quantities. Scores are additive and
    clamped to 0..100 after every adjustment is applied.
    """

    ok_base_score: int = 45
    other_success_base_score: int = 35
    redirect_status_base_score: int = 25
    keyword_bonus_max: int = 30
    canonical_bonus: int = 10
    content_bonus: int = 5
    content_bonus_min_chars: int = 1000
    spa_penalty: int = 30
    spa_max_body_chars: int = 2000
    spa_max_visible_chars: int = 80
    redirect_penalty_per_hop: int = 6
    redirect_penalty_max: int = 20
    max_redirects: int = 10
    max_body_bytes: int = 512_000
    tombstone_not_found_max_score: int = 10
    tombstone_server_error_max_score: int = 5
    tombstone_max_redirect_hops: int = 5
    publish_score_min: int = 50


DEFAULT_POLICY = LinkHealthPolicy()

_POLICY_FIELDS = {field.name for field in fields(LinkHealthPolicy)}


def parse_policy_overrides(raw: str | None, *, base: LinkHealthPolicy = DEFAULT_POLICY) -> LinkHealthPolicy:
    """Apply a JSON object of integer overrides on top of ``base``.

    Unknown keys and non-integer values are ignored.
    """
    if not raw:
        return base
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        return base
    if not isinstance(decoded, dict):
        return base

    overrides: dict[str, int] = {}
    for key, value in decoded.items():
        if key not in _POLICY_FIELDS:
            continue
        coerced = _coerce_non_negative_int(value)
        if coerced is not None:
            overrides[key] = coerced
    if not overrides:
        return base
    return replace(base, **overrides)


def _coerce_non_negative_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, float) and value.is_integer():
        return max(0, int(value))
    return None
