from __future__ import annotations

from collections.abc import Sequence

from events_pipeline.core.policy import DEFAULT_POLICY, LinkHealthPolicy

GONE_STATUS_CODES = {404, 410}


def should_tombstone(
    status: int,
    redirect_chain: Sequence[str],
    score: int,
    *,
    policy: LinkHealthPolicy | None = None,
) -> bool:
    policy = policy or DEFAULT_POLICY
    if len(redirect_chain) > policy.tombstone_max_redirect_hops:
        return True
    if status in GONE_STATUS_CODES and score < policy.tombstone_not_found_max_score:
        return True
    return status >= 500 and score < policy.tombstone_server_error_max_score


def tombstone_reason(status: int, redirect_chain: Sequence[str], score: int) -> str:
    return f"status={status} score={score} redirect_hops={len(redirect_chain)}"
