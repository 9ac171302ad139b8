from events_pipeline.core.policy import DEFAULT_POLICY, parse_policy_overrides


def test_parse_policy_overrides_applies_known_integer_keys() -> None:
    policy = parse_policy_overrides('{"spa_penalty": 40, "publish_score_min": 60.0}')
    assert policy.spa_penalty == 40
    assert policy.publish_score_min == 60
    assert policy.ok_base_score == DEFAULT_POLICY.ok_base_score


def test_parse_policy_overrides_ignores_unknown_and_invalid_values() -> None:
    policy = parse_policy_overrides('{"unknown": 1, "spa_penalty": "high", "canonical_bonus": true}')
    assert policy == DEFAULT_POLICY


def test_parse_policy_overrides_tolerates_bad_json() -> None:
    assert parse_policy_overrides("{not json") is DEFAULT_POLICY
    assert parse_policy_overrides("[1, 2]") is DEFAULT_POLICY
    assert parse_policy_overrides(None) is DEFAULT_POLICY


def test_parse_policy_overrides_clamps_negative_values() -> None:
    assert parse_policy_overrides('{"redirect_penalty_max": -5}').redirect_penalty_max == 0
