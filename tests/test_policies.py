from __future__ import annotations

from knowledge_os.notes import policies


def test_demo_policies_are_stricter_than_user() -> None:
    for lookup in (policies.enrich_policy, policies.search_policy):
        user, demo = lookup("user"), lookup("demo")
        assert demo.window_ms == user.window_ms
        assert demo.max_requests < user.max_requests
        assert demo.max_chars_per_window < user.max_chars_per_window


def test_enrich_policy_values() -> None:
    user = policies.enrich_policy("user")
    assert (user.window_ms, user.max_requests, user.max_chars_per_request) == (3_600_000, 24, 20_000)
    assert policies.enrich_policy("demo").max_chars_per_request == 8_000


def test_search_requests_are_capped_at_500_chars() -> None:
    assert policies.search_policy("user").max_chars_per_request == 500
    assert policies.search_policy("demo").max_chars_per_request == 500
