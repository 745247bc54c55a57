from __future__ import annotations

from fastapi.testclient import TestClient

from knowledge_os.infra.guardrails import GuardrailStore
from knowledge_os.notes import policies

from tests.fakes import FakeClock
from tests.fakes import auth_headers


def test_user_routes_require_bearer_token(client: TestClient) -> None:
    assert client.get("/app/data").status_code == 401
    assert client.get("/app/data", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_user_data_is_scoped_to_token_subject(client: TestClient) -> None:
    created = client.post("/app/notes", json={"content": "mine", "tags_csv": "a"}, headers=auth_headers("user-1"))
    assert created.status_code == 200
    assert created.json()["tags"] == ["a"]

    mine = client.get("/app/data", headers=auth_headers("user-1")).json()
    theirs = client.get("/app/data", headers=auth_headers("user-2")).json()
    assert [n["content"] for n in mine["notes"]] == ["mine"]
    assert theirs["notes"] == []


def test_demo_routes_need_no_token(client: TestClient) -> None:
    response = client.post("/demo/notes", json={"content": "hello demo"})
    assert response.status_code == 200
    assert response.json()["user_id"] == "demo"
    assert client.get("/demo/notes", params={"q": "HELLO"}).json()[0]["content"] == "hello demo"


def test_invalid_input_is_400(client: TestClient) -> None:
    response = client.post("/demo/notes", json={"content": "   "})
    assert response.status_code == 400
    assert response.json()["detail"] == "Content is required"


def test_unknown_note_is_404(client: TestClient) -> None:
    assert client.delete("/demo/notes/missing").status_code == 404
    response = client.patch("/demo/notes/missing/collection", json={"collection_id": "nope"})
    assert response.status_code == 404


def test_delete_and_restore(client: TestClient) -> None:
    note = client.post("/demo/notes", json={"content": "undo me", "tags_csv": "t1"}).json()
    deleted = client.delete(f"/demo/notes/{note['id']}").json()

    restored = client.post(
        "/demo/notes/restore",
        json={
            "id": deleted["id"],
            "title": deleted["title"],
            "content": deleted["content"],
            "summary": deleted["summary"],
            "collection_id": deleted["collection_id"],
            "tag_names": deleted["tags"],
        },
    )
    assert restored.status_code == 200
    assert restored.json()["tags"] == ["t1"]


def test_blank_collection_name_returns_null(client: TestClient) -> None:
    assert client.post("/demo/collections", json={"name": " "}).json() is None
    assert client.post("/demo/collections", json={"name": "Ideas"}).json()["name"] == "Ideas"


def test_enrich_then_duplicate_is_429_with_retry_after(client: TestClient, clock: FakeClock) -> None:
    note = client.post("/demo/notes", json={"content": "enrich this"}).json()

    first = client.post(f"/demo/notes/{note['id']}/enrich")
    assert first.status_code == 200
    assert first.json()["note"]["summary"] == "Fake summary."

    clock.advance(1_000)
    second = client.post(f"/demo/notes/{note['id']}/enrich")
    assert second.status_code == 429
    body = second.json()
    assert body["kind"] == "duplicate_in_flight"
    assert body["retry_after_ms"] == policies.ENRICH_DEDUPE_MS - 1_000
    assert second.headers["Retry-After"] == "44"


def test_enrich_undo(client: TestClient) -> None:
    note = client.post("/demo/notes", json={"title": "Before", "content": "body"}).json()
    enriched = client.post(f"/demo/notes/{note['id']}/enrich").json()

    undone = client.post(
        f"/demo/notes/{note['id']}/enrich/undo",
        json={
            "previous_title": enriched["previous_title"],
            "previous_summary": enriched["previous_summary"],
            "previous_tag_names": enriched["previous_tag_names"],
        },
    )
    assert undone.status_code == 200
    assert undone.json()["title"] == "Before"
    assert undone.json()["tags"] == []


def test_semantic_search_oversized_query_is_413(client: TestClient) -> None:
    response = client.get("/demo/search/semantic", params={"q": "x" * 501})
    assert response.status_code == 413
    assert response.json()["kind"] == "request_too_large"
    assert "Retry-After" not in response.headers


def test_semantic_search_budget_exhaustion_is_429(client: TestClient, guardrails: GuardrailStore) -> None:
    policy = policies.search_policy("demo")
    for i in range(policy.max_requests):
        assert client.get("/demo/search/semantic", params={"q": f"query {i}"}).status_code == 200
    response = client.get("/demo/search/semantic", params={"q": "one more"})
    assert response.status_code == 429
    assert response.json()["kind"] == "rate_limited"

    window = guardrails.get_window("demo", policies.SEARCH_ACTION)
    assert window is not None
    assert window.request_count == policy.max_requests


def test_demo_note_creation_is_capped(client: TestClient) -> None:
    policy = policies.create_note_policy("demo")
    too_big = client.post("/demo/notes", json={"content": "x" * (policy.max_chars_per_request + 1)})
    assert too_big.status_code == 413

    for i in range(policy.max_requests):
        assert client.post("/demo/notes", json={"content": f"demo {i}"}).status_code == 200
    response = client.post("/demo/notes", json={"content": "over the cap"})
    assert response.status_code == 429
    assert response.json()["kind"] == "rate_limited"
    assert "Retry-After" in response.headers
    assert len(client.get("/demo/data").json()["notes"]) == policy.max_requests


def test_semantic_search_short_query_is_empty(client: TestClient) -> None:
    assert client.get("/demo/search/semantic", params={"q": "a"}).json() == []
