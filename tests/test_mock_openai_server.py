from __future__ import annotations

import json
import math

from fastapi.testclient import TestClient

from knowledge_os.dev.mock_openai_server import app
from knowledge_os.dev.mock_openai_server import mock_embedding
from knowledge_os.notes.enrichment import _enrich_user_prompt
from knowledge_os.notes.enrichment import parse_enrichment


def test_mock_chat_completion_returns_parseable_enrichment() -> None:
    client = TestClient(app)
    note = "Kubernetes upgrade plan\nDrain nodes before upgrading kubelet."
    response = client.post(
        "/v1/chat/completions",
        json={"model": "m", "messages": [{"role": "user", "content": _enrich_user_prompt(content=note)}]},
    )
    assert response.status_code == 200
    content = response.json()["choices"][0]["message"]["content"]
    enrichment = parse_enrichment(raw=content, content=note)
    assert enrichment.title.startswith("[MOCK] Kubernetes upgrade plan")
    assert "kubernetes" in enrichment.tags
    assert json.loads(content)["summary"].startswith("Kubernetes upgrade plan Drain")


def test_mock_embeddings_preserve_order_and_dimension() -> None:
    client = TestClient(app)
    response = client.post("/v1/embeddings", json={"model": "e", "input": ["alpha", "beta"]})
    data = response.json()["data"]
    assert [item["index"] for item in data] == [0, 1]
    assert data[0]["embedding"] == mock_embedding("alpha")


def test_mock_embedding_is_unit_length_and_deterministic() -> None:
    vector = mock_embedding("postgres vector index", dim=32)
    assert math.isclose(sum(v * v for v in vector), 1.0)
    assert vector == mock_embedding("Postgres VECTOR index", dim=32)
    assert mock_embedding("", dim=8) == [0.0] * 8
