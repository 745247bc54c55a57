"""
本地 Mock OpenAI-compatible LLM server。

用途：
- 在没有真实 API key 的情况下，本地跑通 enrich / semantic search 闭环
- chat completions：从 prompt 里的 NOTE 推导标题/摘要/标签，返回 JSON
- embeddings：词袋哈希向量（确定性；共享词越多，余弦相似度越高）

启动：
  python -m knowledge_os.dev.mock_openai_server
"""

from __future__ import annotations

import hashlib
import json
import math
import os
import re
from collections.abc import Sequence

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel, Field

from knowledge_os.llm.client import ChatMessage

MOCK_EMBEDDING_DIM = int(os.environ.get("MOCK_EMBEDDING_DIM", "1536"))

_WORD = re.compile(r"[a-z0-9]+")
_STOPWORDS = {"the", "and", "for", "with", "that", "this", "from", "are", "was", "you", "but", "not"}


class ChatCompletionRequest(BaseModel):
    model: str
    messages: list[ChatMessage] = Field(default_factory=list)


class EmbeddingRequest(BaseModel):
    model: str
    input: str | list[str]


def _extract_note_from_prompt(prompt: str) -> str:
    """
    从 enrichment prompt 里取出 NOTE 正文。

    形如：
      NOTE:
      <content>

      Return ONLY JSON. ...
    """
    if "NOTE:\n" not in prompt:
        raise ValueError("Mock server expects a `NOTE:` section in the user prompt")
    body = prompt.split("NOTE:\n", 1)[1]
    return body.split("\n\nReturn ONLY JSON", 1)[0].strip()


def _build_mock_enrichment_json(note: str) -> str:
    words = [w for w in _WORD.findall(note.lower()) if len(w) > 3 and w not in _STOPWORDS]
    tags = list(dict.fromkeys(words))[:5]
    first_line = note.splitlines()[0] if note else ""
    return json.dumps(
        {
            "title": f"[MOCK] {first_line}"[:60],
            "summary": " ".join(note.split())[:200],
            "tags": tags,
        }
    )


def _decide_mock_response(messages: Sequence[ChatMessage]) -> str:
    user_texts = [m.content for m in messages if m.role == "user"]
    if not user_texts:
        raise ValueError("Mock server expects at least one user message")
    prompt = "\n".join(user_texts)
    return _build_mock_enrichment_json(note=_extract_note_from_prompt(prompt=prompt))


def mock_embedding(text: str, dim: int = MOCK_EMBEDDING_DIM) -> list[float]:
    if dim <= 0:
        raise ValueError("dim must be > 0")
    vector = [0.0] * dim
    for word in _WORD.findall(text.lower()):
        digest = hashlib.sha256(word.encode("utf-8")).digest()
        vector[int.from_bytes(digest[:4], "big") % dim] += 1.0
    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0:
        return vector
    return [v / norm for v in vector]


app = FastAPI(title="Mock OpenAI-compatible LLM", version="0.1.0")


@app.post("/v1/chat/completions")
async def chat_completions(req: ChatCompletionRequest) -> dict[str, object]:
    content = _decide_mock_response(messages=req.messages)
    return {
        "id": "mock-completion",
        "object": "chat.completion",
        "created": 0,
        "model": req.model,
        "choices": [
            {"index": 0, "finish_reason": "stop", "message": {"role": "assistant", "content": content}},
        ],
    }


@app.post("/v1/embeddings")
async def embeddings(req: EmbeddingRequest) -> dict[str, object]:
    texts = [req.input] if isinstance(req.input, str) else req.input
    return {
        "object": "list",
        "model": req.model,
        "data": [
            {"object": "embedding", "index": i, "embedding": mock_embedding(text=text)}
            for i, text in enumerate(texts)
        ],
        "usage": {"prompt_tokens": 0, "total_tokens": 0},
    }


def main() -> None:
    uvicorn.run(app, host="127.0.0.1", port=9001)


if __name__ == "__main__":
    main()
