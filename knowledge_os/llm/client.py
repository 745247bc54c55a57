"""
LLM Client（基于 OpenAI SDK，OpenAI-compatible API）。

目标：
- **尽量薄**：只做协议适配与错误处理
- **两个能力**：chat completion（摘要/打标签）与 embeddings（语义检索）
- 出错直接抛异常，由上游决定如何提示用户（不要吞异常）
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

import httpx
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ChatMessage(BaseModel):
    """OpenAI chat message 的最小结构。"""

    role: str
    content: str


class LLMClient(Protocol):
    """service 层依赖的最小接口（测试里用 fake 实现替换）。"""

    async def complete_text(self, messages: Sequence[ChatMessage]) -> str: ...

    async def embed_text(self, text: str) -> list[float]: ...


def _normalize_base_url(base_url: str) -> str:
    normalized = base_url.rstrip("/")
    if normalized.endswith("/v1"):
        return normalized
    return f"{normalized}/v1"


class OpenAICompatLLMClient:
    """通过 OpenAI-compatible 网关调用 chat 与 embedding 模型。"""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        http_client: httpx.AsyncClient,
        model: str,
        embedding_model: str,
    ) -> None:
        """
        - api_key: LLM API key
        - base_url: OpenAI-compatible base URL
        - http_client: 复用 httpx.AsyncClient 连接池
        - model: chat 模型名（摘要/打标签）
        - embedding_model: embedding 模型名（例如 `text-embedding-3-small`）
        """
        self._base_url = _normalize_base_url(base_url=base_url)
        self._model = model
        self._embedding_model = embedding_model
        self._client = AsyncOpenAI(api_key=api_key, base_url=self._base_url, http_client=http_client)

    async def complete_text(self, messages: Sequence[ChatMessage]) -> str:
        """调用 chat completion 并返回纯文本 content。"""
        try:
            logger.info(f"LLM request: model={self._model}, messages={len(messages)} msg(s)")
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[m.model_dump() for m in messages],
            )
        except OpenAIError as exc:
            logger.error(f"LLM API error: {exc}")
            raise
        except httpx.HTTPError as exc:
            logger.error(f"LLM HTTP error: {exc}")
            raise

        content = response.choices[0].message.content
        if content is None:
            logger.error("LLM returned None content")
            raise RuntimeError("LLM returned None content")

        logger.info(f"LLM response: {len(content)} chars")
        return str(content)

    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        """
        批量计算 embedding，返回顺序与输入一致。

        - 空输入直接报错（调用方应先判断）
        - 返回条数与输入不一致视为上游异常
        """
        if not texts:
            raise ValueError("texts must not be empty")
        try:
            logger.info(f"Embedding request: model={self._embedding_model}, texts={len(texts)}")
            response = await self._client.embeddings.create(model=self._embedding_model, input=list(texts))
        except OpenAIError as exc:
            logger.error(f"Embedding API error: {exc}")
            raise
        except httpx.HTTPError as exc:
            logger.error(f"Embedding HTTP error: {exc}")
            raise

        items = sorted(response.data, key=lambda item: item.index)
        if len(items) != len(texts):
            raise RuntimeError(f"Embedding count mismatch: {len(items)} != {len(texts)}")
        return [list(item.embedding) for item in items]

    async def embed_text(self, text: str) -> list[float]:
        embeddings = await self.embed_texts(texts=[text])
        return embeddings[0]
