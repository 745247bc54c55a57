from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class Collection(BaseModel):
    id: str
    user_id: str
    name: str
    created_at: datetime


class Note(BaseModel):
    id: str
    user_id: str
    collection_id: str | None = None
    title: str | None = None
    content: str
    summary: str | None = None
    created_at: datetime
    updated_at: datetime
    tags: list[str] = Field(default_factory=list)


class NoteMatch(BaseModel):
    """nearest-neighbour 查询结果：note 行 + 余弦相似度。"""

    id: str
    collection_id: str | None = None
    title: str | None = None
    content: str
    summary: str | None = None
    updated_at: datetime
    similarity: float


class EmbeddingDimensionError(RuntimeError):
    """embedding 维度与存储不一致（配置错误，不是调用方输入问题）。"""
