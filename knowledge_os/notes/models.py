"""
Notes 领域模型（Pydantic）。

用途：
- service 各操作的输入/输出结构
- HTTP 层直接复用为 request/response schema
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from knowledge_os.storage.models import Collection
from knowledge_os.storage.models import Note

WorkspaceMode = Literal["user", "demo"]
MatchSource = Literal["title", "summary", "content", "semantic"]

# demo 工作区所有访客共享同一个 user_id（以及同一份护栏额度）
DEMO_USER_ID = "demo"


class Caller(BaseModel):
    """一次请求的调用方：数据归属 + 适用的护栏策略。"""

    user_id: str
    mode: WorkspaceMode


class AppData(BaseModel):
    user_id: str
    collections: list[Collection] = Field(default_factory=list)
    notes: list[Note] = Field(default_factory=list)


class CreateCollectionRequest(BaseModel):
    name: str


class CreateNoteRequest(BaseModel):
    title: str | None = None
    content: str
    collection_id: str | None = None
    tags_csv: str = ""


class RestoreNoteRequest(BaseModel):
    """删除后"撤销"用的快照（通常就是 delete 接口返回的 note）。"""

    id: str
    title: str | None = None
    content: str
    summary: str | None = None
    collection_id: str | None = None
    tag_names: list[str] = Field(default_factory=list)


class UpdateNoteCollectionRequest(BaseModel):
    collection_id: str | None = None


class UndoEnrichRequest(BaseModel):
    previous_title: str | None = None
    previous_summary: str | None = None
    previous_tag_names: list[str] = Field(default_factory=list)


class NoteEnrichment(BaseModel):
    """LLM 摘要/打标签的结构化结果（已做长度与格式兜底）。"""

    title: str
    summary: str
    tags: list[str] = Field(default_factory=list)


class EnrichResult(BaseModel):
    """enrich 之后的 note，以及撤销所需的旧值。"""

    note: Note
    previous_title: str | None = None
    previous_summary: str | None = None
    previous_tag_names: list[str] = Field(default_factory=list)


class SearchHit(BaseModel):
    id: str
    collection_id: str | None = None
    title: str | None = None
    summary: str | None = None
    content: str
    similarity: float
    snippet: str
    matched_in: MatchSource
