"""
Note 仓储抽象。

- `NoteRepository` Protocol：service 层只依赖这个接口（async）
- `PgNoteRepository`：Postgres + pgvector，阻塞调用丢到线程池（anyio.to_thread）
- `InMemoryNoteRepository`：demo 工作区与单元测试使用；不持久化，进程重启即清空

所有方法都带 user_id：仓储层负责数据隔离，不信任上游传入的 note_id/collection_id。
"""

from __future__ import annotations

import math
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

import anyio

from knowledge_os.storage import pg
from knowledge_os.storage.models import Collection
from knowledge_os.storage.models import EmbeddingDimensionError
from knowledge_os.storage.models import Note
from knowledge_os.storage.models import NoteMatch


class NoteRepository(Protocol):
    async def list_collections(self, user_id: str) -> list[Collection]: ...

    async def create_collection(self, user_id: str, name: str) -> Collection: ...

    async def collection_exists(self, user_id: str, collection_id: str) -> bool: ...

    async def list_notes(self, user_id: str) -> list[Note]: ...

    async def get_note(self, user_id: str, note_id: str) -> Note | None: ...

    async def insert_note(
        self,
        user_id: str,
        note_id: str | None,
        title: str | None,
        content: str,
        summary: str | None,
        collection_id: str | None,
    ) -> str: ...

    async def delete_note(self, user_id: str, note_id: str) -> bool: ...

    async def update_note_collection(self, user_id: str, note_id: str, collection_id: str | None) -> bool: ...

    async def update_note_enrichment(
        self,
        user_id: str,
        note_id: str,
        title: str | None,
        summary: str | None,
        embedding: Sequence[float] | None,
    ) -> bool: ...

    async def add_note_tags(self, user_id: str, note_id: str, tags: Sequence[str]) -> None: ...

    async def replace_note_tags(self, user_id: str, note_id: str, tags: Sequence[str]) -> None: ...

    async def match_notes(self, user_id: str, query_embedding: Sequence[float], match_count: int) -> list[NoteMatch]: ...


class PgNoteRepository:
    """把 `storage.pg` 的同步函数包装成 async 接口。"""

    def __init__(self, client: pg.NotesStorageClient) -> None:
        self._client = client

    async def ensure_schema(self) -> None:
        await anyio.to_thread.run_sync(pg.ensure_schema, self._client)

    async def list_collections(self, user_id: str) -> list[Collection]:
        return await anyio.to_thread.run_sync(pg.list_collections, self._client, user_id)

    async def create_collection(self, user_id: str, name: str) -> Collection:
        return await anyio.to_thread.run_sync(pg.insert_collection, self._client, user_id, name)

    async def collection_exists(self, user_id: str, collection_id: str) -> bool:
        return await anyio.to_thread.run_sync(pg.collection_exists, self._client, user_id, collection_id)

    async def list_notes(self, user_id: str) -> list[Note]:
        return await anyio.to_thread.run_sync(pg.list_notes, self._client, user_id)

    async def get_note(self, user_id: str, note_id: str) -> Note | None:
        return await anyio.to_thread.run_sync(pg.get_note, self._client, user_id, note_id)

    async def insert_note(
        self,
        user_id: str,
        note_id: str | None,
        title: str | None,
        content: str,
        summary: str | None,
        collection_id: str | None,
    ) -> str:
        return await anyio.to_thread.run_sync(
            pg.insert_note,
            self._client,
            user_id,
            note_id,
            title,
            content,
            summary,
            collection_id,
        )

    async def delete_note(self, user_id: str, note_id: str) -> bool:
        return await anyio.to_thread.run_sync(pg.delete_note, self._client, user_id, note_id)

    async def update_note_collection(self, user_id: str, note_id: str, collection_id: str | None) -> bool:
        return await anyio.to_thread.run_sync(pg.update_note_collection, self._client, user_id, note_id, collection_id)

    async def update_note_enrichment(
        self,
        user_id: str,
        note_id: str,
        title: str | None,
        summary: str | None,
        embedding: Sequence[float] | None,
    ) -> bool:
        return await anyio.to_thread.run_sync(
            pg.update_note_enrichment,
            self._client,
            user_id,
            note_id,
            title,
            summary,
            embedding,
        )

    async def add_note_tags(self, user_id: str, note_id: str, tags: Sequence[str]) -> None:
        await anyio.to_thread.run_sync(pg.add_note_tags, self._client, user_id, note_id, list(tags))

    async def replace_note_tags(self, user_id: str, note_id: str, tags: Sequence[str]) -> None:
        await anyio.to_thread.run_sync(pg.replace_note_tags, self._client, user_id, note_id, list(tags))

    async def match_notes(self, user_id: str, query_embedding: Sequence[float], match_count: int) -> list[NoteMatch]:
        return await anyio.to_thread.run_sync(pg.match_notes, self._client, user_id, query_embedding, match_count)


@dataclass
class _StoredNote:
    note: Note
    embedding: list[float] | None = None


@dataclass
class InMemoryNoteRepository:
    """内存仓储：只用于 demo/开发/测试，last-write-wins，不做持久化。"""

    collections: dict[str, Collection] = field(default_factory=dict)
    notes: dict[str, _StoredNote] = field(default_factory=dict)

    async def list_collections(self, user_id: str) -> list[Collection]:
        owned = [c for c in self.collections.values() if c.user_id == user_id]
        return sorted(owned, key=lambda c: c.created_at)

    async def create_collection(self, user_id: str, name: str) -> Collection:
        if not name:
            raise ValueError("name must not be empty")
        collection = Collection(id=str(uuid.uuid4()), user_id=user_id, name=name, created_at=_utcnow())
        self.collections[collection.id] = collection
        return collection

    async def collection_exists(self, user_id: str, collection_id: str) -> bool:
        collection = self.collections.get(collection_id)
        return collection is not None and collection.user_id == user_id

    async def list_notes(self, user_id: str) -> list[Note]:
        owned = [s.note.model_copy(deep=True) for s in self.notes.values() if s.note.user_id == user_id]
        return sorted(owned, key=lambda n: n.updated_at, reverse=True)

    async def get_note(self, user_id: str, note_id: str) -> Note | None:
        stored = self._owned(user_id=user_id, note_id=note_id)
        if stored is None:
            return None
        return stored.note.model_copy(deep=True)

    async def insert_note(
        self,
        user_id: str,
        note_id: str | None,
        title: str | None,
        content: str,
        summary: str | None,
        collection_id: str | None,
    ) -> str:
        if not content:
            raise ValueError("content must not be empty")
        new_id = note_id or str(uuid.uuid4())
        if new_id in self.notes:
            raise ValueError(f"Note already exists: {new_id}")
        now = _utcnow()
        self.notes[new_id] = _StoredNote(
            note=Note(
                id=new_id,
                user_id=user_id,
                collection_id=collection_id,
                title=title,
                content=content,
                summary=summary,
                created_at=now,
                updated_at=now,
            )
        )
        return new_id

    async def delete_note(self, user_id: str, note_id: str) -> bool:
        if self._owned(user_id=user_id, note_id=note_id) is None:
            return False
        del self.notes[note_id]
        return True

    async def update_note_collection(self, user_id: str, note_id: str, collection_id: str | None) -> bool:
        stored = self._owned(user_id=user_id, note_id=note_id)
        if stored is None:
            return False
        stored.note = stored.note.model_copy(update={"collection_id": collection_id, "updated_at": _utcnow()})
        return True

    async def update_note_enrichment(
        self,
        user_id: str,
        note_id: str,
        title: str | None,
        summary: str | None,
        embedding: Sequence[float] | None,
    ) -> bool:
        stored = self._owned(user_id=user_id, note_id=note_id)
        if stored is None:
            return False
        stored.note = stored.note.model_copy(update={"title": title, "summary": summary, "updated_at": _utcnow()})
        stored.embedding = list(embedding) if embedding is not None else None
        return True

    async def add_note_tags(self, user_id: str, note_id: str, tags: Sequence[str]) -> None:
        stored = self._owned(user_id=user_id, note_id=note_id)
        if stored is None:
            raise LookupError(f"Note not found: {note_id}")
        merged = list(dict.fromkeys([*stored.note.tags, *tags]))
        stored.note = stored.note.model_copy(update={"tags": sorted(merged)})

    async def replace_note_tags(self, user_id: str, note_id: str, tags: Sequence[str]) -> None:
        stored = self._owned(user_id=user_id, note_id=note_id)
        if stored is None:
            raise LookupError(f"Note not found: {note_id}")
        stored.note = stored.note.model_copy(update={"tags": sorted(dict.fromkeys(tags))})

    async def match_notes(self, user_id: str, query_embedding: Sequence[float], match_count: int) -> list[NoteMatch]:
        if match_count <= 0:
            raise ValueError("match_count must be > 0")
        scored: list[NoteMatch] = []
        for stored in self.notes.values():
            if stored.note.user_id != user_id or stored.embedding is None:
                continue
            note = stored.note
            scored.append(
                NoteMatch(
                    id=note.id,
                    collection_id=note.collection_id,
                    title=note.title,
                    content=note.content,
                    summary=note.summary,
                    updated_at=note.updated_at,
                    similarity=_cosine_similarity(query_embedding, stored.embedding),
                )
            )
        scored.sort(key=lambda m: m.similarity, reverse=True)
        return scored[:match_count]

    def embedding_of(self, note_id: str) -> list[float] | None:
        stored = self.notes.get(note_id)
        return None if stored is None else stored.embedding

    def _owned(self, user_id: str, note_id: str) -> _StoredNote | None:
        stored = self.notes.get(note_id)
        if stored is None or stored.note.user_id != user_id:
            return None
        return stored


def _cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise EmbeddingDimensionError(f"embedding dim mismatch: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return dot / norm


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
