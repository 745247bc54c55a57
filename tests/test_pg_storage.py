from __future__ import annotations

import psycopg
import pytest

from knowledge_os.storage.models import EmbeddingDimensionError
from knowledge_os.storage.pg import NotesStorageClient
from knowledge_os.storage.pg import insert_collection
from knowledge_os.storage.pg import insert_note
from knowledge_os.storage.pg import match_notes
from knowledge_os.storage.pg import update_note_enrichment

# 参数校验在连接数据库之前完成，所以这里用一个不可达的 DSN 也能测
client = NotesStorageClient(dsn="postgresql://invalid.invalid/notes", embedding_dim=4)


class _ConflictingCursor:
    def __enter__(self) -> _ConflictingCursor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def execute(self, query: str, params: tuple) -> None:
        raise psycopg.errors.UniqueViolation("duplicate key value violates unique constraint")


class _ConflictingConnection:
    def __enter__(self) -> _ConflictingConnection:
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def cursor(self) -> _ConflictingCursor:
        return _ConflictingCursor()

    def commit(self) -> None:
        raise AssertionError("commit must not run after a failed insert")


class _ConflictingClient(NotesStorageClient):
    def connect(self) -> _ConflictingConnection:  # type: ignore[override]
        return _ConflictingConnection()


def test_match_notes_requires_positive_count() -> None:
    with pytest.raises(ValueError):
        match_notes(client, "u", [0.1, 0.2, 0.3, 0.4], 0)


def test_update_enrichment_dim_mismatch_is_a_server_fault() -> None:
    with pytest.raises(EmbeddingDimensionError) as exc_info:
        update_note_enrichment(client, "u", "n", "t", "s", [0.1, 0.2])
    # 不能是 ValueError，否则 HTTP 层会映射成 400
    assert not isinstance(exc_info.value, ValueError)


def test_insert_requires_content_and_name() -> None:
    with pytest.raises(ValueError):
        insert_note(client, "u", None, None, "", None, None)
    with pytest.raises(ValueError):
        insert_collection(client, "u", "")


def test_insert_note_id_conflict_is_value_error() -> None:
    conflicting = _ConflictingClient(dsn="postgresql://invalid.invalid/notes", embedding_dim=4)
    with pytest.raises(ValueError, match="Note already exists: taken-id"):
        insert_note(conflicting, "user-2", "taken-id", None, "restored", None, None)
