from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence

import psycopg
from pgvector.psycopg import register_vector

from knowledge_os.storage.models import Collection
from knowledge_os.storage.models import EmbeddingDimensionError
from knowledge_os.storage.models import Note
from knowledge_os.storage.models import NoteMatch

logger = logging.getLogger(__name__)

_NOTE_COLUMNS = """
    n.id, n.user_id, n.collection_id, n.title, n.content, n.summary, n.created_at, n.updated_at,
    COALESCE(array_agg(t.name ORDER BY t.name) FILTER (WHERE t.name IS NOT NULL), '{}') AS tags
"""

_NOTE_FROM = """
    FROM notes n
    LEFT JOIN note_tags nt ON nt.note_id = n.id
    LEFT JOIN tags t ON t.id = nt.tag_id
"""


class NotesStorageClient:
    """Postgres + pgvector 连接器。所有查询都显式按 user_id 过滤。"""

    def __init__(self, dsn: str, embedding_dim: int) -> None:
        self._dsn = dsn
        self._embedding_dim = embedding_dim

    def connect(self) -> psycopg.Connection:
        conn = psycopg.connect(self._dsn)
        register_vector(conn)
        return conn

    @property
    def embedding_dim(self) -> int:
        return self._embedding_dim


def ensure_schema(client: NotesStorageClient) -> None:
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute("CREATE EXTENSION IF NOT EXISTS vector")
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS collections (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )
            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS notes (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    collection_id TEXT REFERENCES collections (id) ON DELETE SET NULL,
                    title TEXT,
                    content TEXT NOT NULL,
                    summary TEXT,
                    embedding VECTOR({client.embedding_dim}),
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tags (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    UNIQUE (user_id, name)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS note_tags (
                    note_id TEXT NOT NULL REFERENCES notes (id) ON DELETE CASCADE,
                    tag_id TEXT NOT NULL REFERENCES tags (id) ON DELETE CASCADE,
                    PRIMARY KEY (note_id, tag_id)
                )
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_notes_user_updated ON notes (user_id, updated_at DESC)")
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_notes_embedding
                ON notes USING ivfflat (embedding vector_cosine_ops)
                """
            )
        conn.commit()


def list_collections(client: NotesStorageClient, user_id: str) -> list[Collection]:
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT id, user_id, name, created_at FROM collections WHERE user_id = %s ORDER BY created_at ASC",
                (user_id,),
            )
            rows = cur.fetchall()
    return [Collection(id=row[0], user_id=row[1], name=row[2], created_at=row[3]) for row in rows]


def insert_collection(client: NotesStorageClient, user_id: str, name: str) -> Collection:
    if not name:
        raise ValueError("name must not be empty")
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "INSERT INTO collections (id, user_id, name) VALUES (%s, %s, %s) RETURNING id, user_id, name, created_at",
                (str(uuid.uuid4()), user_id, name),
            )
            row = cur.fetchone()
        conn.commit()
    if row is None:
        raise RuntimeError("INSERT INTO collections returned no row")
    return Collection(id=row[0], user_id=row[1], name=row[2], created_at=row[3])


def collection_exists(client: NotesStorageClient, user_id: str, collection_id: str) -> bool:
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1 FROM collections WHERE id = %s AND user_id = %s", (collection_id, user_id))
            return cur.fetchone() is not None


def list_notes(client: NotesStorageClient, user_id: str) -> list[Note]:
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"SELECT {_NOTE_COLUMNS} {_NOTE_FROM} WHERE n.user_id = %s GROUP BY n.id ORDER BY n.updated_at DESC",
                (user_id,),
            )
            rows = cur.fetchall()
    return [_row_to_note(row) for row in rows]


def get_note(client: NotesStorageClient, user_id: str, note_id: str) -> Note | None:
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"SELECT {_NOTE_COLUMNS} {_NOTE_FROM} WHERE n.user_id = %s AND n.id = %s GROUP BY n.id",
                (user_id, note_id),
            )
            row = cur.fetchone()
    if row is None:
        return None
    return _row_to_note(row)


def insert_note(
    client: NotesStorageClient,
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
    with client.connect() as conn:
        with conn.cursor() as cur:
            try:
                cur.execute(
                    """
                    INSERT INTO notes (id, user_id, collection_id, title, content, summary)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (new_id, user_id, collection_id, title, content, summary),
                )
            except psycopg.errors.UniqueViolation as exc:
                # id 全局唯一：可能被其他用户占用，和内存仓储一样按非法输入处理
                raise ValueError(f"Note already exists: {new_id}") from exc
        conn.commit()
    return new_id


def delete_note(client: NotesStorageClient, user_id: str, note_id: str) -> bool:
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM notes WHERE id = %s AND user_id = %s", (note_id, user_id))
            deleted = cur.rowcount > 0
        conn.commit()
    return deleted


def update_note_collection(client: NotesStorageClient, user_id: str, note_id: str, collection_id: str | None) -> bool:
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "UPDATE notes SET collection_id = %s, updated_at = now() WHERE id = %s AND user_id = %s",
                (collection_id, note_id, user_id),
            )
            updated = cur.rowcount > 0
        conn.commit()
    return updated


def update_note_enrichment(
    client: NotesStorageClient,
    user_id: str,
    note_id: str,
    title: str | None,
    summary: str | None,
    embedding: Sequence[float] | None,
) -> bool:
    if embedding is not None and len(embedding) != client.embedding_dim:
        raise EmbeddingDimensionError(f"embedding dim mismatch: {len(embedding)} != {client.embedding_dim}")
    vector = list(embedding) if embedding is not None else None
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE notes SET title = %s, summary = %s, embedding = %s::vector, updated_at = now()
                WHERE id = %s AND user_id = %s
                """,
                (title, summary, vector, note_id, user_id),
            )
            updated = cur.rowcount > 0
        conn.commit()
    return updated


def add_note_tags(client: NotesStorageClient, user_id: str, note_id: str, tags: Sequence[str]) -> None:
    """upsert 标签并建立关联（重复关联忽略）。"""
    if not tags:
        return
    with client.connect() as conn:
        with conn.cursor() as cur:
            _upsert_tag_links(cur=cur, user_id=user_id, note_id=note_id, tags=tags)
        conn.commit()


def replace_note_tags(client: NotesStorageClient, user_id: str, note_id: str, tags: Sequence[str]) -> None:
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM note_tags WHERE note_id = %s", (note_id,))
            if tags:
                _upsert_tag_links(cur=cur, user_id=user_id, note_id=note_id, tags=tags)
        conn.commit()


def match_notes(
    client: NotesStorageClient,
    user_id: str,
    query_embedding: Sequence[float],
    match_count: int,
) -> list[NoteMatch]:
    if match_count <= 0:
        raise ValueError("match_count must be > 0")
    vector = list(query_embedding)
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, collection_id, title, content, summary, updated_at,
                       1 - (embedding <=> %s::vector) AS similarity
                FROM notes
                WHERE user_id = %s AND embedding IS NOT NULL
                ORDER BY embedding <=> %s::vector
                LIMIT %s
                """,
                (vector, user_id, vector, match_count),
            )
            rows = cur.fetchall()
    return [
        NoteMatch(
            id=row[0],
            collection_id=row[1],
            title=row[2],
            content=row[3],
            summary=row[4],
            updated_at=row[5],
            similarity=float(row[6]),
        )
        for row in rows
    ]


def _upsert_tag_links(cur: psycopg.Cursor, user_id: str, note_id: str, tags: Sequence[str]) -> None:
    for name in dict.fromkeys(tags):
        cur.execute(
            """
            INSERT INTO tags (id, user_id, name) VALUES (%s, %s, %s)
            ON CONFLICT (user_id, name) DO UPDATE SET name = EXCLUDED.name
            RETURNING id
            """,
            (str(uuid.uuid4()), user_id, name),
        )
        row = cur.fetchone()
        if row is None:
            raise RuntimeError(f"Tag upsert returned no row for {name!r}")
        cur.execute(
            "INSERT INTO note_tags (note_id, tag_id) VALUES (%s, %s) ON CONFLICT (note_id, tag_id) DO NOTHING",
            (note_id, row[0]),
        )


def _row_to_note(row: tuple) -> Note:
    return Note(
        id=row[0],
        user_id=row[1],
        collection_id=row[2],
        title=row[3],
        content=row[4],
        summary=row[5],
        created_at=row[6],
        updated_at=row[7],
        tags=list(row[8] or []),
    )
