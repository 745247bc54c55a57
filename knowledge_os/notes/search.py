"""
检索相关的确定性工具（非 AI）。

- 精确文本过滤（标题/摘要/正文子串匹配）
- 语义检索结果的"解释"：命中片段 + 命中位置
- 没有 LLM 时的本地兜底：按查询词命中比例排序
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from knowledge_os.notes.models import MatchSource
from knowledge_os.notes.models import SearchHit
from knowledge_os.storage.models import Note
from knowledge_os.storage.models import NoteMatch

MAX_TAGS = 12
SNIPPET_BEFORE_CHARS = 52
SNIPPET_AFTER_CHARS = 110
FALLBACK_SNIPPET_CHARS = 170


def normalize_tags(tags_csv: str) -> list[str]:
    """逗号分隔 -> 去空白、小写、去空、最多 12 个。"""
    tags = [t.strip().lower() for t in tags_csv.split(",")]
    return [t for t in tags if t][:MAX_TAGS]


def filter_notes(notes: Sequence[Note], query: str) -> list[Note]:
    q = query.strip().lower()
    if not q:
        return list(notes)
    return [n for n in notes if q in f"{n.title or ''} {n.summary or ''} {n.content}".lower()]


def query_terms(query: str) -> list[str]:
    terms = [t.strip() for t in query.lower().split()]
    return list(dict.fromkeys(t for t in terms if len(t) > 1))


def clamp_similarity(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return min(1.0, max(0.0, value))


def build_snippet(
    title: str | None,
    summary: str | None,
    content: str,
    query: str,
) -> tuple[str, MatchSource]:
    """找到第一个命中查询词的字段，截取前后文作为片段；都没命中则回退为摘要/正文开头。"""
    terms = query_terms(query)
    sources: list[tuple[MatchSource, str]] = [
        ("title", title or ""),
        ("summary", summary or ""),
        ("content", content or ""),
    ]
    for matched_in, text in sources:
        lowered = text.lower()
        for term in terms:
            index = lowered.find(term)
            if index < 0:
                continue
            start = max(0, index - SNIPPET_BEFORE_CHARS)
            end = min(len(text), index + len(term) + SNIPPET_AFTER_CHARS)
            prefix = "..." if start > 0 else ""
            suffix = "..." if end < len(text) else ""
            return f"{prefix}{text[start:end].strip()}{suffix}", matched_in

    fallback = (summary if summary is not None else content or "").strip()
    if not fallback:
        return "Semantic similarity match.", "semantic"
    ellipsis = "..." if len(fallback) > FALLBACK_SNIPPET_CHARS else ""
    return f"{fallback[:FALLBACK_SNIPPET_CHARS]}{ellipsis}", "semantic"


def to_search_hit(match: NoteMatch, query: str) -> SearchHit:
    snippet, matched_in = build_snippet(
        title=match.title,
        summary=match.summary,
        content=match.content,
        query=query,
    )
    return SearchHit(
        id=match.id,
        collection_id=match.collection_id,
        title=match.title,
        summary=match.summary,
        content=match.content,
        similarity=clamp_similarity(match.similarity),
        snippet=snippet,
        matched_in=matched_in,
    )


def local_term_search(notes: Sequence[Note], query: str, limit: int) -> list[SearchHit]:
    """
    本地兜底检索：similarity = 命中的查询词数 / 查询词总数。

    没有命中任何词的 note 不返回；同分按 updated_at 倒序。
    """
    if limit <= 0:
        raise ValueError("limit must be > 0")
    terms = query_terms(query)
    if not terms:
        return []

    scored: list[tuple[float, Note]] = []
    for note in notes:
        hay = f"{note.title or ''} {note.summary or ''} {note.content}".lower()
        found = sum(1 for term in terms if term in hay)
        if found:
            scored.append((found / len(terms), note))
    scored.sort(key=lambda pair: (pair[0], pair[1].updated_at), reverse=True)

    hits: list[SearchHit] = []
    for score, note in scored[:limit]:
        match = NoteMatch(
            id=note.id,
            collection_id=note.collection_id,
            title=note.title,
            content=note.content,
            summary=note.summary,
            updated_at=note.updated_at,
            similarity=score,
        )
        hits.append(to_search_hit(match=match, query=query))
    return hits
