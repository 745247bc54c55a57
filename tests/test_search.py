from __future__ import annotations

from datetime import datetime, timedelta, timezone

from knowledge_os.notes.search import build_snippet
from knowledge_os.notes.search import clamp_similarity
from knowledge_os.notes.search import filter_notes
from knowledge_os.notes.search import local_term_search
from knowledge_os.notes.search import normalize_tags
from knowledge_os.storage.models import Note

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _note(note_id: str, content: str, title: str | None = None, summary: str | None = None, age_s: int = 0) -> Note:
    ts = T0 - timedelta(seconds=age_s)
    return Note(id=note_id, user_id="u", title=title, content=content, summary=summary, created_at=ts, updated_at=ts)


def test_normalize_tags() -> None:
    assert normalize_tags(" Work, ,IDEAS ,work") == ["work", "ideas", "work"]
    assert normalize_tags("") == []
    assert len(normalize_tags(",".join(f"t{i}" for i in range(20)))) == 12


def test_filter_notes_matches_title_summary_and_content() -> None:
    notes = [
        _note("1", "buy milk", title="Groceries"),
        _note("2", "nothing", summary="Quarterly PLAN"),
        _note("3", "unrelated"),
    ]
    assert [n.id for n in filter_notes(notes, "groc")] == ["1"]
    assert [n.id for n in filter_notes(notes, " plan ")] == ["2"]
    assert len(filter_notes(notes, "   ")) == 3


def test_clamp_similarity() -> None:
    assert clamp_similarity(1.7) == 1.0
    assert clamp_similarity(-0.2) == 0.0
    assert clamp_similarity(float("nan")) == 0.0


def test_build_snippet_prefers_title_then_summary_then_content() -> None:
    snippet, matched_in = build_snippet(title="Rust notes", summary="about rust", content="rust", query="rust")
    assert (snippet, matched_in) == ("Rust notes", "title")

    content = "x" * 100 + " kubernetes " + "y" * 200
    snippet, matched_in = build_snippet(title=None, summary=None, content=content, query="Kubernetes")
    assert matched_in == "content"
    assert snippet.startswith("...")
    assert snippet.endswith("...")
    assert "kubernetes" in snippet


def test_build_snippet_falls_back_to_summary() -> None:
    snippet, matched_in = build_snippet(title=None, summary="s" * 200, content="body", query="zzz")
    assert matched_in == "semantic"
    assert snippet == "s" * 170 + "..."

    snippet, matched_in = build_snippet(title=None, summary="", content="body", query="zzz")
    assert (snippet, matched_in) == ("Semantic similarity match.", "semantic")


def test_local_term_search_ranks_by_term_coverage() -> None:
    notes = [
        _note("partial", "postgres tuning", age_s=0),
        _note("full", "postgres vector index", age_s=10),
        _note("none", "gardening"),
    ]
    hits = local_term_search(notes=notes, query="postgres vector", limit=12)
    assert [h.id for h in hits] == ["full", "partial"]
    assert hits[0].similarity == 1.0
    assert hits[1].similarity == 0.5


def test_local_term_search_ignores_single_char_terms() -> None:
    assert local_term_search(notes=[_note("1", "a b c")], query="a b", limit=5) == []
