from __future__ import annotations

import pytest

from knowledge_os.notes.enrichment import derive_title
from knowledge_os.notes.enrichment import extract_first_json_object
from knowledge_os.notes.enrichment import parse_enrichment
from knowledge_os.notes.enrichment import summarize_and_tag

from tests.fakes import FakeLLMClient


def test_extract_first_json_object_skips_surrounding_text() -> None:
    text = 'Sure! Here you go:\n{"title": "a", "tags": ["x"]}\nand another {"b": 1}'
    assert extract_first_json_object(text) == '{"title": "a", "tags": ["x"]}'


def test_extract_first_json_object_ignores_braces_in_strings() -> None:
    text = '{"summary": "uses {curly} and \\"quotes\\"", "n": {"x": 1}}'
    assert extract_first_json_object(text) == text


def test_extract_first_json_object_returns_none_when_unbalanced() -> None:
    assert extract_first_json_object('{"title": "a"') is None
    assert extract_first_json_object("no json here") is None


def test_derive_title_uses_first_sentence() -> None:
    assert derive_title("Groceries for the week. Eggs, milk") == "Groceries for the week"
    assert len(derive_title("x" * 200)) == 60


def test_parse_enrichment_normalizes_fields() -> None:
    raw = '{"title": "  Trip plan  ", "summary": "Plan.", "tags": ["Travel ", "", "JAPAN", 3]}'
    result = parse_enrichment(raw=raw, content="ignored")
    assert result.title == "Trip plan"
    assert result.summary == "Plan."
    assert result.tags == ["travel", "japan", "3"]


def test_parse_enrichment_falls_back_when_reply_is_not_json() -> None:
    content = "Ship the release on Friday!\nThen   write   the retro."
    result = parse_enrichment(raw="I could not do that.", content=content)
    assert result.title == "Ship the release on Friday"
    assert result.summary == "Ship the release on Friday! Then write the retro."
    assert result.tags == []


def test_parse_enrichment_caps_lengths() -> None:
    raw = '{"title": "%s", "summary": "%s", "tags": [%s]}' % (
        "t" * 100,
        "s" * 400,
        ", ".join(f'"tag{i}"' for i in range(20)),
    )
    result = parse_enrichment(raw=raw, content="c")
    assert len(result.title) == 60
    assert len(result.summary) == 300
    assert len(result.tags) == 12


@pytest.mark.anyio
async def test_summarize_and_tag_calls_llm_once() -> None:
    llm = FakeLLMClient(reply='Result: {"title": "T", "summary": "S", "tags": ["a"]}')
    result = await summarize_and_tag(llm_client=llm, content="some note")
    assert (result.title, result.summary, result.tags) == ("T", "S", ["a"])
    assert len(llm.chat_calls) == 1
    assert "NOTE:\nsome note" in llm.chat_calls[0][1].content
