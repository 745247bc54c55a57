"""
Note Enrichment（LLM 单次输出：标题 + 摘要 + 标签）。

目标：
- 让模型输出严格 JSON：{"title": ..., "summary": ..., "tags": [...]}
- 模型经常在 JSON 前后夹带说明文字，所以只取**第一个完整 JSON 对象**
- 解析失败不报错：标题/摘要回退为从正文推导的值，保证摘要永远不为空
"""

from __future__ import annotations

import json
import logging
import re

from knowledge_os.llm.client import ChatMessage
from knowledge_os.llm.client import LLMClient
from knowledge_os.notes.models import NoteEnrichment

logger = logging.getLogger(__name__)

MAX_TITLE_CHARS = 60
MAX_SUMMARY_CHARS = 300
FALLBACK_SUMMARY_CHARS = 280
MAX_TAGS = 12

_SENTENCE_BREAK = re.compile(r"[\n.?!]")
_WHITESPACE = re.compile(r"\s+")


def _enrich_system_prompt() -> str:
    return (
        "Extract a concise title, a short summary (1-3 sentences), and 3-7 topical tags from a note. "
        "Output MUST be strict JSON with keys title, summary, tags."
    )


def _enrich_user_prompt(content: str) -> str:
    return (
        f"NOTE:\n{content}\n\n"
        "Return ONLY JSON. Constraints: title <= 60 chars; summary <= 300 chars; tags 3-7 items, lowercase, no #."
    )


def derive_title(content: str) -> str:
    """取第一句（按换行/句号/问号/感叹号切分），最多 60 字符。"""
    return _SENTENCE_BREAK.split(content, maxsplit=1)[0].strip()[:MAX_TITLE_CHARS]


def derive_summary(content: str) -> str:
    return _WHITESPACE.sub(" ", content).strip()[:FALLBACK_SUMMARY_CHARS]


def extract_first_json_object(text: str) -> str | None:
    """
    扫描文本，返回第一个括号配平的 `{...}` 片段。

    - 字符串里的花括号不计入深度
    - 字符串里的转义字符（例如 `\\"`）会被跳过
    """
    start = -1
    depth = 0
    in_string = False
    escape = False

    for i, ch in enumerate(text):
        if escape:
            escape = False
            continue
        if ch == "\\":
            if in_string:
                escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            if depth == 0:
                start = i
            depth += 1
            continue
        if ch == "}":
            depth -= 1
            if depth == 0 and start != -1:
                return text[start : i + 1]
    return None


def parse_enrichment(raw: str, content: str) -> NoteEnrichment:
    """把模型原始输出解析为 `NoteEnrichment`，字段缺失时回退到正文推导值。"""
    parsed: dict[str, object] = {}
    json_str = extract_first_json_object(raw)
    if json_str is not None:
        try:
            candidate = json.loads(json_str)
        except json.JSONDecodeError:
            logger.warning(f"Enrichment reply contained malformed JSON: {json_str[:200]}")
            candidate = None
        if isinstance(candidate, dict):
            parsed = candidate
    else:
        logger.warning("Enrichment reply contained no JSON object, using fallbacks")

    raw_title = parsed.get("title")
    raw_summary = parsed.get("summary")
    title = str(raw_title if raw_title is not None else derive_title(content)).strip()[:MAX_TITLE_CHARS]
    summary = str(raw_summary if raw_summary is not None else derive_summary(content)).strip()[:MAX_SUMMARY_CHARS]

    raw_tags = parsed.get("tags")
    tags: list[str] = []
    if isinstance(raw_tags, list):
        tags = [str(t).lower().strip() for t in raw_tags]
        tags = [t for t in tags if t][:MAX_TAGS]

    return NoteEnrichment(title=title, summary=summary, tags=tags)


async def summarize_and_tag(llm_client: LLMClient, content: str) -> NoteEnrichment:
    """对单条 note 调用一次 LLM（不 loop），返回兜底后的结构化结果。"""
    messages = [
        ChatMessage(role="system", content=_enrich_system_prompt()),
        ChatMessage(role="user", content=_enrich_user_prompt(content=content)),
    ]
    raw = await llm_client.complete_text(messages=messages)
    enrichment = parse_enrichment(raw=raw, content=content)
    logger.info(f"Enrichment result: title={enrichment.title!r}, tags={enrichment.tags}")
    return enrichment
