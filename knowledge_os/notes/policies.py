"""
AI 操作的护栏策略表。

登录用户（user）与共享 demo 工作区（demo）使用不同上限；
策略由调用方传给 GuardrailStore，store 本身不保存策略。
"""

from __future__ import annotations

from knowledge_os.infra.guardrails import GuardrailConfig
from knowledge_os.notes.models import WorkspaceMode

ENRICH_ACTION = "enrichNote"
SEARCH_ACTION = "semanticSearch"
CREATE_NOTE_ACTION = "createNote"

ENRICH_DEDUPE_MS = 45_000
SEARCH_DEDUPE_MS = 4_000

SEARCH_CACHE_TTL_MS = 60_000
SEMANTIC_MATCH_COUNT = 12
MIN_QUERY_CHARS = 2
MAX_EMBED_INPUT_CHARS = 8000

# demo 工作区匿名可写且常驻内存，除了写入频率还要限制总条数
MAX_DEMO_NOTES = 100

_ENRICH_POLICIES: dict[WorkspaceMode, GuardrailConfig] = {
    "user": GuardrailConfig(
        window_ms=60 * 60 * 1000,
        max_requests=24,
        max_chars_per_request=20_000,
        max_chars_per_window=180_000,
    ),
    "demo": GuardrailConfig(
        window_ms=60 * 60 * 1000,
        max_requests=8,
        max_chars_per_request=8_000,
        max_chars_per_window=48_000,
    ),
}

_SEARCH_POLICIES: dict[WorkspaceMode, GuardrailConfig] = {
    "user": GuardrailConfig(
        window_ms=10 * 60 * 1000,
        max_requests=40,
        max_chars_per_request=500,
        max_chars_per_window=12_000,
    ),
    "demo": GuardrailConfig(
        window_ms=10 * 60 * 1000,
        max_requests=12,
        max_chars_per_request=500,
        max_chars_per_window=4_000,
    ),
}


_CREATE_NOTE_POLICIES: dict[WorkspaceMode, GuardrailConfig] = {
    "demo": GuardrailConfig(
        window_ms=60 * 60 * 1000,
        max_requests=20,
        max_chars_per_request=10_000,
        max_chars_per_window=60_000,
    ),
}


def create_note_policy(mode: WorkspaceMode) -> GuardrailConfig | None:
    """登录用户写自己的库，不限；只有 demo 有上限。"""
    return _CREATE_NOTE_POLICIES.get(mode)


def enrich_policy(mode: WorkspaceMode) -> GuardrailConfig:
    return _ENRICH_POLICIES[mode]


def search_policy(mode: WorkspaceMode) -> GuardrailConfig:
    return _SEARCH_POLICIES[mode]
