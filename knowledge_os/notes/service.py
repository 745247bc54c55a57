"""
Notes Service（业务流程编排）。

关键思想：
- **流程由工程代码控制**：CRUD 直接走仓储（demo 的新建/恢复有写入限额）；AI 操作先过护栏再调 LLM
- 护栏顺序固定：先 dedupe（冷却期），再 budget（额度）；两者都通过才调用外部 API、才写库
- user / demo 两种工作区只在"用哪个仓储 + 哪套护栏策略"上不同，流程完全一致
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from knowledge_os.infra.cache import Cache
from knowledge_os.infra.guardrails import GuardrailError
from knowledge_os.infra.guardrails import GuardrailStore
from knowledge_os.llm.client import LLMClient
from knowledge_os.notes import policies
from knowledge_os.notes.enrichment import derive_title
from knowledge_os.notes.enrichment import summarize_and_tag
from knowledge_os.notes.models import AppData
from knowledge_os.notes.models import Caller
from knowledge_os.notes.models import CreateNoteRequest
from knowledge_os.notes.models import EnrichResult
from knowledge_os.notes.models import RestoreNoteRequest
from knowledge_os.notes.models import SearchHit
from knowledge_os.notes.models import UndoEnrichRequest
from knowledge_os.notes.models import WorkspaceMode
from knowledge_os.notes.search import filter_notes
from knowledge_os.notes.search import local_term_search
from knowledge_os.notes.search import normalize_tags
from knowledge_os.notes.search import to_search_hit
from knowledge_os.storage.models import Collection
from knowledge_os.storage.models import Note
from knowledge_os.storage.repository import NoteRepository

logger = logging.getLogger(__name__)


class NoteNotFoundError(LookupError):
    pass


class CollectionNotFoundError(LookupError):
    pass


class AIUnavailableError(RuntimeError):
    pass


class WorkspaceFullError(GuardrailError):
    kind = "workspace_full"


@dataclass(frozen=True)
class NotesService:
    """service 运行时依赖集合。"""

    repositories: Mapping[WorkspaceMode, NoteRepository]
    llm_client: LLMClient | None
    guardrails: GuardrailStore
    search_cache: Cache[list[SearchHit]]


def build_notes_service(
    repositories: Mapping[WorkspaceMode, NoteRepository],
    llm_client: LLMClient | None,
    guardrails: GuardrailStore,
    search_cache: Cache[list[SearchHit]],
) -> NotesService:
    if not repositories:
        raise ValueError("at least one workspace repository is required")
    return NotesService(
        repositories=dict(repositories),
        llm_client=llm_client,
        guardrails=guardrails,
        search_cache=search_cache,
    )


def _repository(service: NotesService, caller: Caller) -> NoteRepository:
    repository = service.repositories.get(caller.mode)
    if repository is None:
        raise RuntimeError(f"Workspace mode not configured: {caller.mode}")
    return repository


async def _require_note(repository: NoteRepository, caller: Caller, note_id: str) -> Note:
    note = await repository.get_note(user_id=caller.user_id, note_id=note_id)
    if note is None:
        raise NoteNotFoundError(f"Note not found: {note_id}")
    return note


async def _require_collection(repository: NoteRepository, caller: Caller, collection_id: str | None) -> None:
    if collection_id is None:
        return
    if not await repository.collection_exists(user_id=caller.user_id, collection_id=collection_id):
        raise CollectionNotFoundError("Collection not found.")


async def _guard_note_write(service: NotesService, repository: NoteRepository, caller: Caller, content: str) -> None:
    """demo 写入限额：先看总条数（不改状态），再扣写入预算。"""
    config = policies.create_note_policy(caller.mode)
    if config is None:
        return
    existing = await repository.list_notes(user_id=caller.user_id)
    if len(existing) >= policies.MAX_DEMO_NOTES:
        logger.warning(f"Workspace {caller.mode} is full ({len(existing)} notes)")
        raise WorkspaceFullError(
            action=policies.CREATE_NOTE_ACTION,
            message=f"Demo workspace is full. Max {policies.MAX_DEMO_NOTES} notes.",
        )
    service.guardrails.check_and_consume(
        user_id=caller.user_id,
        action=policies.CREATE_NOTE_ACTION,
        char_cost=len(content),
        config=config,
    )


async def get_app_data(service: NotesService, caller: Caller) -> AppData:
    repository = _repository(service=service, caller=caller)
    collections = await repository.list_collections(user_id=caller.user_id)
    notes = await repository.list_notes(user_id=caller.user_id)
    return AppData(user_id=caller.user_id, collections=collections, notes=notes)


async def list_notes(service: NotesService, caller: Caller, query: str = "") -> list[Note]:
    """精确文本过滤（不走 AI，不受护栏限制）。"""
    repository = _repository(service=service, caller=caller)
    notes = await repository.list_notes(user_id=caller.user_id)
    return filter_notes(notes=notes, query=query)


async def create_collection(service: NotesService, caller: Caller, name: str) -> Collection | None:
    """空白名称直接忽略（返回 None），不算错误。"""
    trimmed = name.strip()
    if not trimmed:
        return None
    repository = _repository(service=service, caller=caller)
    return await repository.create_collection(user_id=caller.user_id, name=trimmed)


async def create_note(service: NotesService, caller: Caller, request: CreateNoteRequest) -> Note:
    content = request.content.strip()
    if not content:
        raise ValueError("Content is required")
    repository = _repository(service=service, caller=caller)
    await _require_collection(repository=repository, caller=caller, collection_id=request.collection_id)
    await _guard_note_write(service=service, repository=repository, caller=caller, content=content)

    note_id = await repository.insert_note(
        user_id=caller.user_id,
        note_id=None,
        title=(request.title or "").strip() or None,
        content=content,
        summary=None,
        collection_id=request.collection_id,
    )
    tags = normalize_tags(request.tags_csv)
    if tags:
        await repository.add_note_tags(user_id=caller.user_id, note_id=note_id, tags=tags)
    return await _require_note(repository=repository, caller=caller, note_id=note_id)


async def delete_note(service: NotesService, caller: Caller, note_id: str) -> Note:
    """删除并返回删除前的快照（供"撤销"使用）。"""
    repository = _repository(service=service, caller=caller)
    note = await _require_note(repository=repository, caller=caller, note_id=note_id)
    if not await repository.delete_note(user_id=caller.user_id, note_id=note_id):
        raise NoteNotFoundError(f"Note not found: {note_id}")
    logger.info(f"Deleted note {note_id} for {caller.user_id}")
    return note


async def restore_deleted_note(service: NotesService, caller: Caller, request: RestoreNoteRequest) -> Note:
    content = request.content.strip()
    if not content:
        raise ValueError("Cannot restore an empty note.")
    repository = _repository(service=service, caller=caller)
    await _require_collection(repository=repository, caller=caller, collection_id=request.collection_id)
    if await repository.get_note(user_id=caller.user_id, note_id=request.id) is not None:
        raise ValueError(f"Note already exists: {request.id}")
    await _guard_note_write(service=service, repository=repository, caller=caller, content=content)

    await repository.insert_note(
        user_id=caller.user_id,
        note_id=request.id,
        title=(request.title or "").strip() or None,
        content=content,
        summary=(request.summary or "").strip() or None,
        collection_id=request.collection_id,
    )
    tags = normalize_tags(",".join(request.tag_names))
    await repository.replace_note_tags(user_id=caller.user_id, note_id=request.id, tags=tags)
    return await _require_note(repository=repository, caller=caller, note_id=request.id)


async def update_note_collection(
    service: NotesService,
    caller: Caller,
    note_id: str,
    collection_id: str | None,
) -> Note:
    repository = _repository(service=service, caller=caller)
    await _require_collection(repository=repository, caller=caller, collection_id=collection_id)
    if not await repository.update_note_collection(
        user_id=caller.user_id,
        note_id=note_id,
        collection_id=collection_id,
    ):
        raise NoteNotFoundError(f"Note not found: {note_id}")
    return await _require_note(repository=repository, caller=caller, note_id=note_id)


async def enrich_note(service: NotesService, caller: Caller, note_id: str) -> EnrichResult:
    """
    AI 补全：标题 + 摘要 + 标签 + embedding。

    步骤：
    - Step 1: 读 note（非 AI），空正文直接拒绝
    - Step 2: 护栏（dedupe -> budget），失败即中止，不调 API、不写库
    - Step 3: LLM 摘要/打标签，再对"标题 + 摘要 + 正文"算 embedding
    - Step 4: 写回 note 与标签；返回旧值供撤销
    """
    if service.llm_client is None:
        raise AIUnavailableError("AI enrichment is not configured")
    repository = _repository(service=service, caller=caller)
    note = await _require_note(repository=repository, caller=caller, note_id=note_id)

    content = note.content.strip()
    if not content:
        raise ValueError("Note content is empty")

    service.guardrails.check_and_lock(
        user_id=caller.user_id,
        action=policies.ENRICH_ACTION,
        fingerprint=note_id,
        dedupe_ms=policies.ENRICH_DEDUPE_MS,
    )
    service.guardrails.check_and_consume(
        user_id=caller.user_id,
        action=policies.ENRICH_ACTION,
        char_cost=len(content),
        config=policies.enrich_policy(caller.mode),
    )

    enriched = await summarize_and_tag(llm_client=service.llm_client, content=content)
    # 模型没给标题时：保留原标题，否则从正文推导
    next_title = enriched.title.strip()[:60] or (note.title or "").strip() or derive_title(content) or None
    embed_input = f"{next_title or ''}\n\n{enriched.summary}\n\n{content}"[: policies.MAX_EMBED_INPUT_CHARS]
    embedding = await service.llm_client.embed_text(embed_input)

    if not await repository.update_note_enrichment(
        user_id=caller.user_id,
        note_id=note_id,
        title=next_title,
        summary=enriched.summary or None,
        embedding=embedding,
    ):
        raise NoteNotFoundError(f"Note not found: {note_id}")
    if enriched.tags:
        await repository.add_note_tags(user_id=caller.user_id, note_id=note_id, tags=enriched.tags)

    logger.info(f"Enriched note {note_id} for {caller.user_id} ({caller.mode})")
    updated = await _require_note(repository=repository, caller=caller, note_id=note_id)
    return EnrichResult(
        note=updated,
        previous_title=note.title,
        previous_summary=note.summary,
        previous_tag_names=note.tags,
    )


async def undo_enrich_note(service: NotesService, caller: Caller, note_id: str, request: UndoEnrichRequest) -> Note:
    """恢复 enrich 前的标题/摘要/标签，并清空 embedding。"""
    repository = _repository(service=service, caller=caller)
    await _require_note(repository=repository, caller=caller, note_id=note_id)

    await repository.update_note_enrichment(
        user_id=caller.user_id,
        note_id=note_id,
        title=(request.previous_title or "").strip() or None,
        summary=(request.previous_summary or "").strip() or None,
        embedding=None,
    )
    tags = normalize_tags(",".join(request.previous_tag_names))
    await repository.replace_note_tags(user_id=caller.user_id, note_id=note_id, tags=tags)
    return await _require_note(repository=repository, caller=caller, note_id=note_id)


def _search_cache_key(caller: Caller, query: str) -> str:
    return f"{caller.mode}:{caller.user_id}:{query.strip().lower()}"


async def semantic_search(service: NotesService, caller: Caller, query: str) -> list[SearchHit]:
    """
    语义检索。

    - 查询太短（< 2 字符）直接返回空
    - 命中 60s 缓存时不过护栏、不调 API
    - 未配置 LLM 时退化为本地查询词匹配
    """
    q = query.strip()
    if len(q) < policies.MIN_QUERY_CHARS:
        return []
    repository = _repository(service=service, caller=caller)

    if service.llm_client is None:
        notes = await repository.list_notes(user_id=caller.user_id)
        return local_term_search(notes=notes, query=q, limit=policies.SEMANTIC_MATCH_COUNT)

    cache_key = _search_cache_key(caller=caller, query=q)
    cached = service.search_cache.get(cache_key)
    if cached is not None:
        return cached

    service.guardrails.check_and_lock(
        user_id=caller.user_id,
        action=policies.SEARCH_ACTION,
        fingerprint=q.lower(),
        dedupe_ms=policies.SEARCH_DEDUPE_MS,
    )
    service.guardrails.check_and_consume(
        user_id=caller.user_id,
        action=policies.SEARCH_ACTION,
        char_cost=len(q),
        config=policies.search_policy(caller.mode),
    )

    query_embedding = await service.llm_client.embed_text(q)
    matches = await repository.match_notes(
        user_id=caller.user_id,
        query_embedding=query_embedding,
        match_count=policies.SEMANTIC_MATCH_COUNT,
    )
    hits = [to_search_hit(match=m, query=q) for m in matches]
    service.search_cache.set(cache_key, hits, policies.SEARCH_CACHE_TTL_MS)
    return hits
