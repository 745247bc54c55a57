"""
HTTP 接入层（FastAPI）。

职责：
- 解析调用方（user：校验 Bearer token；demo：固定共享身份）
- 解析 body -> Pydantic schema
- 调用 service（业务流程都在 `notes/service.py`）
- 把领域异常映射为 HTTP 状态码（护栏 -> 429/413，找不到 -> 404，非法输入 -> 400）

同一个 router 工厂给 `/app` 与 `/demo` 两个前缀各装一份。
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import APIRouter
from fastapi import Depends
from fastapi import FastAPI
from fastapi import Header
from fastapi import Request
from fastapi.responses import JSONResponse

from knowledge_os.auth.session import SessionVerifier
from knowledge_os.infra.guardrails import GuardrailError
from knowledge_os.infra.guardrails import RequestTooLargeError
from knowledge_os.notes import service as notes
from knowledge_os.notes.models import DEMO_USER_ID
from knowledge_os.notes.models import AppData
from knowledge_os.notes.models import Caller
from knowledge_os.notes.models import CreateCollectionRequest
from knowledge_os.notes.models import CreateNoteRequest
from knowledge_os.notes.models import EnrichResult
from knowledge_os.notes.models import RestoreNoteRequest
from knowledge_os.notes.models import SearchHit
from knowledge_os.notes.models import UndoEnrichRequest
from knowledge_os.notes.models import UpdateNoteCollectionRequest
from knowledge_os.storage.models import Collection
from knowledge_os.storage.models import Note

CallerResolver = Callable[..., Caller]


def build_user_caller_resolver(verifier: SessionVerifier) -> CallerResolver:
    def resolve(authorization: str | None = Header(default=None)) -> Caller:
        user_id = verifier.verify_authorization_header(authorization)
        return Caller(user_id=user_id, mode="user")

    return resolve


def resolve_demo_caller() -> Caller:
    return Caller(user_id=DEMO_USER_ID, mode="demo")


def build_workspace_router(service: notes.NotesService, resolve_caller: CallerResolver) -> APIRouter:
    """创建一个工作区的全部路由（由调用方决定挂在哪个前缀下）。"""
    router = APIRouter()

    @router.get("/data")
    async def app_data(caller: Caller = Depends(resolve_caller)) -> AppData:
        return await notes.get_app_data(service=service, caller=caller)

    @router.get("/notes")
    async def list_notes(q: str = "", caller: Caller = Depends(resolve_caller)) -> list[Note]:
        return await notes.list_notes(service=service, caller=caller, query=q)

    @router.post("/collections")
    async def create_collection(
        body: CreateCollectionRequest,
        caller: Caller = Depends(resolve_caller),
    ) -> Collection | None:
        return await notes.create_collection(service=service, caller=caller, name=body.name)

    @router.post("/notes")
    async def create_note(body: CreateNoteRequest, caller: Caller = Depends(resolve_caller)) -> Note:
        return await notes.create_note(service=service, caller=caller, request=body)

    @router.delete("/notes/{note_id}")
    async def delete_note(note_id: str, caller: Caller = Depends(resolve_caller)) -> Note:
        return await notes.delete_note(service=service, caller=caller, note_id=note_id)

    @router.post("/notes/restore")
    async def restore_note(body: RestoreNoteRequest, caller: Caller = Depends(resolve_caller)) -> Note:
        return await notes.restore_deleted_note(service=service, caller=caller, request=body)

    @router.patch("/notes/{note_id}/collection")
    async def update_note_collection(
        note_id: str,
        body: UpdateNoteCollectionRequest,
        caller: Caller = Depends(resolve_caller),
    ) -> Note:
        return await notes.update_note_collection(
            service=service,
            caller=caller,
            note_id=note_id,
            collection_id=body.collection_id,
        )

    @router.post("/notes/{note_id}/enrich")
    async def enrich_note(note_id: str, caller: Caller = Depends(resolve_caller)) -> EnrichResult:
        return await notes.enrich_note(service=service, caller=caller, note_id=note_id)

    @router.post("/notes/{note_id}/enrich/undo")
    async def undo_enrich_note(
        note_id: str,
        body: UndoEnrichRequest,
        caller: Caller = Depends(resolve_caller),
    ) -> Note:
        return await notes.undo_enrich_note(service=service, caller=caller, note_id=note_id, request=body)

    @router.get("/search/semantic")
    async def semantic_search(q: str = "", caller: Caller = Depends(resolve_caller)) -> list[SearchHit]:
        return await notes.semantic_search(service=service, caller=caller, query=q)

    return router


def install_error_handlers(app: FastAPI) -> None:
    """领域异常 -> HTTP 响应。不自动重试：客户端根据 retry_after_ms 自行决定。"""

    @app.exception_handler(GuardrailError)
    async def guardrail_error(request: Request, exc: GuardrailError) -> JSONResponse:
        status_code = 413 if isinstance(exc, RequestTooLargeError) else 429
        headers: dict[str, str] = {}
        if exc.retry_after_seconds is not None:
            headers["Retry-After"] = str(exc.retry_after_seconds)
        return JSONResponse(
            status_code=status_code,
            content={"detail": str(exc), "kind": exc.kind, "retry_after_ms": exc.retry_after_ms},
            headers=headers,
        )

    @app.exception_handler(notes.NoteNotFoundError)
    @app.exception_handler(notes.CollectionNotFoundError)
    async def not_found(request: Request, exc: LookupError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(notes.AIUnavailableError)
    async def ai_unavailable(request: Request, exc: notes.AIUnavailableError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def invalid_input(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})
