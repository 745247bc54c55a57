"""
FastAPI 服务入口。

这里做三件事：
- 加载配置（严格校验环境变量）
- 组装外部依赖（HTTP Client / LLM Client / 仓储 / 护栏状态）
- 装配路由（health + /app 登录用户工作区 + /demo 共享工作区）

注意：
- 业务流程不写在这里（由 `notes/service.py` 负责）
- `httpx.AsyncClient` 会被复用（避免每个请求新建连接）
- GuardrailStore 与搜索缓存都是进程级对象：多实例部署时各实例独立计数
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from knowledge_os.api.routes import build_user_caller_resolver
from knowledge_os.api.routes import build_workspace_router
from knowledge_os.api.routes import install_error_handlers
from knowledge_os.api.routes import resolve_demo_caller
from knowledge_os.auth.session import SessionVerifier
from knowledge_os.config import load_config_from_env
from knowledge_os.infra.cache import InMemoryTTLCache
from knowledge_os.infra.guardrails import GuardrailStore
from knowledge_os.llm.client import OpenAICompatLLMClient
from knowledge_os.notes.models import SearchHit
from knowledge_os.notes.models import WorkspaceMode
from knowledge_os.notes.service import build_notes_service
from knowledge_os.storage.pg import NotesStorageClient
from knowledge_os.storage.repository import InMemoryNoteRepository
from knowledge_os.storage.repository import NoteRepository
from knowledge_os.storage.repository import PgNoteRepository

logger = logging.getLogger(__name__)


def build_app() -> FastAPI:
    """创建并返回 FastAPI app（便于测试/复用）。"""

    # 1) 配置：缺失会直接抛错，启动失败（这是期望行为）
    config = load_config_from_env(os.environ)
    logging.basicConfig(level=config.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    # 2) 可复用的 HTTP client：供 LLM 调用使用
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(30.0))

    # 3) LLM client：OpenAI-compatible
    llm_client = OpenAICompatLLMClient(
        api_key=config.llm.api_key,
        base_url=str(config.llm.base_url).rstrip("/"),
        http_client=http_client,
        model=config.llm.model,
        embedding_model=config.llm.embedding_model,
    )

    # 4) 仓储：demo 永远在内存里；登录用户工作区可选（Postgres）
    repositories: dict[WorkspaceMode, NoteRepository] = {"demo": InMemoryNoteRepository()}
    pg_repository: PgNoteRepository | None = None
    verifier: SessionVerifier | None = None
    if config.user_workspace is not None:
        storage_client = NotesStorageClient(
            dsn=config.user_workspace.database_url,
            embedding_dim=config.user_workspace.embedding_dim,
        )
        pg_repository = PgNoteRepository(client=storage_client)
        repositories["user"] = pg_repository
        verifier = SessionVerifier(jwt_secret=config.user_workspace.jwt_secret)
    else:
        logger.warning("DATABASE_URL/AUTH_JWT_SECRET not set; serving the demo workspace only")

    service = build_notes_service(
        repositories=repositories,
        llm_client=llm_client,
        guardrails=GuardrailStore(),
        search_cache=InMemoryTTLCache[list[SearchHit]](),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if pg_repository is not None:
            await pg_repository.ensure_schema()
        yield
        await http_client.aclose()

    app = FastAPI(title="Knowledge OS", version="0.1.0", lifespan=lifespan)
    install_error_handlers(app)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """健康检查：用于 k8s / LB 探活。"""
        return {"status": "ok"}

    app.include_router(build_workspace_router(service=service, resolve_caller=resolve_demo_caller), prefix="/demo")
    if verifier is not None:
        app.include_router(
            build_workspace_router(service=service, resolve_caller=build_user_caller_resolver(verifier)),
            prefix="/app",
        )
    return app


# Uvicorn 默认会从模块级变量 `app` 读取 ASGI 应用
app = build_app()
