"""
应用配置加载。

设计目标：
- **严格**：缺少必要环境变量就直接报错（避免"看起来跑了其实没配置好"）
- **类型安全**：使用 Pydantic 校验 URL/整数等，减少运行时踩坑
- **可测试**：核心加载函数接收 `environ` 显式输入，便于单元测试

分组：
- LLM（必填）
- 登录用户工作区：DATABASE_URL + AUTH_JWT_SECRET，要么都配、要么都不配；不配时只提供 demo 工作区
"""

from __future__ import annotations

from collections.abc import Mapping

from pydantic import BaseModel, Field, HttpUrl

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_EMBEDDING_DIM = 1536


class LLMConfig(BaseModel):
    base_url: HttpUrl
    api_key: str
    model: str
    embedding_model: str = DEFAULT_EMBEDDING_MODEL


class UserWorkspaceConfig(BaseModel):
    database_url: str
    jwt_secret: str
    embedding_dim: int = Field(default=DEFAULT_EMBEDDING_DIM, gt=0)


class AppConfig(BaseModel):
    llm: LLMConfig
    user_workspace: UserWorkspaceConfig | None = None
    log_level: str = "INFO"


def _missing(environ: Mapping[str, str], keys: tuple[str, ...]) -> list[str]:
    return [key for key in keys if key not in environ or not environ[key]]


def load_config_from_env(environ: Mapping[str, str]) -> AppConfig:
    """
    从环境变量加载并校验配置。

    - **输入**：`environ`（例如 `os.environ`）
    - **输出**：`AppConfig`
    - **失败**：缺失/为空/分组只配了一半则抛 `ValueError`
    """
    llm_keys: tuple[str, ...] = ("LLM_BASE_URL", "LLM_API_KEY", "LLM_MODEL")
    missing = _missing(environ, llm_keys)
    if missing:
        raise ValueError(f"Missing required env vars: {', '.join(missing)}")

    llm = LLMConfig(
        base_url=environ["LLM_BASE_URL"],
        api_key=environ["LLM_API_KEY"],
        model=environ["LLM_MODEL"],
        embedding_model=environ.get("LLM_EMBEDDING_MODEL") or DEFAULT_EMBEDDING_MODEL,
    )

    workspace_keys: tuple[str, ...] = ("DATABASE_URL", "AUTH_JWT_SECRET")
    workspace_missing = _missing(environ, workspace_keys)
    user_workspace: UserWorkspaceConfig | None = None
    if len(workspace_missing) == len(workspace_keys):
        user_workspace = None
    elif workspace_missing:
        raise ValueError(f"Incomplete user workspace config, missing: {', '.join(workspace_missing)}")
    else:
        embedding_dim_raw = environ.get("EMBEDDING_DIM") or str(DEFAULT_EMBEDDING_DIM)
        try:
            embedding_dim = int(embedding_dim_raw)
        except ValueError as exc:
            raise ValueError(f"EMBEDDING_DIM must be an integer, got {embedding_dim_raw!r}") from exc
        user_workspace = UserWorkspaceConfig(
            database_url=environ["DATABASE_URL"],
            jwt_secret=environ["AUTH_JWT_SECRET"],
            embedding_dim=embedding_dim,
        )

    return AppConfig(
        llm=llm,
        user_workspace=user_workspace,
        log_level=(environ.get("LOG_LEVEL") or "INFO").upper(),
    )
