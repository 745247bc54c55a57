from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from knowledge_os.api.routes import build_user_caller_resolver
from knowledge_os.api.routes import build_workspace_router
from knowledge_os.api.routes import install_error_handlers
from knowledge_os.api.routes import resolve_demo_caller
from knowledge_os.auth.session import SessionVerifier
from knowledge_os.infra.cache import InMemoryTTLCache
from knowledge_os.infra.guardrails import GuardrailStore
from knowledge_os.notes.models import SearchHit
from knowledge_os.notes.service import NotesService
from knowledge_os.notes.service import build_notes_service
from knowledge_os.storage.repository import InMemoryNoteRepository

from tests.fakes import JWT_SECRET
from tests.fakes import FakeClock
from tests.fakes import FakeLLMClient


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(now=1_000_000)


@pytest.fixture
def guardrails(clock: FakeClock) -> GuardrailStore:
    return GuardrailStore(clock=clock)


@pytest.fixture
def llm_client() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture
def user_repository() -> InMemoryNoteRepository:
    return InMemoryNoteRepository()


@pytest.fixture
def demo_repository() -> InMemoryNoteRepository:
    return InMemoryNoteRepository()


@pytest.fixture
def service(
    user_repository: InMemoryNoteRepository,
    demo_repository: InMemoryNoteRepository,
    llm_client: FakeLLMClient,
    guardrails: GuardrailStore,
    clock: FakeClock,
) -> NotesService:
    return build_notes_service(
        repositories={"user": user_repository, "demo": demo_repository},
        llm_client=llm_client,
        guardrails=guardrails,
        search_cache=InMemoryTTLCache[list[SearchHit]](clock=clock),
    )


@pytest.fixture
def verifier() -> SessionVerifier:
    return SessionVerifier(jwt_secret=JWT_SECRET)


@pytest.fixture
def client(service: NotesService, verifier: SessionVerifier) -> TestClient:
    app = FastAPI()
    install_error_handlers(app)
    app.include_router(build_workspace_router(service=service, resolve_caller=resolve_demo_caller), prefix="/demo")
    app.include_router(
        build_workspace_router(service=service, resolve_caller=build_user_caller_resolver(verifier)),
        prefix="/app",
    )
    return TestClient(app)
