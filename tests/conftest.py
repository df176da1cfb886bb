"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, List

import anyio
import pytest

# Ensure the project root is on the import path (for local runs without installing)
ROOT_PATH = Path(__file__).resolve().parent.parent
if str(ROOT_PATH) not in sys.path:
    sys.path.insert(0, str(ROOT_PATH))

from spurchat.clients.llm_client import CompletionResult, FailureKind  # noqa: E402
from spurchat.config.settings import Settings  # noqa: E402
from spurchat.memory.db import Database  # noqa: E402
from spurchat.memory.repository import ConversationStore  # noqa: E402


class FakeCompletionClient:
    """Stands in for CompletionClient; replays queued results and records prompts."""

    def __init__(self, *results: CompletionResult, delay: float = 0.0) -> None:
        self.results: List[CompletionResult] = list(results)
        self.calls: List[List[Dict[str, str]]] = []
        self.delay = delay
        self.configured = True
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True

    def queue(self, *results: CompletionResult) -> None:
        self.results.extend(results)

    async def complete(self, messages: List[Dict[str, str]]) -> CompletionResult:
        self.calls.append(list(messages))
        if self.delay:
            await anyio.sleep(self.delay)
        if self.results:
            return self.results.pop(0)
        return CompletionResult(text=f"reply #{len(self.calls)}")


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        llm_api_key="test-key",
        db_path=str(tmp_path / "spurchat-test.db"),
        db_acquire_timeout_seconds=2.0,
    )


@pytest.fixture
def database(settings: Settings) -> Database:
    db = Database.from_settings(settings)
    db.init_db()
    return db


@pytest.fixture
def store(database: Database) -> ConversationStore:
    return ConversationStore(database)


@pytest.fixture
def fake_llm() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in [
        "LLM_API_KEY", "GROQ_API_KEY", "OPENAI_API_KEY", "LLM_BASE_URL", "LLM_MODEL",
        "GROQ_MODEL", "MAX_TOKENS", "LLM_TIMEOUT_SECONDS", "MAX_MESSAGE_LENGTH",
        "MAX_CONVERSATION_MESSAGES", "SPURCHAT_DB_PATH", "DB_POOL_SIZE",
        "DB_ACQUIRE_TIMEOUT_SECONDS", "DB_BUSY_TIMEOUT_SECONDS", "CORS_ORIGINS",
        "SERIALIZE_TURNS", "SUPPORT_PROMPT_PATH",
    ]:
        monkeypatch.delenv(var, raising=False)
    yield


def failure(kind: FailureKind, detail: str = "") -> CompletionResult:
    return CompletionResult(failure=kind, detail=detail)


@pytest.fixture
def make_failure():
    return failure


@pytest.fixture
def fake_llm_factory():
    def _make(*results: CompletionResult, delay: float = 0.0) -> FakeCompletionClient:
        return FakeCompletionClient(*results, delay=delay)
    return _make
