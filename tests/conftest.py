"""Pytest configuration and shared fixtures."""

import os
from typing import Dict, Optional, Union
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

# Set required environment variables for testing BEFORE importing argus
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ARGUS_VECTOR_STORE_ID", "")

from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from argus.core.concurrency import InferenceLimiter
from argus.core.database import Base
from argus.database import models  # noqa: F401
from argus.main import app
from argus.services.inference.gateway import (
    FailureKind,
    InferenceFailure,
    InferenceGateway,
    PromptTemplate,
    DocumentRef,
)
from argus.services.taxonomy.seed import seed_taxonomy


class ScriptedGateway(InferenceGateway):
    """Gateway that answers from canned raw model output keyed by prompt name.

    Validation runs through the real gateway, so malformed or mismatched
    output behaves exactly as it would against the service. A prompt with no
    script fails permanently.
    """

    def __init__(self, responses: Optional[Dict[str, Union[str, InferenceFailure]]] = None):
        super().__init__(client=MagicMock(), limiter=InferenceLimiter(4), default_model="test-model")
        self.responses = dict(responses or {})
        self.calls: list[str] = []

    async def infer(self, template: PromptTemplate, document_ref: DocumentRef, expected_shape):
        self.calls.append(template.name)
        scripted = self.responses.get(template.name)
        if scripted is None:
            return InferenceFailure(FailureKind.PERMANENT, f"no script for {template.name}")
        if isinstance(scripted, InferenceFailure):
            return scripted
        return self._validate(scripted, expected_shape, 1, {"prompt": template.name})


@pytest.fixture
def scripted_gateway():
    """Factory for a ScriptedGateway."""
    return ScriptedGateway


@pytest.fixture
def document_ref() -> DocumentRef:
    return DocumentRef(document_id="doc-1", file_ref="file-abc123")


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory SQLite schema shared across sessions of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def seeded_session_factory(session_factory):
    async with session_factory() as session:
        await seed_taxonomy(session)
    return session_factory


@pytest.fixture
def test_client() -> TestClient:
    """Create FastAPI test client.

    Returns:
        TestClient: FastAPI test client instance
    """
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}
