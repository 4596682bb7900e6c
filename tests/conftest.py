"""
Pytest configuration and fixtures.
"""
from typing import List, Optional
from unittest.mock import AsyncMock

import pytest

from interview_engine.core.types import Evaluation
from interview_engine.logs import metrics
from interview_engine.nlp.prompts import PromptManager
from interview_engine.nlp.rag import Retriever
from interview_engine.services.doc_store import VectorIndex
from interview_engine.services.embed_service import HashingEmbedder
from interview_engine.services.ingestion_service import IngestionService
from interview_engine.services.interview_service import InterviewService
from interview_engine.services.rag_service import GroundingAssembler
from interview_engine.storage.memory import InMemoryRepository


RESUME_TEXT = (
    "Backend engineer with eight years of Python experience. "
    "Built asyncio services, PostgreSQL schemas and Kubernetes deployments for payment systems."
)
JD_TEXT = (
    "We are hiring a senior backend engineer to own our cloud infrastructure, "
    "design distributed systems and mentor the platform team."
)
OPENING_REPLY = (
    "Here are the questions:\n"
    "1. Tell me about a distributed system you designed.\n"
    "2. How do you approach infrastructure reliability?\n"
    "3. Describe how you mentor engineers.\n"
)


class FixedEmbedder:
    """Embedder returning preset vectors per text (default vector otherwise)."""

    def __init__(self, vectors: dict, default: Optional[List[float]] = None, dimension: int = 3):
        self.vectors = vectors
        self.default = default or [1.0] + [0.0] * (dimension - 1)
        self.dimension = dimension

    async def embed(self, text: str):
        return tuple(self.vectors.get(text, self.default))


def make_evaluation(score: int = 7, citations=(0,), next_question: str = "What would you improve?") -> Evaluation:
    return Evaluation(
        score=score,
        feedback="Solid answer with concrete examples.",
        nextQuestion=next_question,
        citationIndices=list(citations),
    )


@pytest.fixture(autouse=True)
def reset_metrics():
    """Each test starts from zeroed counters."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder(dimension=64)


@pytest.fixture
def generation() -> AsyncMock:
    """Generation client double with canned replies."""
    mock = AsyncMock()
    mock.generate = AsyncMock(return_value=OPENING_REPLY)
    mock.generate_structured = AsyncMock(return_value=make_evaluation())
    return mock


@pytest.fixture
def ingestion(repository, embedder) -> IngestionService:
    return IngestionService(repository, embedder, chunk_words=10, concurrency=2, embed_timeout=1.0)


@pytest.fixture
def assembler(repository, embedder) -> GroundingAssembler:
    return GroundingAssembler(embedder, VectorIndex(repository), Retriever(), top_k=2, char_limit=1000)


@pytest.fixture
def interviews(repository, assembler, generation) -> InterviewService:
    return InterviewService(repository, assembler, generation, PromptManager())
