"""Shared pytest fixtures for Lensmatch tests."""
import uuid

import pytest

from lensmatch.domain import (
    DIMENSIONS,
    Dimension,
    MatchingConfig,
    PhotographerCandidate,
    QuestionWeightInfo,
    SessionFilters,
    SessionSnapshot,
)
from lensmatch.exceptions import EmbeddingError
from lensmatch.services.embedding_service import Embedder
from lensmatch.services.embedding_worker import EmbeddingWorker, InMemoryContentSource
from lensmatch.services.job_queue import InMemoryEmbeddingJobQueue
from lensmatch.services.vector_store import InMemoryVectorStore
from lensmatch.services.weight_config import build_weight_config


class FakeEmbedder(Embedder):
    """Deterministic embedder: a 3-d vector derived from the text length.

    Texts listed in ``fail_on`` raise ``EmbeddingError``.
    """

    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.calls = []

    async def embed(self, text):
        self.calls.append(text)
        if text in self.fail_on:
            raise EmbeddingError(f"provider rejected {text!r}")
        n = float(len(text))
        return [1.0, n, n / 2.0]


@pytest.fixture
def default_questions():
    """Two style, two communication, one story and one companion question
    weighted to the default 40 / 30 / 20 / 10 split."""
    return [
        QuestionWeightInfo("q-style-1", Dimension.STYLE_EMOTION, 0.20),
        QuestionWeightInfo("q-style-2", Dimension.STYLE_EMOTION, 0.20),
        QuestionWeightInfo("q-comm-1", Dimension.COMMUNICATION_PSYCHOLOGY, 0.15),
        QuestionWeightInfo("q-comm-2", Dimension.COMMUNICATION_PSYCHOLOGY, 0.15),
        QuestionWeightInfo("q-story", Dimension.PURPOSE_STORY, 0.20),
        QuestionWeightInfo("q-companion", Dimension.COMPANION, 0.10),
    ]


@pytest.fixture
def default_weights(default_questions):
    return build_weight_config(default_questions, version=1)


@pytest.fixture
def matching_config():
    return MatchingConfig(
        max_results=10,
        min_similarity_score=0.7,
        enable_keyword_bonus=False,
        enable_region_filter=True,
        enable_budget_filter=True,
    )


@pytest.fixture
def session_vectors():
    return {d: [1.0, 0.0, 0.0] for d in DIMENSIONS}


def _make_candidate(pid=None, vectors=None, **overrides):
    """Complete, Seoul-based photographer priced 100k-300k."""
    fields = dict(
        photographer_id=pid or str(uuid.uuid4()),
        service_regions=frozenset({"seoul"}),
        price_min=100_000,
        price_max=300_000,
        profile_completed=True,
        keywords={},
        vectors=vectors if vectors is not None else {d: [1.0, 0.0, 0.0] for d in DIMENSIONS},
    )
    fields.update(overrides)
    return PhotographerCandidate(**fields)


def _make_session(vectors=None, **filters):
    return SessionSnapshot(
        session_id=str(uuid.uuid4()),
        vectors=vectors if vectors is not None else {d: [1.0, 0.0, 0.0] for d in DIMENSIONS},
        filters=SessionFilters(**filters),
    )


@pytest.fixture
def make_candidate():
    return _make_candidate


@pytest.fixture
def make_session():
    return _make_session


@pytest.fixture
def vector_store():
    return InMemoryVectorStore()


@pytest.fixture
def job_queue(vector_store):
    return InMemoryEmbeddingJobQueue(vector_store=vector_store, max_attempts=3)


@pytest.fixture
def content_source():
    return InMemoryContentSource()


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def worker(job_queue, vector_store, fake_embedder, content_source):
    return EmbeddingWorker(
        queue=job_queue,
        vector_store=vector_store,
        embedder=fake_embedder,
        content=content_source,
        worker_id="test-worker",
        idle_sleep=0.01,
        poll_interval=3.0,
        batch_timeout=300.0,
    )
