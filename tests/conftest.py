"""
Test Configuration - Shared test fixtures and setup

This module provides common test fixtures and configuration for the test suite.
"""

import pytest
from typing import Callable, Dict, List, Optional
from unittest.mock import Mock

# Import test modules
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from hybrid_search.config import EngineConfig, build_config
from hybrid_search.core import CallableEmbeddingProvider, EmbeddingProvider, Tokenizer
from hybrid_search.engine import SearchEngine


def keyword_embedding(text: str) -> List[float]:
    """
    Deterministic 3-d embedding: [cat-ness, dog-ness, bias].

    The bias axis keeps every vector non-zero.
    """
    tokens = text.lower().split()
    return [
        float(sum(1 for t in tokens if t.startswith("cat"))),
        float(sum(1 for t in tokens if t.startswith("dog"))),
        1.0,
    ]


class FakeClock:
    """Manually advanced time source for TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sample_documents() -> List[str]:
    """The three-document corpus used for the BM25 scenario."""
    return ["the cat sat", "the dog ran", "cats and dogs"]


@pytest.fixture
def tokenizer() -> Tokenizer:
    """Default tokenizer (built-in stopwords, no stemming)."""
    return Tokenizer()


@pytest.fixture
def make_config() -> Callable[..., EngineConfig]:
    """Factory for isolated configs with a 3-d embedding space and no metrics."""

    def _make(overrides: Optional[Dict] = None) -> EngineConfig:
        merged = {
            "embedding": {"dimension": 3, "timeout": 2.0},
            "monitoring": {"prometheus_enabled": False},
        }
        for section, values in (overrides or {}).items():
            merged.setdefault(section, {}).update(values)
        return build_config(merged)

    return _make


@pytest.fixture
def fake_clock() -> FakeClock:
    """Controllable clock."""
    return FakeClock()


@pytest.fixture
def keyword_provider() -> CallableEmbeddingProvider:
    """Embedding provider backed by keyword_embedding()."""
    return CallableEmbeddingProvider(keyword_embedding, dimension=3)


@pytest.fixture
def mock_embedding_provider():
    """Mock embedding provider for testing."""
    mock = Mock(spec=EmbeddingProvider)
    mock.dimension = 3
    mock.embed.side_effect = keyword_embedding
    mock.ping.return_value = True
    return mock


@pytest.fixture
def keyword_engine(make_config, sample_documents):
    """Engine without embeddings, loaded with the sample corpus."""
    engine = SearchEngine(make_config())
    for i, text in enumerate(sample_documents):
        engine.index_document(text, metadata={"position": i}, document_id=f"doc{i}")
    yield engine
    engine.close()


@pytest.fixture
def hybrid_engine(make_config, keyword_provider, sample_documents, fake_clock):
    """Engine with keyword embeddings, loaded with the sample corpus."""
    engine = SearchEngine(make_config(), embedding_provider=keyword_provider, clock=fake_clock)
    for i, text in enumerate(sample_documents):
        engine.index_document(text, metadata={"position": i}, document_id=f"doc{i}")
    yield engine
    engine.close()
