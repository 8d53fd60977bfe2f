# =============================================================================
# Shared Fixtures
# =============================================================================
# Fresh fakes per test (see fakes.py). Nothing here touches the network,
# PostgreSQL or a Chroma server.
# =============================================================================

import pytest

from docsense.services.rag import RagService
from fakes import (
    VOCAB,
    FakeGatewayClient,
    FakeLLM,
    FakeVectorIndex,
    InMemoryRepository,
    keyword_embed_batch,
    keyword_embedding,
)


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def gateway_client() -> FakeGatewayClient:
    return FakeGatewayClient(responses={
        "document-analyzer": '{"summary": "Payment obligation", "key_points": ["$500"]}',
        "entity-extractor": '{"people": [], "organizations": ["A", "B"], "amounts": ["$500"]}',
        "timeline-builder": '{"events": [{"date": "2024-01-01", "event": "payment due"}]}',
        "legal-analyzer": '{"compliance": {"GDPR": {"compliant": true}}}',
        "fact-verifier": '{"verdict": "supported", "confidence": 0.9}',
    })


@pytest.fixture
def vector_index() -> FakeVectorIndex:
    return FakeVectorIndex()


@pytest.fixture
def rag(vector_index) -> RagService:
    return RagService(
        index=vector_index,
        embed_batch_fn=keyword_embed_batch,
        embed_query_fn=keyword_embedding,
        chunk_size=60,
        chunk_overlap=10,
        vector_size=len(VOCAB) + 1,
    )
