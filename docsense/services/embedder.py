# =============================================================================
# Embedding Service — Chunk and Question Vectors
# =============================================================================
#
# One OpenAI-compatible embeddings endpoint serves both indexing (chunk
# vectors, in batches) and retrieval (one question vector). base_url is
# the only switch between providers.
#
# Sync functions: the RAG service calls them through asyncio.to_thread so
# a batch in flight never blocks the event loop.
#
# CONTRACT WITH THE RAG SERVICE:
# - output is aligned index-for-index with the input texts
# - every vector has exactly settings.embedding_dimensions floats, the
#   width the per-document collections were created with
# - SDK failures and wrong-width vectors surface as ProviderUnavailable
#   (provider "embeddings"); a missing API key stays a ValueError
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence

import openai
from openai import OpenAI

from docsense.config import settings
from docsense.errors import ProviderUnavailable

logger = logging.getLogger(__name__)

_PROVIDER = "embeddings"


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------
# Built on first use so importing this module never needs a key.
# OPENAI_API_KEY wins over the shared LLM_API_KEY.
# ---------------------------------------------------------------------------

_client: OpenAI | None = None


def _get_client() -> OpenAI:
    global _client
    if _client is None:
        api_key = settings.openai_api_key or settings.llm_api_key
        if not api_key:
            raise ValueError(
                "No API key configured for embeddings. "
                "Set OPENAI_API_KEY or LLM_API_KEY in .env"
            )

        _client = OpenAI(api_key=api_key, base_url=settings.embedding_base_url or None)
        logger.info(
            "Embedding client ready (model=%s, %d dims, endpoint=%s)",
            settings.embedding_model,
            settings.embedding_dimensions,
            settings.embedding_base_url or "default",
        )
    return _client


def _request_vectors(client: OpenAI, batch: list[str]) -> list[list[float]]:
    """One embeddings call; vectors come back in `batch` order."""
    try:
        response = client.embeddings.create(
            model=settings.embedding_model,
            input=batch,
            dimensions=settings.embedding_dimensions,
        )
    except openai.OpenAIError as exc:
        logger.error("Embeddings request for %d texts failed: %s", len(batch), exc)
        raise ProviderUnavailable(
            message=f"Embeddings request failed: {exc}",
            provider_name=_PROVIDER,
        ) from exc

    if len(response.data) != len(batch):
        raise ProviderUnavailable(
            message=f"Embeddings API returned {len(response.data)} vectors for {len(batch)} texts",
            provider_name=_PROVIDER,
        )

    vectors: list[list[float]] = [[] for _ in batch]
    for item in response.data:
        if len(item.embedding) != settings.embedding_dimensions:
            raise ProviderUnavailable(
                message=(
                    f"Model {settings.embedding_model} returned {len(item.embedding)}-dim "
                    f"vectors; collections expect {settings.embedding_dimensions}"
                ),
                provider_name=_PROVIDER,
            )
        # Items carry their request position; the API does not promise order
        vectors[item.index] = item.embedding
    return vectors


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def embed_batch(
    texts: Sequence[str],
    batch_size: int | None = None,
) -> list[list[float]]:
    """
    Embed texts in sub-batches, preserving input order.

    Args:
        texts: Chunk texts, in chunk order.
        batch_size: Texts per API call. Defaults to
            settings.embedding_batch_size.

    Raises:
        ValueError: If no API key is configured.
        ProviderUnavailable: If a request fails or returns vectors of the
            wrong width.
    """
    if not texts:
        return []

    client = _get_client()
    size = batch_size or settings.embedding_batch_size

    embeddings: list[list[float]] = []
    for start in range(0, len(texts), size):
        batch = list(texts[start : start + size])
        logger.debug(
            "Embedding texts %d-%d of %d", start + 1, start + len(batch), len(texts),
        )
        embeddings.extend(_request_vectors(client, batch))
    return embeddings


def embed_query(text: str) -> list[float]:
    return embed_batch([text], batch_size=1)[0]
