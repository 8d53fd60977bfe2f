# =============================================================================
# Character-Window Text Chunker
# =============================================================================
#
# Splits a document's raw text into fixed-size, overlapping character
# windows. Each chunk keeps its exact [start, end) offsets into the raw
# text, so a citation can always be mapped back to the source span.
#
# ALGORITHM:
#   stride = chunk_size - chunk_overlap
#   window k covers [k * stride, min(k * stride + chunk_size, len(text)))
#   stop after the first window that reaches the end of the text
#
# Consequences (checked in tests/test_chunker.py):
# - windows cover [0, len(text)) with no gaps
# - each adjacent pair overlaps by exactly chunk_overlap characters
# - only the final window may be shorter than chunk_size
#
# DESIGN DECISION: Character offsets, not token offsets. Offsets are
# user-facing (citations carry "chars: start-end"), and slicing by
# characters keeps them exact. tiktoken is still used to record each
# chunk's token count, which bounds the embedding request size.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass

import tiktoken

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ChunkResult:
    """A single chunk ready for embedding and storage."""

    content: str       # raw_text[start_offset:end_offset]
    start_offset: int  # inclusive
    end_offset: int    # exclusive
    chunk_index: int   # 0-indexed position within the document
    token_count: int   # cl100k_base token count of `content`


# ---------------------------------------------------------------------------
# Tiktoken Encoder — Cached Singleton
# ---------------------------------------------------------------------------
# Loading the encoder reads a BPE file from disk; cache it for the process.
# cl100k_base is the encoding used by text-embedding-3-small.
# ---------------------------------------------------------------------------

_encoder: tiktoken.Encoding | None = None


def _get_encoder() -> tiktoken.Encoding:
    """Lazily initialize and cache the tiktoken encoder."""
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("cl100k_base")
    return _encoder


def count_tokens(text: str) -> int:
    return len(_get_encoder().encode(text, disallowed_special=()))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def split_into_chunks(
    text: str,
    chunk_size: int = 1000,
    chunk_overlap: int = 200,
) -> list[ChunkResult]:
    """
    Split raw text into overlapping character windows.

    Args:
        text: The document's raw text.
        chunk_size: Window size in characters.
        chunk_overlap: Characters shared by consecutive windows.

    Returns:
        Chunks in document order. Empty text yields no chunks.

    Raises:
        ValueError: If chunk_size is not positive, or chunk_overlap is
            negative or not strictly smaller than chunk_size.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if chunk_overlap < 0 or chunk_overlap >= chunk_size:
        raise ValueError(
            f"chunk_overlap must be in [0, chunk_size), got "
            f"chunk_overlap={chunk_overlap}, chunk_size={chunk_size}"
        )

    total_chars = len(text)
    if total_chars == 0:
        return []

    stride = chunk_size - chunk_overlap
    chunks: list[ChunkResult] = []

    for chunk_idx, start in enumerate(range(0, total_chars, stride)):
        end = min(start + chunk_size, total_chars)
        content = text[start:end]
        chunks.append(ChunkResult(
            content=content,
            start_offset=start,
            end_offset=end,
            chunk_index=chunk_idx,
            token_count=count_tokens(content),
        ))

        # The window that reaches the end is the last one; any later start
        # would produce a window fully contained in this one.
        if end >= total_chars:
            break

    logger.info(
        "Chunked %d chars into %d chunks (size=%d, overlap=%d)",
        total_chars, len(chunks), chunk_size, chunk_overlap,
    )
    return chunks
