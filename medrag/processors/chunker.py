"""
Chunking of extracted page text into overlapping, metadata-carrying chunks.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from langchain_text_splitters import RecursiveCharacterTextSplitter

from medrag.models import Chunk, ChunkMetadata, RawDocument

logger = logging.getLogger(__name__)

# Paragraph, line, sentence and word boundaries are tried before a hard cut.
SEPARATORS = ["\n\n", "\n", ". ", "? ", "! ", " ", ""]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TextChunker:
    def __init__(
        self,
        chunk_size: int = 1000,
        chunk_overlap: Optional[int] = None,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ):
        if chunk_overlap is None:
            chunk_overlap = chunk_size // 5
        if chunk_overlap >= chunk_size:
            raise ValueError(f"chunk_overlap ({chunk_overlap}) must be smaller than chunk_size ({chunk_size})")

        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._clock = clock
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            separators=SEPARATORS,
            keep_separator="end",
        )

    def split(self, docs: Iterable[RawDocument], *, collection: str = "") -> List[Chunk]:
        """Split documents into chunks; every chunk inherits its page's provenance plus source and scrape time."""
        out: List[Chunk] = []
        for doc in docs:
            scraped_at = self._clock()
            pieces = [p.strip() for p in self._splitter.split_text(doc.text)]
            for i, piece in enumerate(p for p in pieces if p):
                out.append(
                    Chunk(
                        content=piece,
                        metadata=ChunkMetadata(
                            organization=doc.metadata.organization,
                            category=doc.metadata.category,
                            credibility=doc.metadata.credibility,
                            last_verified=doc.metadata.last_verified,
                            source=doc.url,
                            scraped_at=scraped_at,
                            collection=collection,
                            extra={"chunk_index": i},
                        ),
                    )
                )
            logger.debug("Split %s into %d chunks", doc.url, len(pieces))
        return out
