"""
Core records passed between the ingestion pipeline and the query service.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class SourceMetadata(BaseModel):
    """Provenance attached to every configured source URL."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    organization: str = ""
    category: str = ""
    credibility: Literal["high", "medium"] = "high"
    last_verified: Optional[date] = Field(default=None, alias="lastVerified")


class SourceSelectors(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: Optional[str] = None
    exclude: List[str] = Field(default_factory=list)


class SourceEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    metadata: SourceMetadata = Field(default_factory=SourceMetadata)
    selectors: Optional[SourceSelectors] = None


@dataclass
class RawDocument:
    """Extracted page text before chunking."""

    text: str
    url: str
    metadata: SourceMetadata = field(default_factory=SourceMetadata)


class ChunkMetadata(BaseModel):
    organization: str = ""
    category: str = ""
    credibility: Optional[str] = None
    last_verified: Optional[date] = None
    source: str = ""
    scraped_at: Optional[datetime] = None
    collection: str = ""
    extra: Dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json", exclude={"extra"})
        data.update(self.extra)
        return data

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ChunkMetadata":
        known = set(cls.model_fields) - {"extra"}
        values = {k: v for k, v in payload.items() if k in known}
        extra = {k: v for k, v in payload.items() if k not in known and k not in ("text", "chunk_id")}
        return cls(**values, extra=extra)


class Chunk(BaseModel):
    content: str
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)

    @property
    def chunk_id(self) -> str:
        # Same source + same text always maps to the same point in the store.
        key = f"{self.metadata.source}\n{self.content}"
        return hashlib.sha1(key.encode("utf-8")).hexdigest()

    def to_payload(self) -> Dict[str, Any]:
        payload = self.metadata.to_payload()
        payload["text"] = self.content
        payload["chunk_id"] = self.chunk_id
        return payload


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    issues: List[str] = Field(default_factory=list)
    score: int


class RetrievedDocument(BaseModel):
    """A ranked search hit, as returned to callers of the query service."""

    content: str
    metadata: ChunkMetadata
    score: float = 0.0

    @property
    def organization(self) -> str:
        return self.metadata.organization or "Unknown Source"

    @property
    def url(self) -> str:
        return self.metadata.source

    def to_source(self, ordinal: int) -> Dict[str, Any]:
        return {
            "ordinal": ordinal,
            "content": self.content,
            "organization": self.organization,
            "url": self.url,
            "score": self.score,
            "metadata": self.metadata.to_payload(),
        }
