"""
RAG configuration loader (embeddings, vector store, retrieval, generation,
ingestion, validation and the topic registry).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from medrag.models import SourceEntry

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent.parent


class EmbeddingsConfig(BaseModel):
    provider: Literal["openai", "sentence_transformers"] = "openai"
    model: str = "text-embedding-ada-002"
    timeout_s: float = Field(default=30.0, gt=0)


class VectorStoreConfig(BaseModel):
    provider: Literal["qdrant_local", "qdrant_http"] = "qdrant_http"
    path: str = "data/qdrant"
    url_env: str = "QDRANT_URL"
    api_key_env: str = "QDRANT_API_KEY"
    timeout_s: int = Field(default=30, ge=1)


class RetrievalConfig(BaseModel):
    top_k: int = Field(default=4, ge=1, le=20)


class GenerationConfig(BaseModel):
    backend: Literal["openai", "gemini"] = "openai"
    model: str = "gpt-3.5-turbo"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, ge=1)
    timeout_s: float = Field(default=60.0, gt=0)
    max_attempts: int = Field(default=3, ge=1, le=10)
    api_key_env: str = "OPENAI_API_KEY"


class IngestionConfig(BaseModel):
    chunk_size: int = Field(default=1000, ge=50)
    chunk_overlap: int = Field(default=200, ge=0)
    delay_ms: int = Field(default=2000, ge=0)
    batch_size: int = Field(default=100, ge=1)
    request_timeout_s: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=0, le=10)
    tracking_file: str = ".scrape-tracking.json"


class ValidationConfig(BaseModel):
    min_score: int = 50
    min_length: int = 100
    boilerplate_max_length: int = 500
    short_content_penalty: int = 30
    missing_terms_penalty: int = 40
    boilerplate_penalty: int = 50
    missing_organization_penalty: int = 20
    missing_source_penalty: int = 20


class TopicConfig(BaseModel):
    name: str = ""
    collection: str
    label: str
    keywords: List[str] = Field(default_factory=list)
    sources_file: str

    @property
    def cli_name(self) -> str:
        return self.name.replace("_", "-")


class RAGConfig(BaseModel):
    embeddings: EmbeddingsConfig = Field(default_factory=EmbeddingsConfig)
    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    default_topic: str = "menopause"
    topics: Dict[str, TopicConfig] = Field(default_factory=dict)

    def model_post_init(self, __context) -> None:
        for name, topic in self.topics.items():
            if not topic.name:
                topic.name = name

    def get_topic(self, name: str) -> Optional[TopicConfig]:
        """Look a topic up by key, CLI spelling ("breast-cancer") or collection name."""
        key = name.strip().lower().replace("-", "_")
        if key in self.topics:
            return self.topics[key]
        for topic in self.topics.values():
            if topic.collection == name:
                return topic
        return None


def load_rag_config(config_path: Optional[Path] = None) -> RAGConfig:
    if config_path is None:
        config_path = PROJECT_ROOT / "config" / "rag_config.yml"

    if not config_path.exists():
        raise FileNotFoundError(f"RAG config file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    try:
        cfg = RAGConfig(**data)
        logger.info("Successfully loaded RAG config from %s", config_path)
        return cfg
    except ValidationError as e:
        logger.error("RAG config validation failed: %s", e)
        raise


def load_sources(sources_path: Path) -> List[SourceEntry]:
    """
    Load a topic's source list.

    Args:
        sources_path: YAML file holding a top-level ``sources`` list. Relative
            paths are resolved against the project root.

    Returns:
        Validated SourceEntry objects, in file order.
    """
    if not sources_path.is_absolute():
        sources_path = PROJECT_ROOT / sources_path

    if not sources_path.exists():
        raise FileNotFoundError(f"Sources file not found: {sources_path}")

    with open(sources_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    try:
        sources = [SourceEntry(**entry) for entry in data.get("sources") or []]
    except ValidationError as e:
        logger.error(f"Source list validation failed for {sources_path}: {e}")
        raise

    logger.debug(f"Loaded {len(sources)} sources from {sources_path}")
    return sources
