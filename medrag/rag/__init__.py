"""
High-level RAG pipeline (ingestion + querying).

This package wires together:
- utils.config_loader
- rag.embeddings
- rag.integrations (Qdrant)
- scrapers.web_fetcher and processors.chunker for ingestion
"""

from .ingest import IngestionPipeline, IngestionReport
from .service import RAGService, RAGSession

__all__ = ["IngestionPipeline", "IngestionReport", "RAGService", "RAGSession"]
