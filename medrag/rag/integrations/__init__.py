"""
Vector store integrations for RAG (Qdrant).
"""

from .qdrant_store import QdrantVectorStore

__all__ = ["QdrantVectorStore"]
