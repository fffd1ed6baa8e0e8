"""
Embeddings utilities (RAG namespace).
"""

from .embedder import Embedder, OpenAIEmbedder, SentenceTransformersEmbedder

__all__ = ["Embedder", "OpenAIEmbedder", "SentenceTransformersEmbedder"]
