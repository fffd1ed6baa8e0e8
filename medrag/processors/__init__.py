"""
Processors package.

Processing turns extracted page text into overlapping, metadata-stamped chunks.
"""

from .chunker import TextChunker

__all__ = ["TextChunker"]
