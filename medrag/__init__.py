"""
Medical retrieval-augmented generation: source ingestion and grounded question answering.
"""

__version__ = "1.0.0"
