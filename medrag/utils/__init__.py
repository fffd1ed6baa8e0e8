"""
Utility modules for the RAG system
"""
from .config_loader import RAGConfig, TopicConfig, load_rag_config, load_sources
from .content_validator import ContentValidator, DuplicateDetector
from .logging_setup import log_query, log_scraper_activity, setup_logging

__all__ = [
    'RAGConfig',
    'TopicConfig',
    'load_rag_config',
    'load_sources',
    'ContentValidator',
    'DuplicateDetector',
    'log_query',
    'log_scraper_activity',
    'setup_logging',
]
