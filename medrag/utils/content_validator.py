"""
Content validation utilities for scraped chunks
"""
import re
import hashlib
from typing import List, Optional, Sequence, Set
import logging

from medrag.models import Chunk, ValidationResult
from medrag.utils.config_loader import ValidationConfig

logger = logging.getLogger(__name__)

FINGERPRINT_LENGTH = 200


class ContentValidator:
    """Scores chunks for ingestion-worthiness"""

    def __init__(self, keywords: Sequence[str], config: Optional[ValidationConfig] = None):
        """
        Initialize content validator

        Args:
            keywords: Topic vocabulary; a chunk mentioning none of these terms
                is penalised
            config: Threshold and penalty weights (defaults if omitted)
        """
        self.keywords = [k.lower() for k in keywords if k.strip()]
        self.config = config or ValidationConfig()

        # Navigation/boilerplate indicators
        self.boilerplate_patterns = [
            re.compile(r'cookies?', re.IGNORECASE),
            re.compile(r'privacy policy', re.IGNORECASE),
            re.compile(r'terms of service', re.IGNORECASE),
            re.compile(r'subscribe to (?:our )?newsletter', re.IGNORECASE),
            re.compile(r'follow us on', re.IGNORECASE),
        ]

    def validate(self, chunk: Chunk) -> ValidationResult:
        """
        Validate a chunk

        Scoring starts at 100 and subtracts independent penalties; the chunk
        is valid when the final score reaches ``min_score``.
        """
        cfg = self.config
        content = chunk.content
        content_length = len(content)
        issues: List[str] = []
        score = 100

        if content_length < cfg.min_length:
            issues.append(f"Content too short (< {cfg.min_length} chars)")
            score -= cfg.short_content_penalty

        content_lower = content.lower()
        if not any(term in content_lower for term in self.keywords):
            issues.append("No topic-related medical terms found")
            score -= cfg.missing_terms_penalty

        has_boilerplate = any(p.search(content) for p in self.boilerplate_patterns)
        if has_boilerplate and content_length < cfg.boilerplate_max_length:
            issues.append("Appears to be navigation/boilerplate content")
            score -= cfg.boilerplate_penalty

        if not chunk.metadata.organization:
            issues.append("Missing organization metadata")
            score -= cfg.missing_organization_penalty

        if not chunk.metadata.source:
            issues.append("Missing source URL")
            score -= cfg.missing_source_penalty

        return ValidationResult(is_valid=score >= cfg.min_score, issues=issues, score=score)

    def filter_valid_documents(self, chunks: Sequence[Chunk]) -> List[Chunk]:
        """Keep only valid chunks, logging every rejection"""
        valid: List[Chunk] = []
        for chunk in chunks:
            result = self.validate(chunk)
            if not result.is_valid:
                logger.info(
                    f"Filtering out low-quality content from {chunk.metadata.source or 'unknown source'} "
                    f"(score: {result.score}); issues: {', '.join(result.issues)}"
                )
                continue
            valid.append(chunk)

        logger.info(f"Validation: {len(chunks)} -> {len(valid)} chunks")
        return valid


class DuplicateDetector:
    """
    Near-duplicate removal within one batch.

    The fingerprint is the first 200 characters of a chunk, trimmed. Chunks that
    share a prefix but differ later are treated as duplicates, and nothing is
    remembered between batches; cross-run protection comes only from the scrape
    tracker's URL bookkeeping.
    """

    @staticmethod
    def fingerprint(content: str) -> str:
        prefix = content[:FINGERPRINT_LENGTH].strip()
        return hashlib.md5(prefix.encode('utf-8')).hexdigest()

    def remove_duplicates(self, chunks: Sequence[Chunk]) -> List[Chunk]:
        seen: Set[str] = set()
        unique: List[Chunk] = []

        for chunk in chunks:
            content_hash = self.fingerprint(chunk.content)
            if content_hash in seen:
                logger.debug(f"Removed duplicate content from {chunk.metadata.source}")
                continue
            seen.add(content_hash)
            unique.append(chunk)

        logger.info(f"Deduplication: {len(chunks)} -> {len(unique)} chunks")
        return unique
