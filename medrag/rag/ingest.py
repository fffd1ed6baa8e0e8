"""
Ingestion orchestration: fetch -> chunk -> validate -> deduplicate -> batched upsert,
with per-collection scrape tracking so re-runs only touch new sources.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from medrag.errors import EmptyIngestionError, StoreWriteError
from medrag.models import Chunk, SourceEntry
from medrag.processors.chunker import TextChunker
from medrag.rag.embeddings.embedder import Embedder
from medrag.rag.tracker import ScrapeTracker
from medrag.scrapers.web_fetcher import WebPageFetcher
from medrag.utils.config_loader import TopicConfig, ValidationConfig
from medrag.utils.content_validator import ContentValidator, DuplicateDetector
from medrag.utils.logging_setup import log_scraper_activity

logger = logging.getLogger(__name__)

STATUS_ALREADY_SCRAPED = "already_scraped"
STATUS_STORED = "stored"


@dataclass
class IngestionReport:
    collection: str
    status: str
    sources_attempted: int = 0
    chunks_fetched: int = 0
    chunks_valid: int = 0
    chunks_unique: int = 0
    chunks_stored: int = 0
    batches_written: int = 0
    by_organization: Dict[str, int] = field(default_factory=dict)

    def summary_lines(self) -> List[str]:
        if self.status == STATUS_ALREADY_SCRAPED:
            return [f"{self.collection}: all sources already scraped (use --force to re-scrape)"]
        lines = [
            f"{self.collection}: stored {self.chunks_stored} chunks from {self.sources_attempted} sources "
            f"in {self.batches_written} batches",
            "Documents by Organization:",
        ]
        lines.extend(f"   {org}: {count} chunks" for org, count in self.by_organization.items())
        return lines


class IngestionPipeline:
    def __init__(
        self,
        *,
        fetcher: WebPageFetcher,
        chunker: TextChunker,
        embedder: Embedder,
        store_factory: Callable[[str], object],
        tracker: ScrapeTracker,
        validation: Optional[ValidationConfig] = None,
        deduplicator: Optional[DuplicateDetector] = None,
        delay_s: float = 2.0,
        batch_size: int = 100,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.fetcher = fetcher
        self.chunker = chunker
        self.embedder = embedder
        self.store_factory = store_factory
        self.tracker = tracker
        self.validation = validation or ValidationConfig()
        self.deduplicator = deduplicator or DuplicateDetector()
        self.delay_s = delay_s
        self.batch_size = batch_size
        self._sleep = sleep

    def run(self, topic: TopicConfig, sources: Sequence[SourceEntry], *, force: bool = False) -> IngestionReport:
        """
        Ingest a topic's sources into its collection.

        Raises:
            EmptyIngestionError: nothing survived validation and deduplication
            StoreWriteError: a batch upsert failed (earlier batches stay written)
        """
        collection = topic.collection
        logger.info(f"Starting {topic.label} source scraping into {collection}")
        log_scraper_activity("start", message=f"Starting {topic.label} scraping process")

        store = self.store_factory(collection)
        collection_exists = self._collection_exists(store, collection)
        logger.info(f"Collection '{collection}' exists: {'Yes' if collection_exists else 'No'}")

        to_scrape = list(sources)
        if collection_exists and not force:
            to_scrape = self.tracker.get_unscraped_sources(collection, sources)
            if not to_scrape:
                logger.info(f"All {len(sources)} sources already scraped for {collection}")
                return IngestionReport(collection=collection, status=STATUS_ALREADY_SCRAPED)
            logger.info(
                f"Found {len(to_scrape)} new sources to scrape "
                f"({len(sources) - len(to_scrape)} already scraped)"
            )
        else:
            logger.info(f"Scraping all {len(to_scrape)} sources")

        if not to_scrape:
            log_scraper_activity("error", error="No sources configured")
            raise EmptyIngestionError(f"No sources configured for {collection}")

        report = IngestionReport(collection=collection, status=STATUS_STORED, sources_attempted=len(to_scrape))

        chunks = self._fetch_all(to_scrape, collection)
        report.chunks_fetched = len(chunks)
        log_scraper_activity("scrape_url", chunks=len(chunks), message=f"Scraped {len(to_scrape)} URLs")

        validator = ContentValidator(topic.keywords, self.validation)
        chunks = validator.filter_valid_documents(chunks)
        report.chunks_valid = len(chunks)
        log_scraper_activity("validate", chunks=report.chunks_fetched, validChunks=len(chunks))

        chunks = self.deduplicator.remove_duplicates(chunks)
        report.chunks_unique = len(chunks)
        log_scraper_activity("deduplicate", chunks=report.chunks_valid, duplicates=report.chunks_valid - len(chunks))

        if not chunks:
            log_scraper_activity("error", error="No valid documents to store")
            raise EmptyIngestionError(f"No valid documents to store for {collection}")

        report.batches_written = self._store(store, collection, chunks)
        report.chunks_stored = len(chunks)
        log_scraper_activity("store", totalDocuments=len(chunks), message=f"Successfully stored in Qdrant ({collection})")

        self.tracker.mark_as_scraped(collection, to_scrape, len(chunks))

        report.by_organization = dict(Counter(c.metadata.organization or "Unknown" for c in chunks))
        for org, count in report.by_organization.items():
            log_scraper_activity("complete", organization=org, chunks=count)
        return report

    def _collection_exists(self, store, collection: str) -> bool:
        try:
            return store.exists()
        except Exception as e:
            logger.warning(f"Could not check collection existence for {collection}: {e}")
            return False

    def _fetch_all(self, sources: Sequence[SourceEntry], collection: str) -> List[Chunk]:
        chunks: List[Chunk] = []
        for i, source in enumerate(sources):
            if i > 0 and self.delay_s > 0:
                self._sleep(self.delay_s)
            docs = self.fetcher.fetch(source)
            page_chunks = self.chunker.split(docs, collection=collection)
            if docs:
                logger.info(f"Scraped {source.url} - {len(page_chunks)} chunks")
            else:
                logger.warning(f"Failed to scrape {source.url}")
                log_scraper_activity("error", url=source.url, error="fetch failed")
            chunks.extend(page_chunks)
        logger.info(f"Initial chunks scraped: {len(chunks)}")
        return chunks

    def _store(self, store, collection: str, chunks: Sequence[Chunk]) -> int:
        total_batches = (len(chunks) + self.batch_size - 1) // self.batch_size
        batches_written = 0
        for start in range(0, len(chunks), self.batch_size):
            batch = chunks[start:start + self.batch_size]
            logger.info(f"Uploading batch {batches_written + 1}/{total_batches} ({len(batch)} chunks)")
            try:
                vectors = self.embedder.embed_texts([c.content for c in batch])
                if batches_written == 0:
                    if store.ensure_collection(vector_size=len(vectors[0])):
                        logger.info(f"Created collection {collection}")
                store.upsert(
                    ids=[c.chunk_id for c in batch],
                    vectors=vectors,
                    payloads=[c.to_payload() for c in batch],
                )
            except Exception as e:
                log_scraper_activity("error", error=f"{type(e).__name__}: {e}")
                raise StoreWriteError(
                    f"Failed to store batch {batches_written + 1}/{total_batches} in {collection}: {e}",
                    batches_written=batches_written,
                ) from e
            batches_written += 1
        logger.info(f"All {len(chunks)} chunks stored in {collection}")
        return batches_written
