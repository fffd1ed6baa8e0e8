"""
Command-line entry points for ingestion (scrape_main) and ad-hoc queries (query_main).
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from medrag.errors import MedRAGError
from medrag.rag.grounding import is_answer_grounded
from medrag.rag.tracker import JsonFileStore, ScrapeTracker
from medrag.utils.config_loader import RAGConfig, TopicConfig, load_rag_config, load_sources
from medrag.utils.logging_setup import setup_logging

logger = logging.getLogger(__name__)

ALL_TOPICS = "all"


def _tracker(cfg: RAGConfig) -> ScrapeTracker:
    return ScrapeTracker(JsonFileStore(Path(cfg.ingestion.tracking_file)))


def _select_topics(cfg: RAGConfig, name: str) -> List[TopicConfig]:
    if name == ALL_TOPICS:
        return list(cfg.topics.values())
    topic = cfg.get_topic(name)
    if topic is None:
        raise ValueError(f"Unknown topic: {name} (choose from {', '.join(_topic_choices(cfg))})")
    return [topic]


def _topic_choices(cfg: RAGConfig) -> List[str]:
    return [t.cli_name for t in cfg.topics.values()] + [ALL_TOPICS]


def build_pipeline(cfg: RAGConfig, tracker: ScrapeTracker, delay_s: Optional[float] = None):
    """Wire the production ingestion pipeline from config."""
    from medrag.processors.chunker import TextChunker
    from medrag.rag.ingest import IngestionPipeline
    from medrag.rag.providers import embedder_from_config, store_factory_from_config
    from medrag.scrapers.web_fetcher import WebPageFetcher

    ing = cfg.ingestion
    return IngestionPipeline(
        fetcher=WebPageFetcher(timeout=ing.request_timeout_s, max_retries=ing.max_retries),
        chunker=TextChunker(chunk_size=ing.chunk_size, chunk_overlap=ing.chunk_overlap),
        embedder=embedder_from_config(cfg),
        store_factory=store_factory_from_config(cfg),
        tracker=tracker,
        validation=cfg.validation,
        delay_s=ing.delay_ms / 1000.0 if delay_s is None else delay_s,
        batch_size=ing.batch_size,
    )


def scrape_main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for scraping"""
    parser = argparse.ArgumentParser(
        description="Scrape curated medical sources into per-topic vector collections",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Scrape new menopause sources only
  python scripts/run_scraping.py menopause

  # Re-scrape every topic, ignoring the tracking file
  python scripts/run_scraping.py all --force

  # Show what has been scraped so far
  python scripts/run_scraping.py --status

  # Forget tracking for one topic (or everything)
  python scripts/run_scraping.py --reset pcos
  python scripts/run_scraping.py --reset
        """,
    )
    parser.add_argument("topic", nargs="?", help="menopause | breast-cancer | pcos | all")
    parser.add_argument("--force", action="store_true", help="Re-scrape all sources even if already tracked")
    parser.add_argument("--status", action="store_true", help="Show scraping status for every topic")
    parser.add_argument(
        "--reset",
        nargs="?",
        const=ALL_TOPICS,
        default=None,
        metavar="TOPIC",
        help="Reset tracking for a topic (no value or 'all' resets everything)",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to RAG config YAML (default: config/rag_config.yml)")
    parser.add_argument("--delay", type=float, default=None, help="Delay between sources in seconds (overrides config)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")

    args = parser.parse_args(argv)
    setup_logging(verbose=args.verbose, log_file=args.log_file)

    try:
        cfg = load_rag_config(args.config)
        tracker = _tracker(cfg)

        if args.status:
            print(tracker.show_status([t.collection for t in cfg.topics.values()]))
            return 0

        if args.reset is not None:
            if args.reset == ALL_TOPICS:
                tracker.reset()
                print("Reset all tracking")
            else:
                topic = _select_topics(cfg, args.reset)[0]
                tracker.reset(topic.collection)
                print(f"Reset tracking for {topic.collection}")
            return 0

        if not args.topic:
            parser.print_help()
            return 0

        topics = _select_topics(cfg, args.topic)
        pipeline = build_pipeline(cfg, tracker, args.delay)
        for topic in topics:
            report = pipeline.run(topic, load_sources(Path(topic.sources_file)), force=args.force)
            for line in report.summary_lines():
                print(line)
        return 0
    except MedRAGError as e:
        logger.error(f"Scraping failed ({e.kind}): {e.message}")
        print(f"Scraping failed: {e.message}")
        return 1
    except Exception as e:
        logger.error(f"Scraping failed: {type(e).__name__}: {e}", exc_info=args.verbose)
        print(f"Scraping failed: {e}")
        return 1


async def _ask(service, question: str, collection: str, k: int, stream: bool, sources_only: bool) -> None:
    if sources_only:
        docs = await service.get_relevant_documents(question, collection, k)
        _print_sources(docs)
        return

    if stream:
        fragments = await service.query_stream(question, collection, k)
        parts = []
        async for fragment in fragments:
            parts.append(fragment)
            print(fragment, end="", flush=True)
        print()
        answer, docs = "".join(parts), fragments.documents
    else:
        result = await service.answer(question, collection, k)
        answer, docs = result.answer, result.documents
        print(answer)

    if is_answer_grounded(answer):
        _print_sources(docs)
    else:
        print("\n(The sources did not cover this question; no sources shown.)")


def _print_sources(docs) -> None:
    print("\n### Sources\n")
    for i, doc in enumerate(docs, start=1):
        print(f"[{i}] {doc.organization} (score={doc.score:.4f})")
        print(f"    {doc.url}")


def query_main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Ask a question against a medical topic collection")
    parser.add_argument("question", help="Question to ask")
    parser.add_argument("--topic", default=None, help="Topic or collection (default: config default_topic)")
    parser.add_argument("--k", type=int, default=None, help="Number of chunks to retrieve")
    parser.add_argument("--stream", action="store_true", help="Print the answer as it is generated")
    parser.add_argument("--sources-only", action="store_true", help="Only retrieve and print sources")
    parser.add_argument("--config", type=Path, default=None, help="Path to RAG config YAML")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose)

    from medrag.rag.providers import embedder_from_config, generator_from_config, store_factory_from_config
    from medrag.rag.service import RAGService

    try:
        cfg = load_rag_config(args.config)
        service = RAGService(
            embedder=embedder_from_config(cfg),
            generator=generator_from_config(cfg),
            store_factory=store_factory_from_config(cfg),
            topics=cfg.topics,
            default_k=cfg.retrieval.top_k,
        )
        asyncio.run(
            _ask(
                service,
                args.question,
                args.topic or cfg.default_topic,
                args.k or cfg.retrieval.top_k,
                args.stream,
                args.sources_only,
            )
        )
        return 0
    except MedRAGError as e:
        print(f"Error ({e.kind}): {e.message}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.error(f"Query failed: {type(e).__name__}: {e}", exc_info=args.verbose)
        return 1
