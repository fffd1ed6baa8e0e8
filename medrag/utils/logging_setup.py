"""
Logging configuration and structured activity logs for scraping and queries.
"""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

scraper_logger = logging.getLogger("medrag.activity.scraper")
query_logger = logging.getLogger("medrag.activity.query")

SCRAPER_ACTIONS = frozenset(
    {"start", "scrape_url", "validate", "deduplicate", "store", "complete", "error"}
)


def setup_logging(verbose: bool = False, log_file: Optional[Path] = None) -> None:
    """Setup logging configuration"""
    level = logging.DEBUG if verbose else logging.INFO

    handlers = [logging.StreamHandler()]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


def _emit(target: logging.Logger, level: int, message: str, record: dict) -> None:
    try:
        target.log(level, "%s %s", message, json.dumps(record, default=str, ensure_ascii=False))
    except Exception as e:
        # Activity logging must never break ingestion or a request.
        logging.getLogger(__name__).debug(f"Activity log dropped: {type(e).__name__}: {e}")


def log_scraper_activity(action: str, **fields: Any) -> None:
    if action not in SCRAPER_ACTIONS:
        raise ValueError(f"Unknown scraper action: {action}")

    record = {
        "type": "scraper",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action,
        **{k: v for k, v in fields.items() if v is not None},
    }
    if action == "error":
        _emit(scraper_logger, logging.ERROR, "Scraper error", record)
    else:
        _emit(scraper_logger, logging.INFO, f"Scraper: {action}", record)


def log_query(
    question: str,
    *,
    answer: Optional[str] = None,
    sources: Optional[int] = None,
    duration_ms: Optional[float] = None,
    collection: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    record = {
        "type": "query",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "question": question,
        "collection": collection,
        "sources": sources,
        "duration_ms": round(duration_ms, 1) if duration_ms is not None else None,
    }
    if answer is not None:
        record["answer"] = answer[:200] + "..." if len(answer) > 200 else answer

    if error:
        record["error"] = error
        _emit(query_logger, logging.ERROR, "Query failed", record)
    else:
        _emit(query_logger, logging.INFO, "Query completed", record)
