"""
Scrape tracking: which source URLs have already been ingested, per collection.

State is a single JSON document:

    {
      "lastScraped": {collection: {"timestamp", "urlCount", "documentCount"}},
      "scrapedUrls": {collection: [url, ...]}
    }

Every mutation is written straight through to disk (atomic replace), so a crash
mid-run never loses previously committed state.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from medrag.models import SourceEntry

logger = logging.getLogger(__name__)


class LastScraped(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    timestamp: datetime
    url_count: int = Field(alias="urlCount")
    document_count: int = Field(alias="documentCount")


class TrackingState(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    last_scraped: Dict[str, LastScraped] = Field(default_factory=dict, alias="lastScraped")
    scraped_urls: Dict[str, List[str]] = Field(default_factory=dict, alias="scrapedUrls")


class JsonFileStore:
    """Read-all / write-all JSON blob on the local filesystem."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def read(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class ScrapeTracker:
    def __init__(self, store: JsonFileStore):
        self.store = store
        self.state = self._load()

    def _load(self) -> TrackingState:
        try:
            data = self.store.read()
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read scrape tracking state, starting empty: %s", e)
            return TrackingState()
        if not data:
            return TrackingState()
        try:
            return TrackingState.model_validate(data)
        except ValidationError as e:
            logger.warning("Malformed scrape tracking state, starting empty: %s", e)
            return TrackingState()

    def _save(self) -> None:
        self.store.write(self.state.model_dump(mode="json", by_alias=True))

    def get_unscraped_sources(self, collection: str, sources: Sequence[SourceEntry]) -> List[SourceEntry]:
        scraped = set(self.state.scraped_urls.get(collection, []))
        return [s for s in sources if s.url not in scraped]

    def mark_as_scraped(self, collection: str, sources: Sequence[SourceEntry], document_count: int) -> None:
        existing = self.state.scraped_urls.get(collection, [])
        urls = [s.url for s in sources]
        # Ordered union; recorded URLs are never dropped here.
        self.state.scraped_urls[collection] = list(dict.fromkeys([*existing, *urls]))
        self.state.last_scraped[collection] = LastScraped(
            timestamp=datetime.now(timezone.utc),
            url_count=len(urls),
            document_count=document_count,
        )
        self._save()
        logger.info("Marked %d URLs as scraped for %s", len(urls), collection)

    def get_last_scraped(self, collection: str) -> Optional[LastScraped]:
        return self.state.last_scraped.get(collection)

    def reset(self, collection: Optional[str] = None) -> None:
        if collection:
            self.state.scraped_urls.pop(collection, None)
            self.state.last_scraped.pop(collection, None)
        else:
            self.state = TrackingState()
        self._save()

    def status(self, collections: Sequence[str]) -> List[Dict[str, Any]]:
        rows = []
        for collection in collections:
            last = self.get_last_scraped(collection)
            rows.append(
                {
                    "collection": collection,
                    "urls_scraped": len(self.state.scraped_urls.get(collection, [])),
                    "last_scraped": last.timestamp if last else None,
                    "documents_stored": last.document_count if last else None,
                }
            )
        return rows

    def show_status(self, collections: Sequence[str]) -> str:
        lines = ["Scraping Status:", ""]
        for row in self.status(collections):
            lines.append(f"{row['collection']}:")
            lines.append(f"  URLs scraped: {row['urls_scraped']}")
            if row["last_scraped"] is not None:
                lines.append(f"  Last scraped: {row['last_scraped'].isoformat()}")
                lines.append(f"  Documents stored: {row['documents_stored']}")
            else:
                lines.append("  Last scraped: Never")
            lines.append("")
        return "\n".join(lines)
