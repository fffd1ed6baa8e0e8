"""Error types and error-payload helpers for the ingestion and query paths."""
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)


class MedRAGError(Exception):
    kind = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidQueryError(MedRAGError):
    kind = "invalid_query"


class CollectionUnavailableError(MedRAGError):
    kind = "collection_unavailable"

    def __init__(self, collection: str, reason: Optional[str] = None):
        message = f"Collection '{collection}' not found or unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.collection = collection


class NoActiveCollectionError(MedRAGError):
    kind = "no_active_collection"

    def __init__(self):
        super().__init__("No collection connected. Call switch_collection first.")


class EmptyIngestionError(MedRAGError):
    kind = "empty_ingestion"


class StoreWriteError(MedRAGError):
    kind = "store_write_failed"

    def __init__(self, message: str, batches_written: int = 0):
        super().__init__(message)
        self.batches_written = batches_written


class EmbeddingError(MedRAGError):
    kind = "embedding_failed"


class GenerationError(MedRAGError):
    kind = "generation_failed"


class ErrorHandler:
    generic_message = "An internal error occurred while processing your request. Please try again later."

    def handle_exception(self, exc: Exception, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if isinstance(exc, (InvalidQueryError, CollectionUnavailableError, NoActiveCollectionError)):
            logger.info("Rejected request (%s): %s", exc.kind, exc.message)
            return {"error": exc.kind, "message": exc.message}

        logger.error("Unhandled exception in RAG pipeline: %s", exc, exc_info=True, extra={"context": context or {}})
        kind = exc.kind if isinstance(exc, MedRAGError) else "internal_error"
        return {"error": kind, "message": self.generic_message}

    @staticmethod
    def status_code(exc: Exception) -> int:
        if isinstance(exc, InvalidQueryError):
            return 400
        if isinstance(exc, CollectionUnavailableError):
            return 404
        return 500
