from typing import Optional

from libs.common.config import Settings, get_settings
from libs.db.document_store import DocumentStore
from libs.db.flat_file_store import FlatFileStore


def build_document_store(settings: Optional[Settings] = None) -> DocumentStore:
    """
    Document-store backend configured from settings (not yet connected).
    """
    settings = settings or get_settings()
    return DocumentStore(
        settings.mongodb_connection_string,
        settings.MONGODB_DB,
        timeout_ms=settings.MONGODB_TIMEOUT_MS,
    )


def build_flat_file_store(settings: Optional[Settings] = None) -> FlatFileStore:
    """
    Flat-file backend rooted at DATA_DIR (not yet connected).
    """
    settings = settings or get_settings()
    return FlatFileStore(settings.DATA_DIR)
