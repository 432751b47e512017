"""Storage package: the reactive document store and blob storage."""

from ..config.app_config import AppConfig
from ..config.store_config import StoreConfig
from .blob_store import BlobStore, LocalBlobStore  # noqa: F401
from .document_store import (  # noqa: F401
    SERVER_TIMESTAMP,
    ArrayUnion,
    DocumentSnapshot,
    DocumentStore,
    FieldFilter,
    OrderBy,
    Subscription,
)
from .in_memory_store import InMemoryDocumentStore  # noqa: F401


def create_document_store(app_config: AppConfig) -> DocumentStore:
    """Build the document store selected by ``STORE_BACKEND``."""
    if app_config.store_backend == "in_memory":
        return InMemoryDocumentStore()
    raise ValueError(f"Unsupported store backend '{app_config.store_backend}'")


def create_blob_store(store_config: StoreConfig) -> BlobStore:
    return LocalBlobStore(
        root=store_config.blob_root,
        base_url=store_config.blob_base_url,
        chunk_size=store_config.blob_chunk_size,
    )
